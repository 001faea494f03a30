"""Incremental vault indexing.

VaultIndexer keeps the binding table (document path -> chunk ids) in step
with the chunk index as notes are created, edited, deleted and renamed.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Dict, List, Mapping

from cortex.config import Settings
from cortex.models import Chunk
from cortex.rag.chunker import chunk_markdown
from cortex.rag.embeddings import EmbeddingClient
from cortex.rag.persistence import IndexPersistence
from cortex.rag.vectorstore import ChunkIndex
from cortex.vault import FilesystemVault

logger = logging.getLogger(__name__)


def is_markdown(path: str) -> bool:
    return path.lower().endswith(".md")


class VaultIndexer:
    """Owns bindings and applies document mutations to the chunk index.

    Mutations of the same path are serialized with a per-path lock so a
    delete and a re-index racing on one note apply in arrival order.
    """

    def __init__(
        self,
        vault: FilesystemVault,
        index: ChunkIndex,
        embedder: EmbeddingClient,
        persistence: IndexPersistence,
        settings: Settings,
    ):
        self.vault = vault
        self.index = index
        self.embedder = embedder
        self.persistence = persistence
        self.settings = settings
        self._bindings: Dict[str, List[str]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._persist_suspended = 0
        self._unsubscribe: List = []

    @property
    def bindings(self) -> Mapping[str, List[str]]:
        return {path: list(ids) for path, ids in self._bindings.items()}

    def chunks(self) -> List[Chunk]:
        return self.index.all_chunks()

    async def initialize(self) -> None:
        """Restore the snapshot, re-index the vault and start observing it."""
        await self.restore()
        await self.index_vault()
        self.observe_vault()

    async def restore(self) -> None:
        snapshot = await self.persistence.restore()
        self.index.clear()
        self._bindings = {}
        for chunk in snapshot.chunks:
            self.index.insert(chunk)
        for path, ids in snapshot.bindings:
            # Bindings must only reference chunks that exist
            self._bindings[path] = [i for i in ids if i in self.index]
        bound = {i for ids in self._bindings.values() for i in ids}
        for chunk in self.index.all_chunks():
            if chunk.id not in bound:
                self.index.remove(chunk.id)
        logger.info(
            f"Restored {len(self._bindings)} files / {len(self.index)} chunks "
            f"into {self.index.backend_name} index"
        )

    def observe_vault(self) -> None:
        if self._unsubscribe:
            return
        self._unsubscribe = [
            self.vault.on("create", self.handle_modify),
            self.vault.on("modify", self.handle_modify),
            self.vault.on("delete", self.handle_delete),
            self.vault.on("rename", self.handle_rename),
        ]

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []

    async def handle_modify(self, path: str) -> None:
        if is_markdown(path):
            await self.index_file(path)

    async def handle_delete(self, path: str) -> None:
        if is_markdown(path):
            await self.remove_file(path)

    async def handle_rename(self, new_path: str, old_path: str) -> None:
        if is_markdown(new_path) and is_markdown(old_path):
            await self.rename_file(old_path, new_path)
        elif is_markdown(old_path):
            await self.remove_file(old_path)
        elif is_markdown(new_path):
            await self.index_file(new_path)

    @asynccontextmanager
    async def _path_lock(self, path: str) -> AsyncIterator[None]:
        """Hold the lock for ``path``; the lock is dropped once nobody uses it."""
        lock = self._locks.setdefault(path, asyncio.Lock())
        self._lock_users[path] = self._lock_users.get(path, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[path] -= 1
            if not self._lock_users[path]:
                del self._lock_users[path]
                del self._locks[path]

    @asynccontextmanager
    async def deferred_persistence(self) -> AsyncIterator[None]:
        """Batch mutations: persist once when the outermost block exits."""
        self._persist_suspended += 1
        try:
            yield
        finally:
            self._persist_suspended -= 1
        if self._persist_suspended == 0:
            await self.persist()

    async def persist(self) -> None:
        if self._persist_suspended:
            return
        await self.persistence.save(self._bindings, self.index.all_chunks())

    async def index_vault(self) -> int:
        """Re-index every markdown note; prune bindings of vanished notes.

        Returns:
            Number of chunks held after the pass.
        """
        paths = await self.vault.list_markdown()
        async with self.deferred_persistence():
            present = set(paths)
            for stale in [p for p in self._bindings if p not in present]:
                await self.remove_file(stale)
            for path in paths:
                await self.index_file(path)
        logger.info(f"Indexed {len(paths)} notes into {len(self.index)} chunks")
        return len(self.index)

    async def _embed_chunks(self, chunks: List[Chunk]) -> List[Chunk]:
        if not chunks:
            return []
        vectors = await self.embedder.embed_many([c.content for c in chunks])
        return [c.model_copy(update={"embedding": v}) for c, v in zip(chunks, vectors)]

    def _remove_bindings(self, path: str) -> None:
        for chunk_id in self._bindings.pop(path, []):
            self.index.remove(chunk_id)

    async def index_file(self, path: str) -> List[Chunk]:
        """Chunk, embed and (re)bind one note.

        A note that cannot be read keeps its previous chunks.
        """
        async with self._path_lock(path):
            try:
                content = await self.vault.read(path)
            except Exception as e:
                logger.warning(f"Skipping {path}: {e}")
                return []
            chunks = chunk_markdown(
                content,
                path,
                chunk_size=self.settings.chunk_token_target,
                chunk_overlap=self.settings.chunk_token_overlap,
                max_chunks=self.settings.max_chunks_per_file,
                heading_depth=self.settings.heading_depth,
            )
            chunks = await self._embed_chunks(chunks)
            self._remove_bindings(path)
            new_ids = {c.id for c in chunks}
            # A note renamed away keeps ids derived from its old path; if a new
            # note now claims those ids, the renamed note must be re-chunked.
            displaced = [
                other for other, ids in self._bindings.items()
                if new_ids.intersection(ids)
            ]
            for other in displaced:
                self._bindings[other] = [i for i in self._bindings[other] if i not in new_ids]
            for chunk in chunks:
                self.index.insert(chunk)
            self._bindings[path] = [c.id for c in chunks]
            logger.debug(f"Indexed {path}: {len(chunks)} chunks")
        for other in displaced:
            await self.index_file(other)
        await self.persist()
        return chunks

    async def remove_file(self, path: str) -> None:
        async with self._path_lock(path):
            self._remove_bindings(path)
        await self.persist()

    async def rename_file(self, old_path: str, new_path: str) -> None:
        """Move bindings to ``new_path``; chunk ids are preserved."""
        async with AsyncExitStack() as stack:
            for path in sorted({old_path, new_path}):
                await stack.enter_async_context(self._path_lock(path))
            ids = self._bindings.pop(old_path, None)
            if ids is None:
                return
            # Anything previously bound at the destination is replaced
            self._remove_bindings(new_path)
            for chunk_id in ids:
                chunk = self.index.get(chunk_id)
                if chunk is not None:
                    self.index.insert(chunk.model_copy(update={"file_path": new_path}))
            self._bindings[new_path] = ids
        await self.persist()
