"""Index snapshot persistence inside the vault."""

import logging
from typing import Dict, Iterable, List

from pydantic import ValidationError

from cortex.models import Chunk, IndexSnapshot
from cortex.vault import FilesystemVault

logger = logging.getLogger(__name__)


class IndexPersistence:
    """Saves and restores the binding table and chunk store as one JSON file.

    Every save overwrites the whole snapshot. A missing or unreadable
    snapshot restores as empty so start-up continues and a full re-index
    can rebuild it.
    """

    def __init__(self, vault: FilesystemVault, path: str = ".cortex-index.json"):
        self.vault = vault
        self.path = path

    @staticmethod
    def build_snapshot(bindings: Dict[str, List[str]], chunks: Iterable[Chunk]) -> IndexSnapshot:
        return IndexSnapshot(
            bindings=[(path, list(ids)) for path, ids in bindings.items()],
            chunks=list(chunks),
        )

    async def save(self, bindings: Dict[str, List[str]], chunks: Iterable[Chunk]) -> None:
        snapshot = self.build_snapshot(bindings, chunks)
        payload = snapshot.model_dump_json(by_alias=True)
        try:
            # Snapshot writes are not document edits; keep them out of the event stream
            await self.vault.write(self.path, payload, notify=False)
        except Exception as e:
            logger.warning(f"Failed to save index snapshot {self.path}: {e}")
            return
        logger.debug(
            f"Saved index snapshot to {self.path}: {len(snapshot.bindings)} files, "
            f"{len(snapshot.chunks)} chunks"
        )

    async def restore(self) -> IndexSnapshot:
        try:
            content = await self.vault.read(self.path)
        except FileNotFoundError:
            logger.warning(f"No index snapshot at {self.path}; starting with an empty index")
            return IndexSnapshot()
        except Exception as e:
            logger.warning(f"Failed to read index snapshot {self.path}: {e}")
            return IndexSnapshot()
        try:
            return IndexSnapshot.model_validate_json(content)
        except ValidationError as e:
            logger.warning(f"Failed to restore index from {self.path}, rebuilding from vault: {e}")
            return IndexSnapshot()
