"""
Shared test fixtures for the vault, index and agent suites.

Provides: tmp_path-backed vault, hashed-only embedder, in-memory index,
indexer wired to a snapshot inside the vault, chunk factory.
No fixture touches the network.
"""

import pytest

from cortex.config import Settings
from cortex.models import Chunk
from cortex.rag.embeddings import EmbeddingClient
from cortex.rag.indexer import VaultIndexer
from cortex.rag.persistence import IndexPersistence
from cortex.rag.search_backend import MemorySearchBackend
from cortex.rag.vectorstore import ChunkIndex
from cortex.vault import FilesystemVault


class EmptySecretStore:
    """Secret store with no credentials configured."""

    async def get(self, name):
        return None


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        vault_root=str(tmp_path),
        embedding_dimensions=64,
        constrained_environment=True,
    )


@pytest.fixture
def secrets() -> EmptySecretStore:
    return EmptySecretStore()


@pytest.fixture
def vault(tmp_path) -> FilesystemVault:
    return FilesystemVault(tmp_path)


@pytest.fixture
def embedder(settings, secrets) -> EmbeddingClient:
    """Embedder with only the hashed fallback."""
    return EmbeddingClient(settings, secrets, backends=[])


@pytest.fixture
def index(embedder) -> ChunkIndex:
    return ChunkIndex(embedder, MemorySearchBackend())


@pytest.fixture
def persistence(vault, settings) -> IndexPersistence:
    return IndexPersistence(vault, settings.index_path)


@pytest.fixture
def indexer(vault, index, embedder, persistence, settings) -> VaultIndexer:
    indexer = VaultIndexer(vault, index, embedder, persistence, settings)
    yield indexer
    indexer.close()


@pytest.fixture
def chunk_factory():
    """Build chunks with predictable ids: ``{path}::block-{n}``."""

    def make(n, content="text", path="Note.md", embedding=None, keywords=None):
        return Chunk(
            id=f"{path}::block-{n}",
            content=content,
            file_path=path,
            block_id=f"block-{n}",
            embedding=embedding or [],
            keywords=keywords or [],
        )

    return make
