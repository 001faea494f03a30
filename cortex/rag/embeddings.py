"""Embedding clients with a remote -> local -> hashed fallback chain."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

import numpy as np
from ibm_watsonx_ai import Credentials
from ibm_watsonx_ai.foundation_models import Embeddings as WXEmbeddings

from cortex.config import Settings
from cortex.rag.text_utils import fnv1a_64, tokenize
from cortex.secrets import SecretStore, first_secret

try:
    from sentence_transformers import SentenceTransformer
except ImportError:
    SentenceTransformer = None

logger = logging.getLogger(__name__)

WATSONX_SECRET_NAMES = ["watsonx", "ibm", "ibm_cloud"]


def parse_embedding_result(result: Any) -> List[List[float]]:
    """Extract a list of vectors from any watsonx.ai embeddings response shape."""
    data = result.get_result() if hasattr(result, "get_result") else result
    # 1) {"results": [{"embedding"|"vector"|"values": [...]}, ...]}
    if isinstance(data, dict) and isinstance(data.get("results"), list):
        out = []
        for item in data["results"]:
            if isinstance(item, dict):
                for key in ("embedding", "vector", "values"):
                    if key in item:
                        out.append(item[key])
                        break
        if out:
            return out
    # 2) {"embeddings": [[...], ...]}
    if isinstance(data, dict) and "embeddings" in data:
        return data["embeddings"]
    # 3) direct list of vectors
    if isinstance(data, list) and data and isinstance(data[0], list):
        return data
    # 4) attribute style
    if hasattr(result, "embeddings"):
        return result.embeddings
    raise RuntimeError(
        f"Unexpected embeddings response format from watsonx.ai: {type(data)} "
        f"keys={list(data.keys()) if isinstance(data, dict) else 'n/a'}"
    )


class EmbeddingBackend(ABC):
    """One link of the embedding fallback chain."""

    name = "base"

    async def is_available(self) -> bool:
        return True

    @abstractmethod
    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        """Return one vector per text, in order."""


class WatsonxEmbeddingBackend(EmbeddingBackend):
    """Hosted watsonx.ai embeddings, gated on a stored IBM Cloud API key."""

    name = "watsonx"

    def __init__(self, settings: Settings, secrets: SecretStore, client: Any = None):
        self.settings = settings
        self.secrets = secrets
        self.client = client

    async def is_available(self) -> bool:
        if self.client is not None:
            return True
        if not self.settings.watsonx_project_id:
            return False
        api_key = await first_secret(self.secrets, WATSONX_SECRET_NAMES)
        if not api_key:
            return False
        credentials = Credentials(
            api_key=api_key,
            url=f"https://{self.settings.watsonx_region}.ml.cloud.ibm.com",
        )
        self.client = WXEmbeddings(
            model_id=self.settings.watsonx_embed_model,
            project_id=self.settings.watsonx_project_id,
            credentials=credentials,
        )
        return True

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        result = await asyncio.to_thread(self.client.embed_documents, list(texts))
        return [list(map(float, vec)) for vec in parse_embedding_result(result)]


class LocalEmbeddingBackend(EmbeddingBackend):
    """In-process sentence-transformers model, loaded on first use."""

    name = "local"

    def __init__(self, model_name: str, model: Any = None):
        self.model_name = model_name
        self.model = model
        self._disabled = model is None and SentenceTransformer is None

    async def is_available(self) -> bool:
        if self._disabled:
            return False
        if self.model is None:
            try:
                self.model = await asyncio.to_thread(SentenceTransformer, self.model_name)
            except Exception as e:
                logger.warning(f"Local embedding model {self.model_name} unavailable: {e}")
                self._disabled = True
                return False
        return True

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        vectors = await asyncio.to_thread(
            self.model.encode, list(texts), normalize_embeddings=True
        )
        return [list(map(float, vec)) for vec in vectors]


class HashedEmbeddingBackend(EmbeddingBackend):
    """Deterministic bag-of-tokens vector; always available.

    Each token increments the bucket ``fnv1a_64(token) % dimensions``; the
    count vector is L2-normalized. Text without tokens maps to ``[0.0]``.
    """

    name = "hashed"

    def __init__(self, dimensions: int = 256):
        self.dimensions = max(1, dimensions)

    def embed_one(self, text: str) -> List[float]:
        tokens = tokenize(text)
        if not tokens:
            return [0.0]
        vector = np.zeros(self.dimensions, dtype=np.float64)
        for token in tokens:
            vector[fnv1a_64(token) % self.dimensions] += 1.0
        vector /= np.linalg.norm(vector)
        return vector.tolist()

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        return [self.embed_one(text) for text in texts]


class EmbeddingClient:
    """Embeds text with the first backend of the chain that succeeds.

    Remote and local failures are logged and treated as "backend
    unavailable"; the hashed backend terminates the chain, so ``embed``
    never raises.
    """

    def __init__(
        self,
        settings: Settings,
        secrets: SecretStore,
        backends: Optional[List[EmbeddingBackend]] = None,
    ):
        self.settings = settings
        self.fallback = HashedEmbeddingBackend(settings.embedding_dimensions)
        if backends is None:
            backends = [WatsonxEmbeddingBackend(settings, secrets)]
            if not settings.constrained_environment:
                backends.append(LocalEmbeddingBackend(settings.local_embed_model))
        self.backends = list(backends)
        self.active_backend: Optional[str] = None

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []
        for backend in self.backends:
            try:
                if not await backend.is_available():
                    continue
                vectors = await backend.embed_many(texts)
            except Exception as e:
                logger.warning(f"Embedding backend {backend.name} failed: {e}")
                continue
            if len(vectors) != len(texts) or not all(vectors):
                logger.warning(
                    f"Embedding backend {backend.name} returned {len(vectors)} "
                    f"vectors for {len(texts)} texts; falling through"
                )
                continue
            self.active_backend = backend.name
            return vectors
        self.active_backend = self.fallback.name
        return await self.fallback.embed_many(texts)

    async def embed(self, text: str) -> List[float]:
        return (await self.embed_many([text]))[0]
