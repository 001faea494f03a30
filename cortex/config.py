"""Application configuration settings.

This module defines the Settings dataclass that loads configuration
from environment variables.
"""

from dataclasses import dataclass
import os


@dataclass
class Settings:
    """Application settings loaded from environment variables.

    Attributes:
        vault_root: Root folder of the markdown vault.
        index_path: Vault-relative path of the persisted index snapshot.
        chunk_token_target: Target number of words per chunk.
        chunk_token_overlap: Words shared by consecutive chunks.
        max_chunks_per_file: Upper bound on chunks produced for one file.
        heading_depth: Deepest markdown heading level that opens a section.
        keyword_weight: Weight applied to normalized keyword scores.
        vector_weight: Weight applied to normalized vector scores.
        search_limit: Number of fused results fed to the agent.
        embedding_dimensions: Width of the hashed fallback embedding.
        constrained_environment: Skip the local embedding backend.
        local_embed_model: sentence-transformers model name.
        watsonx_region: Watsonx.ai service region.
        watsonx_project_id: Watsonx.ai project ID.
        watsonx_embed_model: Watsonx.ai embedding model ID.
        openai_model: Tool-routing model.
        anthropic_model: Assistant persona model.
        gemini_model: Deep research model.
        temperature: Generation temperature.
        max_tokens: Completion token ceiling for every backend.
        request_timeout: Per-request timeout in seconds.
        context_cache_ttl: Lifetime of server-side context caches in seconds.
        response_cache_size: Entries kept in the prompt-level response cache.
        max_steps: Tool-use rounds allowed per question.
    """

    vault_root: str = "."
    index_path: str = ".cortex-index.json"

    chunk_token_target: int = 240
    chunk_token_overlap: int = 40
    max_chunks_per_file: int = 64
    heading_depth: int = 6

    keyword_weight: float = 0.55
    vector_weight: float = 0.45
    search_limit: int = 6

    embedding_dimensions: int = 256
    constrained_environment: bool = False
    local_embed_model: str = "all-MiniLM-L6-v2"

    watsonx_region: str = "us-south"
    watsonx_project_id: str = ""
    watsonx_embed_model: str = "ibm/granite-embedding-30m-english"

    openai_model: str = "gpt-4o-mini"
    anthropic_model: str = "claude-3-5-sonnet-20241022"
    gemini_model: str = "gemini-1.5-pro-002"
    temperature: float = 0.2
    max_tokens: int = 1024
    request_timeout: float = 60.0
    context_cache_ttl: int = 3600
    response_cache_size: int = 128

    max_steps: int = 4

    def __post_init__(self) -> None:
        self.heading_depth = min(6, max(1, self.heading_depth))

    @staticmethod
    def _get_bool(value: str | None, default: bool = False) -> bool:
        """Convert string value to boolean.

        Args:
            value: String value to convert.
            default: Default value if value is None.

        Returns:
            Boolean value.
        """
        if value is None:
            return default
        return value.lower() in {"1", "true", "t", "yes", "y"}

    @classmethod
    def from_env(cls) -> "Settings":
        """Create Settings instance from environment variables.

        Returns:
            Settings instance with values loaded from environment.
        """
        return cls(
            vault_root=os.getenv("CORTEX_VAULT_ROOT", "."),
            index_path=os.getenv("CORTEX_INDEX_PATH", ".cortex-index.json"),
            chunk_token_target=int(os.getenv("CHUNK_TOKEN_TARGET", "240")),
            chunk_token_overlap=int(os.getenv("CHUNK_TOKEN_OVERLAP", "40")),
            max_chunks_per_file=int(os.getenv("MAX_CHUNKS_PER_FILE", "64")),
            heading_depth=int(os.getenv("HEADING_DEPTH", "6")),
            keyword_weight=float(os.getenv("KEYWORD_WEIGHT", "0.55")),
            vector_weight=float(os.getenv("VECTOR_WEIGHT", "0.45")),
            search_limit=int(os.getenv("SEARCH_LIMIT", "6")),
            embedding_dimensions=int(os.getenv("EMBEDDING_DIMENSIONS", "256")),
            constrained_environment=cls._get_bool(
                os.getenv("CORTEX_CONSTRAINED"), False
            ),
            local_embed_model=os.getenv("LOCAL_EMBED_MODEL", "all-MiniLM-L6-v2"),
            watsonx_region=os.getenv("WATSONX_REGION", "us-south"),
            watsonx_project_id=os.getenv("WATSONX_PROJECT_ID", ""),
            watsonx_embed_model=os.getenv(
                "WATSONX_EMBED_MODEL",
                "ibm/granite-embedding-30m-english",
            ),
            openai_model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            anthropic_model=os.getenv(
                "ANTHROPIC_MODEL", "claude-3-5-sonnet-20241022"
            ),
            gemini_model=os.getenv("GEMINI_MODEL", "gemini-1.5-pro-002"),
            temperature=float(os.getenv("TEMPERATURE", "0.2")),
            max_tokens=int(os.getenv("MAX_TOKENS", "1024")),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "60")),
            context_cache_ttl=int(os.getenv("CONTEXT_CACHE_TTL", "3600")),
            response_cache_size=int(os.getenv("RESPONSE_CACHE_SIZE", "128")),
            max_steps=int(os.getenv("MAX_STEPS", "4")),
        )
