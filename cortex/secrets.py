"""Credential lookup for model and embedding backends."""

import os
from typing import Dict, Iterable, Optional, Protocol

# Environment variables consulted for each well-known credential name.
ENV_SECRET_NAMES: Dict[str, list[str]] = {
    "openai": ["OPENAI_API_KEY"],
    "anthropic": ["ANTHROPIC_API_KEY"],
    "claude": ["ANTHROPIC_API_KEY", "CLAUDE_API_KEY"],
    "gemini": ["GEMINI_API_KEY", "GOOGLE_API_KEY"],
    "google": ["GOOGLE_API_KEY"],
    "gemini-pro": ["GEMINI_API_KEY"],
    "watsonx": ["WATSONX_API_KEY", "IBM_CLOUD_API_KEY"],
    "ibm": ["IBM_CLOUD_API_KEY"],
    "ibm_cloud": ["IBM_CLOUD_API_KEY"],
}


class SecretStore(Protocol):
    async def get(self, name: str) -> Optional[str]: ...


class EnvSecretStore:
    """Resolves credentials from explicit overrides, then the environment.

    Unknown names are looked up as ``CORTEX_SECRET_<NAME>``.
    """

    def __init__(self, overrides: Optional[Dict[str, str]] = None):
        self.overrides = dict(overrides or {})

    async def get(self, name: str) -> Optional[str]:
        if self.overrides.get(name):
            return self.overrides[name]
        env_name = "CORTEX_SECRET_" + name.upper().replace("-", "_")
        for var in [*ENV_SECRET_NAMES.get(name, []), env_name]:
            value = os.getenv(var)
            if value:
                return value
        return None


async def first_secret(store: SecretStore, names: Iterable[str]) -> Optional[str]:
    """Return the first configured credential among ``names``."""
    for name in names:
        value = await store.get(name)
        if value:
            return value
    return None
