"""Command line entry point for Vault Cortex.

Usage:
    cortex index --vault ~/Notes
    cortex search "weekly review" --vault ~/Notes
    cortex ask "What did I decide about the migration?" --vault ~/Notes
"""

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from cortex.agent.orchestrator import Orchestrator
from cortex.agent.router import ModelRouter
from cortex.agent.tools import CommandRegistry, ToolRegistry
from cortex.config import Settings
from cortex.rag.embeddings import EmbeddingClient
from cortex.rag.indexer import VaultIndexer
from cortex.rag.persistence import IndexPersistence
from cortex.rag.retriever import HybridRetriever
from cortex.rag.vectorstore import ChunkIndex
from cortex.secrets import EnvSecretStore, SecretStore
from cortex.vault import FilesystemVault

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Wired components for one CLI session."""

    settings: Settings
    vault: FilesystemVault
    embedder: EmbeddingClient
    index: ChunkIndex
    indexer: VaultIndexer
    retriever: HybridRetriever
    tools: ToolRegistry
    router: ModelRouter


def get_settings(vault: str | None = None) -> Settings:
    """Load settings from the environment (and .env), with CLI overrides."""
    load_dotenv()
    settings = Settings.from_env()
    if vault:
        settings.vault_root = vault
    return settings


def build_services(settings: Settings, secrets: SecretStore | None = None) -> Services:
    secrets = secrets or EnvSecretStore()
    vault = FilesystemVault(settings.vault_root)
    embedder = EmbeddingClient(settings, secrets)
    index = ChunkIndex(embedder)
    indexer = VaultIndexer(
        vault, index, embedder, IndexPersistence(vault, settings.index_path), settings
    )
    commands = CommandRegistry()
    commands.register("vault:reindex", indexer.index_vault)
    return Services(
        settings=settings,
        vault=vault,
        embedder=embedder,
        index=index,
        indexer=indexer,
        retriever=HybridRetriever(index, settings.keyword_weight, settings.vector_weight),
        tools=ToolRegistry(vault, commands),
        router=ModelRouter(secrets, settings),
    )


async def index_command(services: Services, args: argparse.Namespace) -> int:
    await services.indexer.restore()
    total = await services.indexer.index_vault()
    print(f"Indexed {len(services.indexer.bindings)} notes into {total} chunks")
    print(f"Search backend: {services.index.backend_name}")
    print(f"Embedding backend: {services.embedder.active_backend or 'none'}")
    return 0


async def search_command(services: Services, args: argparse.Namespace) -> int:
    await services.indexer.restore()
    if not len(services.index):
        await services.indexer.index_vault()
    results = await services.retriever.search(args.query, args.limit)
    print(f"Query: {args.query}")
    print("=" * 60)
    if not results:
        print("(No results)")
        return 0
    for i, result in enumerate(results, 1):
        chunk = result.chunk
        print(f"{i}. [{result.score:.3f}] {chunk.citation} ({chunk.heading})")
        print(f"   {chunk.content[:160]}")
    return 0


async def ask_command(services: Services, args: argparse.Namespace) -> int:
    await services.indexer.initialize()
    orchestrator = Orchestrator(
        services.router,
        services.retriever,
        services.tools,
        services.settings,
        status_callback=(lambda text: print(f"... {text}", file=sys.stderr)) if args.verbose else None,
    )
    try:
        answer = await orchestrator.run(args.query)
    finally:
        services.indexer.close()
    print(answer)
    return 0


COMMANDS = {
    "index": index_command,
    "search": search_command,
    "ask": ask_command,
}


def build_parser() -> argparse.ArgumentParser:
    shared = argparse.ArgumentParser(add_help=False)
    shared.add_argument("--vault", help="Vault root folder (default: CORTEX_VAULT_ROOT)")
    shared.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    parser = argparse.ArgumentParser(
        prog="cortex", description="Hybrid retrieval and agent loop over a markdown vault"
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("index", parents=[shared], help="Re-index the whole vault")
    search = sub.add_parser("search", parents=[shared], help="Hybrid search over the vault")
    search.add_argument("query", help="Query string")
    search.add_argument("--limit", type=int, default=None, help="Number of results")
    ask = sub.add_parser("ask", parents=[shared], help="Ask the agent a question")
    ask.add_argument("query", help="Question")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings = get_settings(args.vault)
    if not Path(settings.vault_root).is_dir():
        print(f"Vault folder not found: {settings.vault_root}", file=sys.stderr)
        return 1
    if getattr(args, "limit", None) is None and args.command == "search":
        args.limit = settings.search_limit
    services = build_services(settings)
    return asyncio.run(COMMANDS[args.command](services, args))


if __name__ == "__main__":
    sys.exit(main())
