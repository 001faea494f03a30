"""Filesystem-backed markdown vault.

The vault is the document collection the index is built from and the
tools act on. Mutations performed through it are announced to
subscribers as ``create``, ``modify``, ``delete`` and ``rename`` events.
"""

import asyncio
import logging
import os
import re
from collections import defaultdict
from pathlib import Path, PurePosixPath
from typing import Awaitable, Callable, Dict, List

logger = logging.getLogger(__name__)

EventHandler = Callable[..., Awaitable[None]]

VAULT_EVENTS = ("create", "modify", "delete", "rename")


class VaultPathError(ValueError):
    """Raised for paths that are malformed, escape the vault or point at the wrong kind of entry."""


def normalize_path(path: str) -> str:
    """Canonical vault-relative POSIX path ("" for the vault root)."""
    cleaned = str(path).strip().replace("\\", "/")
    if cleaned.startswith("/") or re.match(r"^[A-Za-z]:", cleaned):
        raise VaultPathError(f"Absolute paths are not allowed: {path}")
    parts = []
    for part in PurePosixPath(cleaned).parts:
        if part in ("", "."):
            continue
        if part == "..":
            raise VaultPathError(f"Path escapes the vault: {path}")
        parts.append(part)
    return "/".join(parts)


def ensure_markdown(path: str) -> str:
    """Append ``.md`` unless the path already ends with it."""
    return path if path.lower().endswith(".md") else f"{path}.md"


def note_link_name(path: str) -> str:
    """Path without the ``.md`` extension, as used inside wikilinks."""
    return path[:-3] if path.lower().endswith(".md") else path


class FilesystemVault:
    """Markdown notes stored under a root folder."""

    def __init__(self, root: str | Path):
        self.root = Path(root).resolve()
        self._handlers: Dict[str, List[EventHandler]] = defaultdict(list)

    def _resolve(self, path: str) -> Path:
        return self.root / normalize_path(path)

    def on(self, event: str, handler: EventHandler) -> Callable[[], None]:
        """Subscribe to a vault event; returns an unsubscribe callable."""
        if event not in VAULT_EVENTS:
            raise ValueError(f"Unknown vault event: {event}")
        self._handlers[event].append(handler)
        return lambda: self._handlers[event].remove(handler)

    async def emit(self, event: str, *args: str) -> None:
        """Run every handler of ``event`` in subscription order.

        Handler failures are logged so the mutation that triggered them
        still completes.
        """
        for handler in list(self._handlers.get(event, [])):
            try:
                await handler(*args)
            except Exception:
                logger.exception(f"Vault {event} handler failed for {args}")

    async def exists(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).exists)

    async def is_folder(self, path: str) -> bool:
        return await asyncio.to_thread(self._resolve(path).is_dir)

    async def read(self, path: str) -> str:
        target = self._resolve(path)
        return await asyncio.to_thread(target.read_text, encoding="utf-8")

    def _walk_markdown(self) -> List[str]:
        found = []
        for dirpath, dirnames, filenames in os.walk(self.root):
            # Hidden folders (.obsidian, .git, ...) are not part of the vault
            dirnames[:] = sorted(d for d in dirnames if not d.startswith("."))
            for filename in filenames:
                if filename.lower().endswith(".md") and not filename.startswith("."):
                    full = Path(dirpath) / filename
                    found.append(full.relative_to(self.root).as_posix())
        return sorted(found)

    async def list_markdown(self) -> List[str]:
        """Every markdown note in the vault, sorted."""
        return await asyncio.to_thread(self._walk_markdown)

    async def list_folder(self, path: str = "") -> List[str]:
        """Markdown notes directly inside a folder."""
        folder = self._resolve(path)
        if not await asyncio.to_thread(folder.is_dir):
            raise VaultPathError(f"Not a folder: {path or '/'}")

        def _list() -> List[str]:
            return sorted(
                child.relative_to(self.root).as_posix()
                for child in folder.iterdir()
                if child.is_file() and child.suffix.lower() == ".md"
            )

        return await asyncio.to_thread(_list)

    async def ensure_folder(self, path: str) -> None:
        """Create a folder and any missing parents."""
        folder = self._resolve(path)
        if await asyncio.to_thread(folder.is_file):
            raise VaultPathError(f"A file already exists at {path}")
        await asyncio.to_thread(folder.mkdir, parents=True, exist_ok=True)

    async def write(self, path: str, content: str, notify: bool = True) -> bool:
        """Create or overwrite a file.

        Args:
            path: Vault-relative file path.
            content: New file content.
            notify: Emit ``create``/``modify`` to subscribers.

        Returns:
            True when the file was created, False when it was overwritten.
        """
        path = normalize_path(path)
        if not path:
            raise VaultPathError("A file path is required")
        target = self._resolve(path)
        if await asyncio.to_thread(target.is_dir):
            raise VaultPathError(f"A folder already exists at {path}")
        parent = PurePosixPath(path).parent.as_posix()
        if parent != ".":
            await self.ensure_folder(parent)
        created = not await asyncio.to_thread(target.exists)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")
        if notify:
            await self.emit("create" if created else "modify", path)
        return created

    async def delete(self, path: str) -> None:
        path = normalize_path(path)
        target = self._resolve(path)
        if not await asyncio.to_thread(target.is_file):
            raise VaultPathError(f"No file found at {path}")
        await asyncio.to_thread(target.unlink)
        await self.emit("delete", path)

    async def rename(self, old_path: str, new_path: str) -> None:
        """Move a note and rewrite wikilinks that pointed at its old name."""
        old_path = normalize_path(old_path)
        new_path = normalize_path(new_path)
        source = self._resolve(old_path)
        target = self._resolve(new_path)
        if not await asyncio.to_thread(source.is_file):
            raise VaultPathError(f"No file found at {old_path}")
        if old_path == new_path:
            return
        if await asyncio.to_thread(target.exists):
            raise VaultPathError(f"Destination already exists: {new_path}")
        parent = PurePosixPath(new_path).parent.as_posix()
        if parent != ".":
            await self.ensure_folder(parent)
        await asyncio.to_thread(os.replace, source, target)
        await self.emit("rename", new_path, old_path)
        await self._rewrite_links(old_path, new_path)

    async def _rewrite_links(self, old_path: str, new_path: str) -> None:
        replacements = [(note_link_name(old_path), note_link_name(new_path))]
        old_stem = PurePosixPath(note_link_name(old_path)).name
        new_stem = PurePosixPath(note_link_name(new_path)).name
        if old_stem != new_stem:
            replacements.append((old_stem, new_stem))

        for note in await self.list_markdown():
            content = await self.read(note)
            updated = content
            for old, new in replacements:
                pattern = re.compile(r"\[\[" + re.escape(old) + r"(?=\]\]|#|\|)")
                updated = pattern.sub(lambda _: "[[" + new, updated)
            if updated != content:
                await self.write(note, updated)
                logger.info(f"Updated links to {new_path} in {note}")
