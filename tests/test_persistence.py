"""Tests for index snapshot save/restore."""

import json
from unittest.mock import AsyncMock

from cortex.models import IndexSnapshot
from cortex.rag.persistence import IndexPersistence


class TestIndexPersistence:
    """Snapshot round trip and recovery."""

    async def test_round_trip(self, persistence, chunk_factory):
        chunks = [
            chunk_factory(1, "alpha", embedding=[0.1, 0.2, 0.3], keywords=["alpha"]),
            chunk_factory(2, "beta", embedding=[0.4, 0.5, 0.6]),
        ]
        bindings = {"Note.md": [c.id for c in chunks]}

        await persistence.save(bindings, chunks)
        snapshot = await persistence.restore()

        assert snapshot.bindings == [("Note.md", ["Note.md::block-1", "Note.md::block-2"])]
        assert snapshot.chunks == chunks

    async def test_file_uses_camel_case_fields(self, persistence, tmp_path, chunk_factory):
        await persistence.save({"Note.md": ["Note.md::block-1"]}, [chunk_factory(1)])

        payload = json.loads((tmp_path / ".cortex-index.json").read_text(encoding="utf-8"))

        assert payload["bindings"] == [["Note.md", ["Note.md::block-1"]]]
        assert payload["chunks"][0]["filePath"] == "Note.md"
        assert payload["chunks"][0]["blockId"] == "block-1"

    async def test_missing_snapshot_restores_empty(self, persistence):
        assert await persistence.restore() == IndexSnapshot()

    async def test_corrupt_snapshot_restores_empty(self, persistence, tmp_path):
        (tmp_path / ".cortex-index.json").write_text("{not json", encoding="utf-8")

        assert await persistence.restore() == IndexSnapshot()

    async def test_wrong_shape_restores_empty(self, persistence, tmp_path):
        (tmp_path / ".cortex-index.json").write_text('{"bindings": 5}', encoding="utf-8")

        assert await persistence.restore() == IndexSnapshot()

    async def test_save_does_not_notify_subscribers(self, persistence, vault, chunk_factory):
        handler = AsyncMock()
        vault.on("create", handler)
        vault.on("modify", handler)

        await persistence.save({}, [])
        await persistence.save({}, [])

        handler.assert_not_awaited()

    async def test_failed_write_is_logged_not_raised(self, vault, tmp_path, chunk_factory, caplog):
        (tmp_path / "snap").mkdir()
        persistence = IndexPersistence(vault, "snap")

        await persistence.save({"Note.md": ["Note.md::block-1"]}, [chunk_factory(1)])

        assert "Failed to save index snapshot snap" in caplog.text
        assert (tmp_path / "snap").is_dir()
