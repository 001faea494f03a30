"""
Tests for heading-aware markdown chunking.

Validates:
1. Section labels (headings, Preamble, Document)
2. Sliding-window sizes, overlap and forward progress
3. Deterministic ids and the per-file cap
"""

from cortex.rag.chunker import (
    DOCUMENT_LABEL,
    PREAMBLE_LABEL,
    chunk_markdown,
    make_block_id,
    split_sections,
)


def words(n: int) -> str:
    return " ".join(f"w{i}" for i in range(n))


class TestSections:
    """Heading detection."""

    def test_two_headings_give_two_labelled_chunks(self):
        """Intro/Details document yields one chunk per section."""
        content = "# Intro\nHello world.\n# Details\nMore text here."

        chunks = chunk_markdown(content, "Note.md")

        assert [c.heading for c in chunks] == ["Intro", "Details"]
        assert chunks[0].content == "Hello world."
        assert chunks[1].content == "More text here."
        assert all(c.id.startswith("Note.md::block-") for c in chunks)
        assert all(c.file_path == "Note.md" for c in chunks)
        assert chunks[0].id != chunks[1].id

    def test_leading_content_is_preamble(self):
        sections = split_sections("intro text\n# Head\nbody")

        assert sections == [(PREAMBLE_LABEL, "intro text"), ("Head", "body")]

    def test_headless_file_is_document(self):
        assert split_sections("just some text") == [(DOCUMENT_LABEL, "just some text")]

    def test_heading_inside_fence_is_body(self):
        content = "# Real\n```\n# not a heading\n```\nafter"

        chunks = chunk_markdown(content, "Code.md")

        assert len(chunks) == 1
        assert chunks[0].heading == "Real"
        assert "# not a heading" in chunks[0].content

    def test_headings_deeper_than_depth_are_body(self):
        chunks = chunk_markdown("# Top\n### Deep\ntext", "a.md", heading_depth=2)

        assert len(chunks) == 1
        assert chunks[0].heading == "Top"
        assert chunks[0].content == "### Deep text"

    def test_closing_hashes_are_stripped(self):
        assert split_sections("## Title ##\nbody") == [("Title", "body")]

    def test_empty_sections_produce_no_chunks(self):
        chunks = chunk_markdown("# A\n\n   \n# B\ntext", "a.md")

        assert [c.heading for c in chunks] == ["B"]

    def test_whitespace_only_document_has_no_chunks(self):
        assert chunk_markdown("  \n\n\t\n", "empty.md") == []


class TestWindowing:
    """Sliding word windows."""

    def test_overlapping_windows(self):
        chunks = chunk_markdown(words(10), "a.md", chunk_size=4, chunk_overlap=1)

        assert [c.content for c in chunks] == [
            "w0 w1 w2 w3",
            "w3 w4 w5 w6",
            "w6 w7 w8 w9",
        ]

    def test_overlap_not_smaller_than_target_still_advances(self):
        chunks = chunk_markdown(words(10), "a.md", chunk_size=3, chunk_overlap=5)

        assert len(chunks) == 8
        assert chunks[0].content == "w0 w1 w2"
        assert chunks[-1].content == "w7 w8 w9"

    def test_per_file_cap_drops_remaining_tokens(self):
        content = f"# One\n{words(100)}\n# Two\n{words(100)}"

        chunks = chunk_markdown(content, "a.md", chunk_size=10, chunk_overlap=0, max_chunks=3)

        assert len(chunks) == 3
        assert all(c.heading == "One" for c in chunks)

    def test_short_section_is_one_chunk(self):
        chunks = chunk_markdown("tiny body", "a.md", chunk_size=240)

        assert len(chunks) == 1
        assert chunks[0].heading == DOCUMENT_LABEL


class TestIdentifiers:
    """Deterministic ids."""

    def test_chunking_is_deterministic(self):
        content = "# Intro\nHello world.\n# Details\n" + words(500)

        first = chunk_markdown(content, "Note.md")
        second = chunk_markdown(content, "Note.md")

        assert [c.model_dump() for c in first] == [c.model_dump() for c in second]

    def test_repeated_labels_get_distinct_ids(self):
        chunks = chunk_markdown("# A\nx\n# A\ny", "a.md")

        assert len({c.id for c in chunks}) == 2

    def test_block_id_depends_on_path(self):
        assert make_block_id("a.md", "Intro", 0) != make_block_id("b.md", "Intro", 0)
        assert make_block_id("a.md", "Intro", 0).startswith("block-")
        assert len(make_block_id("a.md", "Intro", 0)) == len("block-") + 16

    def test_keywords_are_extracted(self):
        chunks = chunk_markdown("hello hello world", "a.md")

        assert chunks[0].keywords[:2] == ["hello", "world"]
        assert chunks[0].embedding == []
