"""Text chunking utilities.

This module splits markdown notes into heading-aware, overlapping
word windows.
"""

import logging
import re
from typing import List, Optional, Tuple

from cortex.models import Chunk
from cortex.rag.text_utils import extract_keywords, fnv1a_64

logger = logging.getLogger(__name__)

PREAMBLE_LABEL = "Preamble"
DOCUMENT_LABEL = "Document"

_FENCE_RE = re.compile(r"^\s*(```|~~~)")
_CLOSING_HASHES_RE = re.compile(r"\s+#+\s*$")


def make_block_id(file_path: str, label: str, ordinal: int) -> str:
    """Deterministic block label for the ``ordinal``-th chunk of a file."""
    return f"block-{fnv1a_64(f'{file_path}-{label}-{ordinal}'):016x}"


def split_sections(content: str, heading_depth: int = 6) -> List[Tuple[str, str]]:
    """Split markdown into ``(label, body)`` sections at heading lines.

    Args:
        content: Raw markdown text.
        heading_depth: Deepest heading level (1-6) that opens a section.

    Returns:
        Sections in document order; sections with blank bodies are omitted.
    """
    depth = min(6, max(1, heading_depth))
    heading_re = re.compile(rf"^(#{{1,{depth}}})\s+(.*)$")

    sections: List[Tuple[Optional[str], str]] = []
    label: Optional[str] = None
    buffer: List[str] = []
    in_fence = False
    saw_heading = False

    def push_section() -> None:
        body = "\n".join(buffer).strip()
        if body:
            sections.append((label, body))
        buffer.clear()

    for line in content.splitlines():
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            buffer.append(line)
            continue
        match = None if in_fence else heading_re.match(line)
        if match:
            push_section()
            saw_heading = True
            title = _CLOSING_HASHES_RE.sub("", match.group(2)).strip()
            label = title or label
            continue
        buffer.append(line)
    push_section()

    leading = PREAMBLE_LABEL if saw_heading else DOCUMENT_LABEL
    return [(name or leading, body) for name, body in sections]


def chunk_markdown(
    content: str,
    file_path: str,
    chunk_size: int = 240,
    chunk_overlap: int = 40,
    max_chunks: int = 64,
    heading_depth: int = 6,
) -> List[Chunk]:
    """Split a markdown note into overlapping word windows per section.

    Args:
        content: Raw markdown text.
        file_path: Vault path of the note; part of every chunk id.
        chunk_size: Target words per chunk.
        chunk_overlap: Words shared by consecutive windows of a section.
        max_chunks: Cap on chunks for the whole file.
        heading_depth: Deepest heading level that opens a section.

    Returns:
        Chunks without embeddings, in document order.
    """
    size = max(1, chunk_size)
    stride = max(1, size - chunk_overlap)
    chunks: List[Chunk] = []
    ordinal = 0

    for label, body in split_sections(content, heading_depth):
        words = body.split()
        cursor = 0
        while cursor < len(words) and len(chunks) < max_chunks:
            text = " ".join(words[cursor : cursor + size])
            block_id = make_block_id(file_path, label, ordinal)
            ordinal += 1
            chunks.append(
                Chunk(
                    id=f"{file_path}::{block_id}",
                    content=text,
                    file_path=file_path,
                    block_id=block_id,
                    heading=label,
                    keywords=extract_keywords(text),
                )
            )
            if cursor + size >= len(words):
                break
            cursor += stride
        if len(chunks) >= max_chunks:
            logger.debug(f"Chunk cap {max_chunks} reached for {file_path}")
            break

    return chunks
