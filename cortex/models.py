"""Data models for the retrieval engine and agent loop.

This module defines Pydantic models for chunks, search results,
conversation messages, tool traffic and the persisted index snapshot.
"""

from pathlib import PurePosixPath
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Chunk(BaseModel):
    """Independently retrievable slice of a markdown document.

    Attributes:
        id: Unique chunk identifier (``{file_path}::{block_id}``).
        content: Chunk text content.
        file_path: Vault path of the document this chunk belongs to.
        block_id: Block label used in citation markers.
        heading: Section heading the chunk was cut from.
        embedding: Embedding vector for the chunk.
        keywords: Most frequent normalized tokens of the chunk.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str
    content: str
    file_path: str = Field(alias="filePath")
    block_id: str = Field(alias="blockId")
    heading: str = "Document"
    embedding: list[float] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    @property
    def citation(self) -> str:
        """Wikilink pointing at this chunk's block."""
        name = PurePosixPath(self.file_path).name
        if name.lower().endswith(".md"):
            name = name[:-3]
        return f"[[{name}#^{self.block_id}]]"


class SearchResult(BaseModel):
    """Chunk paired with a relevance score.

    Attributes:
        chunk: Matched chunk.
        score: Backend score, or fused score after hybrid retrieval.
    """

    chunk: Chunk
    score: float


class ToolCall(BaseModel):
    """Structured tool request issued by a model.

    Attributes:
        id: Provider-issued call identifier.
        name: Tool name.
        arguments: Decoded JSON arguments.
    """

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    """Role-tagged conversation message.

    Attributes:
        role: Message role.
        content: Message text.
        name: Tool name for tool-role messages.
        tool_call_id: Identifier of the call a tool message answers.
        tool_calls: Calls recorded on an assistant message.
    """

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    name: str | None = None
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] = Field(default_factory=list)


class ModelResponse(BaseModel):
    """Normalized response from any model backend.

    Attributes:
        text: Generated text.
        tool_calls: Tool calls requested by the model.
        provider: Backend that produced the response.
        failed: True when the text is a placeholder for a failed request.
        metadata: Provider-specific extras (cache ids, usage).
    """

    text: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)
    provider: str | None = None
    failed: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class ToolSchema(BaseModel):
    """Tool catalog entry sent to the tool-routing model."""

    name: str
    description: str
    parameters: dict[str, Any]


class ToolResult(BaseModel):
    """Outcome of a tool execution, fed back as an observation."""

    name: str
    success: bool
    output: str
    data: Any = None


class IndexSnapshot(BaseModel):
    """Serialized form of the binding table and chunk store.

    Attributes:
        bindings: ``[path, [chunk_id, ...]]`` pairs.
        chunks: Every chunk held by the index.
    """

    bindings: list[tuple[str, list[str]]] = Field(default_factory=list)
    chunks: list[Chunk] = Field(default_factory=list)
