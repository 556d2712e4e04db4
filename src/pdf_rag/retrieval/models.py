"""Domain models for vector records, query matches and source-tagged context."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class VectorRecord(BaseModel):
    """The persisted unit of the vector index.

    Attributes
    ----------
    id:
        ``"<document key>-<zero-padded chunk index>"`` — unique within a
        namespace and ordered like the chunks it came from.
    values:
        The embedding vector.
    metadata:
        ``text``, ``source`` (document key), ``source_name``,
        ``page_number`` and ``chunk_index``.  Values must be flat
        ``str`` / ``int`` / ``float`` / ``bool``.
    """

    id: str
    values: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def text(self) -> str:
        return self.metadata.get("text", "")


class QueryMatch(BaseModel):
    """A single nearest-neighbour hit returned by a vector store."""

    id: str
    score: float
    text: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class ContextSnippet(BaseModel):
    """A retrieved passage tagged with the document it came from.

    Snippets from several namespaces are concatenated to build the prompt
    context handed to the text-generation provider.
    """

    source: str
    source_name: str
    text: str
    score: float | None = None
    page_number: int | None = None

    def render(self) -> str:
        """Return the ``[From <name>]: <text>`` line used in prompts."""
        return f"[From {self.source_name}]: {self.text}"

    def __str__(self) -> str:  # noqa: D105
        return self.render()


def assemble_context(snippets: list[ContextSnippet]) -> str:
    """Join snippets into the ``[From <name>]: <text>`` block used in prompts."""
    return "\n".join(s.render() for s in snippets if s.text)
