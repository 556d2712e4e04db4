"""Text chunking strategies."""

from __future__ import annotations

import bisect
import logging

from langchain_text_splitters import RecursiveCharacterTextSplitter

from pdf_rag.errors import ChunkingError
from pdf_rag.ingestion.models import Chunk

logger = logging.getLogger(__name__)

# Paragraph, line, sentence end, clause, word, then a hard cut.
DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ".", "!", "?", ",", " ", "")


class TextChunker:
    """Split document text into overlapping, size-bounded chunks.

    Parameters
    ----------
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of characters consecutive chunks may share.
    separators:
        Split boundaries, in priority order.  Separators stay attached to
        the end of the piece they terminate.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: tuple[str, ...] = DEFAULT_SEPARATORS,
    ) -> None:
        if chunk_size <= 0 or chunk_overlap < 0:
            raise ChunkingError(
                f"chunk_size ({chunk_size}) must be > 0 and chunk_overlap ({chunk_overlap}) >= 0"
            )
        if chunk_overlap >= chunk_size:
            raise ChunkingError(
                f"chunk_overlap ({chunk_overlap}) must be < chunk_size ({chunk_size})"
            )
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            length_function=len,
            separators=list(separators),
            keep_separator="end",
            add_start_index=True,
        )

    def split(
        self,
        full_text: str,
        source_key: str,
        page_offsets: list[tuple[int, int]] | None = None,
    ) -> list[Chunk]:
        """Split *full_text* into ordered chunks attributed to *source_key*.

        Parameters
        ----------
        full_text:
            Concatenated page text of one document.
        source_key:
            Storage key recorded on every chunk.
        page_offsets:
            ``(start offset, page number)`` pairs from
            :func:`~pdf_rag.ingestion.loader.join_pages`.  When omitted,
            the page is approximated as ``index // 2 + 1``.

        Returns
        -------
        list[Chunk]
            Empty for empty or whitespace-only input.
        """
        if not full_text.strip():
            return []

        try:
            documents = self._splitter.create_documents([full_text], metadatas=[{"source": source_key}])
        except Exception as exc:
            raise ChunkingError(f"Splitting {source_key!r} failed: {exc}") from exc

        chunks = [
            Chunk(
                text=doc.page_content,
                source=source_key,
                index=index,
                page_number=_page_for(index, doc.metadata.get("start_index", 0), page_offsets),
                start_index=doc.metadata.get("start_index", 0),
            )
            for index, doc in enumerate(documents)
        ]
        logger.info(
            "Split %s into %d chunks (size=%d, overlap=%d)",
            source_key, len(chunks), self.chunk_size, self.chunk_overlap,
        )
        return chunks


def _page_for(index: int, start: int, page_offsets: list[tuple[int, int]] | None) -> int:
    if not page_offsets:
        return index // 2 + 1
    starts = [offset for offset, _ in page_offsets]
    position = max(bisect.bisect_right(starts, start) - 1, 0)
    return page_offsets[position][1]
