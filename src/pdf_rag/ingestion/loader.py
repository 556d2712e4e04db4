"""PDF loading — thin wrapper around LangChain's ``PyPDFLoader``."""

from __future__ import annotations

import logging
from pathlib import Path

from langchain_community.document_loaders import PyPDFLoader

from pdf_rag.errors import ParseError
from pdf_rag.ingestion.models import Page

logger = logging.getLogger(__name__)

PAGE_SEPARATOR = "\n\n"
_PDF_MAGIC = b"%PDF-"


class PdfParser:
    """Extract page-level text from a PDF file."""

    def parse(self, path: str | Path) -> list[Page]:
        """Return the non-empty pages of *path* in document order.

        Parameters
        ----------
        path:
            Local PDF file, usually a scratch file from the fetcher.

        Returns
        -------
        list[Page]
            1-based page numbers with whitespace-trimmed text.  Pages that
            are empty after trimming are dropped.

        Raises
        ------
        ParseError
            The file is not a PDF or pypdf cannot read it.
        """
        path = Path(path)
        try:
            with open(path, "rb") as fh:
                header = fh.read(1024)
        except OSError as exc:
            raise ParseError(f"Cannot read {path.name}: {exc}") from exc
        if _PDF_MAGIC not in header:
            raise ParseError(f"{path.name} is not a PDF document")

        try:
            documents = PyPDFLoader(str(path)).load()
        except Exception as exc:
            raise ParseError(f"Corrupt PDF {path.name}: {exc}") from exc

        pages: list[Page] = []
        for position, doc in enumerate(documents):
            text = doc.page_content.strip()
            if not text:
                continue
            page_index = doc.metadata.get("page", position)
            pages.append(Page(page_number=int(page_index) + 1, text=text))

        logger.info("Parsed %s: %d pages, %d with text", path.name, len(documents), len(pages))
        return pages


def join_pages(pages: list[Page]) -> tuple[str, list[tuple[int, int]]]:
    """Concatenate page texts with a blank line between pages.

    Returns the full text together with ``(start offset, page number)``
    for every page, which the chunker uses for page attribution.
    """
    offsets: list[tuple[int, int]] = []
    parts: list[str] = []
    position = 0
    for page in pages:
        offsets.append((position, page.page_number))
        parts.append(page.text)
        position += len(page.text) + len(PAGE_SEPARATOR)
    return PAGE_SEPARATOR.join(parts), offsets
