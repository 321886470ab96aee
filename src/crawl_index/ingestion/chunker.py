"""Text chunking with exact, boundary-aware overlap."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from typing import Any

from langchain_core.documents import Document
from langchain_text_splitters import TextSplitter

logger = logging.getLogger(__name__)

# Priority order: paragraph, line, sentence, word.
DEFAULT_SEPARATORS = ["\n\n", "\n", ". ", " "]


class BoundaryAwareSplitter(TextSplitter):
    """Fixed-window splitter that prefers natural boundaries near the limit.

    Unlike LangChain's ``RecursiveCharacterTextSplitter`` this splitter never
    strips or drops characters: chunk ``i + 1`` always starts exactly
    ``chunk_overlap`` characters before chunk ``i`` ends, so dropping the
    first ``chunk_overlap`` characters of every chunk but the first and
    concatenating rebuilds the input verbatim.

    Parameters
    ----------
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Exact number of characters shared by consecutive chunks.
    separators:
        Boundaries to break on, in priority order.  A boundary is only
        accepted in the second half of the window so a high-priority
        separator early in the text does not produce a tiny chunk.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 100,
        separators: list[str] | None = None,
        **kwargs: Any,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size ({chunk_size}) must be > 0")
        if not 0 <= chunk_overlap < chunk_size:
            raise ValueError(
                f"chunk_overlap ({chunk_overlap}) must be >= 0 and < chunk_size ({chunk_size})"
            )
        kwargs.setdefault("strip_whitespace", False)
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, **kwargs)
        self._separators = [s for s in (separators or DEFAULT_SEPARATORS) if s]

    def iter_spans(self, text: str) -> Iterator[tuple[int, int]]:
        """Yield ``(start, end)`` offsets of each chunk of *text*."""
        length = len(text)
        start = 0
        while start < length:
            end = min(start + self._chunk_size, length)
            if end < length:
                end = self._find_break(text, start, end)
            yield start, end
            if end >= length:
                return
            start = end - self._chunk_overlap

    def _find_break(self, text: str, start: int, limit: int) -> int:
        # Any break past `floor` leaves the next window strictly ahead of `start`.
        floor = start + max(self._chunk_overlap + 1, self._chunk_size // 2)
        for sep in self._separators:
            idx = text.rfind(sep, floor, limit)
            if idx != -1:
                return idx + len(sep)
        return limit

    def split_text(self, text: str) -> list[str]:
        return [text[start:end] for start, end in self.iter_spans(text)]

    def iter_documents(self, documents: Iterable[Document]) -> Iterator[Document]:
        """Lazily chunk *documents*, copying their metadata onto every chunk.

        Each chunk additionally carries ``chunk_index`` (ordinal within its
        document) and ``start_index`` (character offset into the content).
        """
        for doc in documents:
            text = doc.page_content
            for idx, (start, end) in enumerate(self.iter_spans(text)):
                yield Document(
                    page_content=text[start:end],
                    metadata={**doc.metadata, "chunk_index": idx, "start_index": start},
                )


def iter_chunks(
    documents: Iterable[Document],
    chunk_size: int = 1000,
    chunk_overlap: int = 100,
) -> Iterator[Document]:
    """Lazy counterpart of :func:`chunk_documents`."""
    splitter = BoundaryAwareSplitter(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return splitter.iter_documents(documents)


def chunk_documents(
    documents: list[Document],
    chunk_size: int = 1000,
    chunk_overlap: int = 100,
) -> list[Document]:
    """Split *documents* into overlapping chunks for embedding.

    Parameters
    ----------
    documents:
        Source documents produced by the loader.
    chunk_size:
        Maximum number of characters per chunk.
    chunk_overlap:
        Number of overlapping characters between consecutive chunks.

    Returns
    -------
    list[Document]
        Chunks in document order, then content order.
    """
    chunks = list(iter_chunks(documents, chunk_size=chunk_size, chunk_overlap=chunk_overlap))
    logger.info("Produced %d chunks from %d documents", len(chunks), len(documents))
    return chunks
