"""Corpus loader — turns a crawler output file into LangChain documents."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from langchain_core.documents import Document
from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from crawl_index.errors import NotFoundError, ParseError

logger = logging.getLogger(__name__)


class CorpusRecord(BaseModel):
    """One crawled page as written by the crawler.

    Unknown keys are ignored so newer crawler output stays readable.
    """

    model_config = ConfigDict(extra="ignore")

    html: str
    title: str
    url: str

    def to_document(self) -> Document:
        return Document(page_content=self.html, metadata={"title": self.title, "url": self.url})


_CORPUS_ADAPTER = TypeAdapter(list[CorpusRecord])


def parse_corpus(raw: str | bytes, *, source: str = "<memory>") -> list[Document]:
    """Validate a JSON array of crawl records and convert it to documents.

    Raises
    ------
    ParseError
        If *raw* is not JSON, not an array, or a record lacks ``html``,
        ``title`` or ``url``.
    """
    try:
        records = _CORPUS_ADAPTER.validate_json(raw)
    except ValidationError as exc:
        errors = exc.errors(include_url=False)
        first = errors[0] if errors else {}
        raise ParseError(
            f"Malformed corpus in {source}: {first.get('msg', exc)}",
            details={"path": source, "errors": len(errors), "location": list(first.get("loc", ()))},
        ) from exc
    return [rec.to_document() for rec in records]


def load_corpus(path: str | Path) -> list[Document]:
    """Read the crawl output at *path* and return its documents in file order.

    Raises
    ------
    NotFoundError
        If *path* does not exist or is not a regular file.
    ParseError
        If the content is not a well-formed corpus.
    """
    path = Path(path)
    try:
        raw = path.read_bytes()
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError) as exc:
        raise NotFoundError(str(path)) from exc
    documents = parse_corpus(raw, source=str(path))
    logger.info("Loaded %d documents from %s", len(documents), path)
    return documents


async def aload_corpus(path: str | Path) -> list[Document]:
    """Async variant of :func:`load_corpus`; the read runs in a worker thread."""
    return await asyncio.to_thread(load_corpus, path)
