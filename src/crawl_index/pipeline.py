"""Corpus → index pipeline: load, chunk, embed, build, persist.

Each stage is a plain function over typed values, composed by
:func:`generate_index`.  One call owns all of its intermediate state; the
only thing that outlives it is the published artifact directory.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from crawl_index.config import Settings, settings
from crawl_index.errors import RateLimited
from crawl_index.indexing.builder import build_index
from crawl_index.indexing.persister import ArtifactNamer, apersist_index
from crawl_index.ingestion.chunker import chunk_documents
from crawl_index.ingestion.embedder import ProviderEmbedder, embedding_model_name, get_embeddings
from crawl_index.ingestion.loader import aload_corpus

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

DIMENSION_SAMPLE_TEXT = "dimension"


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff applied to rate-limited embedding batches."""

    max_attempts: int = 5
    min_wait: float = 1.0
    max_wait: float = 30.0

    @classmethod
    def from_settings(cls, cfg: Settings) -> RetryPolicy:
        return cls(
            max_attempts=cfg.embed_max_attempts,
            min_wait=cfg.embed_backoff_min_seconds,
            max_wait=cfg.embed_backoff_max_seconds,
        )


@dataclass(frozen=True)
class IndexingResult:
    """Summary of one successful pipeline run."""

    artifact: Path
    documents: int
    chunks: int
    dimension: int
    elapsed_seconds: float


class wait_retry_after(wait_base):  # noqa: N801  (tenacity naming)
    """Wait for the provider's ``Retry-After`` hint, else fall back.

    The hint is capped at *max_wait*.
    """

    def __init__(self, fallback: wait_base, max_wait: float) -> None:
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimited) and exc.retry_after is not None:
            return max(0.0, min(exc.retry_after, self.max_wait))
        return self.fallback(retry_state)


def _log_retry(retry_state: RetryCallState) -> None:
    logger.warning(
        "Embedding batch rate limited, retry %d after: %s",
        retry_state.attempt_number,
        retry_state.outcome.exception() if retry_state.outcome else "unknown",
    )


async def embed_chunks(
    embedder: ProviderEmbedder,
    texts: list[str],
    *,
    batch_size: int = 64,
    retry: RetryPolicy | None = None,
) -> list[list[float]]:
    """Embed *texts* batch by batch, preserving order.

    A :class:`RateLimited` batch is retried up to ``retry.max_attempts``,
    waiting for the provider's ``Retry-After`` when given and backing off
    exponentially otherwise; the last ``RateLimited`` is re-raised.  Every
    other provider error aborts immediately.  No further batches are sent
    once the surrounding task is cancelled.
    """
    retry = retry or RetryPolicy()
    vectors: list[list[float]] = []
    dim: int | None = None

    for start in range(0, len(texts), batch_size):
        batch = texts[start : start + batch_size]
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retry.max_attempts),
            wait=wait_retry_after(
                wait_exponential(multiplier=retry.min_wait, min=retry.min_wait, max=retry.max_wait),
                max_wait=retry.max_wait,
            ),
            retry=retry_if_exception_type(RateLimited),
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                batch_vectors = await embedder.embed_batch(batch, expected_dimension=dim)
        vectors.extend(batch_vectors)
        if dim is None and batch_vectors:
            dim = len(batch_vectors[0])
        logger.debug("embedded %d / %d", len(vectors), len(texts))

    return vectors


async def generate_index(
    corpus_path: str | Path,
    *,
    embeddings: Embeddings | None = None,
    cfg: Settings = settings,
    index_root: str | Path | None = None,
    namer: ArtifactNamer | None = None,
) -> IndexingResult:
    """Turn the crawl output at *corpus_path* into a persisted FAISS artifact.

    Parameters
    ----------
    corpus_path:
        JSON array of ``{html, title, url}`` records.
    embeddings:
        Embedding model; defaults to the provider named in *cfg*.
    cfg:
        Chunking, batching, retry and index settings.
    index_root:
        Storage root; defaults to ``cfg.index_root``.

    Raises
    ------
    IndexingError
        Any stage failure.  Nothing is persisted unless every stage before
        the persister succeeded.
    """
    t0 = time.monotonic()
    embeddings = embeddings if embeddings is not None else get_embeddings(cfg)
    root = Path(index_root if index_root is not None else cfg.index_root)

    try:
        documents = await aload_corpus(corpus_path)

        chunks = chunk_documents(
            documents, chunk_size=cfg.chunk_size, chunk_overlap=cfg.chunk_overlap
        )

        embedder = ProviderEmbedder(embeddings, timeout=cfg.embed_timeout_seconds)
        policy = RetryPolicy.from_settings(cfg)
        vectors = await embed_chunks(
            embedder,
            [c.page_content for c in chunks],
            batch_size=cfg.embed_batch_size,
            retry=policy,
        )

        dimension = cfg.embedding_dimension
        if not vectors and dimension is None:
            # Nothing to measure; ask the provider for one vector.
            (sample,) = await embed_chunks(embedder, [DIMENSION_SAMPLE_TEXT], retry=policy)
            dimension = len(sample)
            logger.info("Empty corpus, provider dimension is %d", dimension)

        index = build_index(
            vectors,
            chunks,
            embeddings=embeddings,
            distance_strategy=cfg.distance_strategy,
            dimension=dimension,
            embedding_model=embedding_model_name(cfg),
            chunk_size=cfg.chunk_size,
            chunk_overlap=cfg.chunk_overlap,
        )
        artifact = await apersist_index(index, root, namer=namer)
    except asyncio.CancelledError:
        logger.warning("Index generation for %s cancelled", corpus_path)
        raise

    elapsed = time.monotonic() - t0
    logger.info(
        "Indexed %d documents / %d chunks into %s in %.1fs",
        len(documents),
        len(chunks),
        artifact,
        elapsed,
    )
    return IndexingResult(
        artifact=artifact,
        documents=len(documents),
        chunks=len(chunks),
        dimension=index.manifest.dimension,
        elapsed_seconds=round(elapsed, 3),
    )
