"""Assemble embedded chunks into an in-memory FAISS index."""

from __future__ import annotations

import logging
import warnings
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Literal

import faiss
from langchain_community.docstore.in_memory import InMemoryDocstore
from langchain_community.vectorstores import FAISS
from langchain_community.vectorstores.utils import DistanceStrategy
from pydantic import BaseModel, Field

from crawl_index.errors import DimensionMismatch, InvariantViolation

if TYPE_CHECKING:
    from langchain_core.documents import Document
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

MetricName = Literal["cosine", "euclidean"]

DISTANCE_STRATEGIES: dict[str, DistanceStrategy] = {
    "cosine": DistanceStrategy.COSINE,
    "euclidean": DistanceStrategy.EUCLIDEAN_DISTANCE,
}


class IndexManifest(BaseModel):
    """Build-time facts that must travel with the index.

    The distance strategy is part of the persisted schema: reopening an
    index with a different metric silently produces wrong rankings.
    """

    format_version: int = 1
    distance_strategy: MetricName = "cosine"
    normalize_l2: bool = True
    dimension: int = Field(gt=0)
    size: int = Field(ge=0)
    embedding_model: str = ""
    chunk_size: int | None = None
    chunk_overlap: int | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class VectorIndex:
    """A complete, immutable index: FAISS store plus its manifest."""

    store: FAISS
    manifest: IndexManifest

    def __len__(self) -> int:
        return self.store.index.ntotal


def make_store(
    embeddings: Embeddings,
    index: faiss.Index,
    *,
    distance_strategy: MetricName,
) -> FAISS:
    """Wrap an empty FAISS index in a LangChain store configured for *distance_strategy*."""
    # Cosine is L2 search over unit vectors; silence LangChain's normalisation warning.
    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", message="Normalizing L2 is not applicable")
        return FAISS(
            embedding_function=embeddings,
            index=index,
            docstore=InMemoryDocstore(),
            index_to_docstore_id={},
            distance_strategy=DISTANCE_STRATEGIES[distance_strategy],
            normalize_L2=distance_strategy == "cosine",
        )


def build_index(
    vectors: Sequence[Sequence[float]],
    chunks: Sequence[Document],
    *,
    embeddings: Embeddings,
    distance_strategy: MetricName = "cosine",
    dimension: int | None = None,
    embedding_model: str = "",
    chunk_size: int | None = None,
    chunk_overlap: int | None = None,
) -> VectorIndex:
    """Build a FAISS index from position-aligned *vectors* and *chunks*.

    Parameters
    ----------
    vectors:
        One embedding per chunk, all of the same length.
    chunks:
        The chunk documents; their metadata is stored alongside each vector.
    embeddings:
        Embedding model used later to embed queries against this index.
    distance_strategy:
        ``"cosine"`` (vectors are L2-normalised) or ``"euclidean"``.
    dimension:
        Vector size for an empty index.  Ignored when *vectors* is non-empty.

    Raises
    ------
    InvariantViolation
        When the inputs are not the same length, or an empty index is
        requested without a *dimension*.
    DimensionMismatch
        When the vectors do not all share one dimensionality.
    """
    if distance_strategy not in DISTANCE_STRATEGIES:
        raise ValueError(f"Unsupported distance strategy: {distance_strategy!r}")
    if len(vectors) != len(chunks):
        raise InvariantViolation(
            f"Got {len(vectors)} vectors for {len(chunks)} chunks",
            details={"vectors": len(vectors), "chunks": len(chunks)},
        )

    if vectors:
        dim = len(vectors[0])
        for pos, vec in enumerate(vectors):
            if len(vec) != dim:
                raise DimensionMismatch(dim, len(vec), position=pos)
    elif dimension is None:
        raise InvariantViolation("Cannot size an empty index without an explicit dimension")
    else:
        dim = dimension

    store = make_store(embeddings, faiss.IndexFlatL2(dim), distance_strategy=distance_strategy)
    if chunks:
        store.add_embeddings(
            text_embeddings=[(c.page_content, list(v)) for c, v in zip(chunks, vectors)],
            metadatas=[dict(c.metadata) for c in chunks],
        )

    if store.index.ntotal != len(chunks):
        raise InvariantViolation(
            f"Index holds {store.index.ntotal} vectors after adding {len(chunks)} chunks"
        )

    manifest = IndexManifest(
        distance_strategy=distance_strategy,
        normalize_l2=distance_strategy == "cosine",
        dimension=dim,
        size=len(chunks),
        embedding_model=embedding_model,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
    )
    logger.info(
        "Built %s index with %d vectors (dim=%d)", distance_strategy, manifest.size, dim
    )
    return VectorIndex(store=store, manifest=manifest)
