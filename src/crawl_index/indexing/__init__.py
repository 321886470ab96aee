"""
Indexing — FAISS index assembly and artifact persistence.

Public surface
--------------
- :func:`build_index` — vectors + chunks → :class:`VectorIndex`.
- :func:`persist_index` / :func:`apersist_index` — write a timestamp-named artifact.
- :func:`load_index` — reopen an artifact with its recorded distance strategy.
- :func:`list_artifacts` — complete artifacts under a storage root, oldest first.
"""

from crawl_index.indexing.builder import IndexManifest, VectorIndex, build_index
from crawl_index.indexing.persister import (
    ArtifactNamer,
    apersist_index,
    list_artifacts,
    load_index,
    persist_index,
)

__all__ = [
    "ArtifactNamer",
    "IndexManifest",
    "VectorIndex",
    "apersist_index",
    "build_index",
    "list_artifacts",
    "load_index",
    "persist_index",
]
