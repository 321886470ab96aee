"""Durable, collision-free storage of index artifacts.

Layout under the storage root::

    <root>/
        2026-10-17T05-43-12-345Z.faiss/      complete artifact
            index.faiss
            index.pkl
            manifest.json
        .2026-10-17T05-43-13-001Z.faiss.partial-1a2b3c4d/   write in progress

An artifact is written under a hidden ``.partial-`` name and renamed into
place only once every file is on disk, so a name ending in ``.faiss`` always
denotes a complete artifact.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import threading
import warnings
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING
from uuid import uuid4

from langchain_community.vectorstores import FAISS
from pydantic import ValidationError

from crawl_index.errors import InvariantViolation, NotFoundError, ParseError, WriteError
from crawl_index.indexing.builder import DISTANCE_STRATEGIES, IndexManifest, VectorIndex

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)

ARTIFACT_SUFFIX = ".faiss"
MANIFEST_NAME = "manifest.json"
PARTIAL_MARKER = ".partial-"


def format_stamp(moment: datetime) -> str:
    """UTC ISO-8601 with milliseconds, made filesystem safe.

    ``2026-10-17T05:43:12.345Z`` becomes ``2026-10-17T05-43-12-345Z``.
    Names sort lexicographically in chronological order.
    """
    moment = moment.astimezone(timezone.utc)
    iso = f"{moment:%Y-%m-%dT%H:%M:%S}.{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


class ArtifactNamer:
    """Hands out strictly increasing millisecond timestamps.

    Two calls within the same millisecond get consecutive milliseconds, so
    names never collide within one process and still sort by creation.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._last: datetime | None = None
        self._lock = threading.Lock()

    def next_stamp(self) -> str:
        with self._lock:
            now = self._clock().astimezone(timezone.utc)
            now = now.replace(microsecond=now.microsecond // 1000 * 1000)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(milliseconds=1)
            self._last = now
            return format_stamp(now)

    def next_name(self) -> str:
        return self.next_stamp() + ARTIFACT_SUFFIX


_default_namer = ArtifactNamer()


def _write_artifact(index: VectorIndex, target: Path) -> None:
    index.store.save_local(str(target))
    (target / MANIFEST_NAME).write_text(index.manifest.model_dump_json(indent=2), encoding="utf-8")


def persist_index(
    index: VectorIndex,
    root: str | Path,
    *,
    namer: ArtifactNamer | None = None,
) -> Path:
    """Serialise *index* to a new timestamp-named artifact under *root*.

    Returns
    -------
    Path
        The published artifact directory.

    Raises
    ------
    WriteError
        On any storage failure.  The partial directory is removed and the
        final name is never created.
    """
    namer = namer or _default_namer
    root = Path(root)
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise WriteError(f"Cannot create storage root {root}: {exc}", details={"root": str(root)}) from exc

    name = namer.next_name()
    while (root / name).exists():
        name = namer.next_name()
    final = root / name
    partial = root / f".{name}{PARTIAL_MARKER}{uuid4().hex[:8]}"

    try:
        _write_artifact(index, partial)
        os.rename(partial, final)
    except BaseException as exc:
        shutil.rmtree(partial, ignore_errors=True)
        if isinstance(exc, (OSError, RuntimeError)):
            raise WriteError(
                f"Failed to write index artifact {final}: {exc}",
                details={"artifact": str(final)},
            ) from exc
        raise

    logger.info("Persisted index artifact %s (%d vectors)", final, len(index))
    return final


async def apersist_index(
    index: VectorIndex,
    root: str | Path,
    *,
    namer: ArtifactNamer | None = None,
) -> Path:
    """Async variant of :func:`persist_index`; the write runs in a worker thread."""
    return await asyncio.to_thread(persist_index, index, root, namer=namer)


def is_complete_artifact(path: Path) -> bool:
    return (
        path.is_dir()
        and path.name.endswith(ARTIFACT_SUFFIX)
        and not path.name.startswith(".")
        and (path / MANIFEST_NAME).is_file()
    )


def list_artifacts(root: str | Path) -> list[Path]:
    """Complete artifacts under *root*, oldest first."""
    root = Path(root)
    if not root.is_dir():
        return []
    return sorted((p for p in root.iterdir() if is_complete_artifact(p)), key=lambda p: p.name)


def load_index(path: str | Path, embeddings: Embeddings) -> VectorIndex:
    """Reopen an artifact with the distance strategy recorded at build time.

    Raises
    ------
    NotFoundError
        If *path* is not a complete artifact.
    ParseError
        If the manifest cannot be read.
    InvariantViolation
        If the stored vector count disagrees with the manifest.
    """
    path = Path(path)
    if not is_complete_artifact(path):
        raise NotFoundError(str(path))

    try:
        manifest = IndexManifest.model_validate_json((path / MANIFEST_NAME).read_bytes())
    except ValidationError as exc:
        raise ParseError(f"Invalid manifest in {path}", details={"path": str(path)}) from exc

    with warnings.catch_warnings():
        warnings.filterwarnings("ignore", message="Normalizing L2 is not applicable")
        store = FAISS.load_local(
            str(path),
            embeddings,
            allow_dangerous_deserialization=True,
            distance_strategy=DISTANCE_STRATEGIES[manifest.distance_strategy],
            normalize_L2=manifest.normalize_l2,
        )

    if store.index.ntotal != manifest.size:
        raise InvariantViolation(
            f"Artifact {path.name} holds {store.index.ntotal} vectors, manifest says {manifest.size}"
        )
    return VectorIndex(store=store, manifest=manifest)
