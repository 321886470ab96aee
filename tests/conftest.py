"""Shared pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from pathlib import Path

import httpx
import openai
import pytest
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings

from crawl_index.config import Settings

EMBED_DIM = 8


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


class ScriptedEmbeddings(Embeddings):
    """Deterministic embeddings whose async calls can be scripted to fail.

    ``failures`` maps a 1-based call number to the exception that call raises.
    """

    def __init__(self, size: int = EMBED_DIM, failures: dict[int, Exception] | None = None) -> None:
        self._inner = DeterministicFakeEmbedding(size=size)
        self.failures = dict(failures or {})
        self.calls = 0
        self.batches: list[list[str]] = []

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._inner.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        return self._inner.embed_query(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        self.batches.append(list(texts))
        exc = self.failures.get(self.calls)
        if exc is not None:
            raise exc
        return self.embed_documents(texts)


def _rate_limit_error(retry_after: str | None = None) -> openai.RateLimitError:
    headers = {"retry-after": retry_after} if retry_after is not None else {}
    response = httpx.Response(
        429,
        headers=headers,
        request=httpx.Request("POST", "https://example.openai.azure.com/embeddings"),
    )
    return openai.RateLimitError("Rate limit reached", response=response, body=None)


@pytest.fixture()
def fake_embeddings() -> ScriptedEmbeddings:
    return ScriptedEmbeddings()


@pytest.fixture()
def make_embeddings() -> type[ScriptedEmbeddings]:
    return ScriptedEmbeddings


@pytest.fixture()
def rate_limit_error() -> Callable[..., openai.RateLimitError]:
    return _rate_limit_error


@pytest.fixture()
def index_root(tmp_path: Path) -> Path:
    return tmp_path / "faiss"


@pytest.fixture()
def test_settings(index_root: Path) -> Settings:
    """Settings with small batches, no backoff sleeps, and a temp storage root."""
    return Settings(
        embedding_provider="huggingface",
        embedding_dimension=EMBED_DIM,
        embed_batch_size=4,
        embed_timeout_seconds=5.0,
        embed_max_attempts=3,
        embed_backoff_min_seconds=0,
        embed_backoff_max_seconds=0,
        chunk_size=1000,
        chunk_overlap=100,
        index_root=str(index_root),
    )


@pytest.fixture()
def write_corpus(tmp_path: Path) -> Callable[[list[dict]], Path]:
    """Write crawler-style records to a JSON file and return its path."""

    def _write(records: list[dict], name: str = "output.json") -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(records), encoding="utf-8")
        return path

    return _write


@pytest.fixture()
def sample_records() -> list[dict]:
    return [
        {
            "title": "Getting started",
            "url": "https://docs.example.com/start",
            "html": "Install the package.\n\nThen run the crawler against your site. " * 20,
        },
        {
            "title": "Configuration",
            "url": "https://docs.example.com/config",
            "html": "Every option can be set from the environment.",
        },
    ]


class GatedEmbeddings(Embeddings):
    """Blocks inside the first provider call until cancelled."""

    def __init__(self, size: int = EMBED_DIM) -> None:
        self._inner = DeterministicFakeEmbedding(size=size)
        self.started = asyncio.Event()
        self.calls = 0

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self._inner.embed_documents(texts)

    def embed_query(self, text: str) -> list[float]:
        return self._inner.embed_query(text)

    async def aembed_documents(self, texts: list[str]) -> list[list[float]]:
        self.calls += 1
        self.started.set()
        await asyncio.Event().wait()
        return self.embed_documents(texts)


@pytest.fixture()
def gated_embeddings() -> GatedEmbeddings:
    return GatedEmbeddings()
