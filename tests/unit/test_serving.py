"""Unit tests for the serving layer."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from crawl_index.errors import ProviderUnavailable
from crawl_index.pipeline import generate_index
from crawl_index.serving.app import (
    ClientDisconnected,
    _run_until_disconnect,
    app,
    get_embedding_model,
    get_settings,
)


@pytest.fixture()
def client(test_settings, fake_embeddings) -> Iterator[TestClient]:
    app.dependency_overrides[get_settings] = lambda: test_settings
    app.dependency_overrides[get_embedding_model] = lambda: fake_embeddings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health_endpoint(client: TestClient) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_generate_embeddings_success(client, write_corpus, sample_records, index_root) -> None:
    response = client.post("/generate-embeddings", json={"outputFileName": str(write_corpus(sample_records))})
    assert response.status_code == 200
    body = response.json()
    assert body["message"] == "Embeddings generated successfully"
    artifact = Path(body["artifact"])
    assert artifact.parent == index_root
    assert (artifact / "manifest.json").is_file()


def test_generate_embeddings_accepts_snake_case(client, write_corpus) -> None:
    response = client.post("/generate-embeddings", json={"output_file_name": str(write_corpus([]))})
    assert response.status_code == 200


def test_missing_corpus_returns_500(client, tmp_path, index_root) -> None:
    response = client.post("/generate-embeddings", json={"outputFileName": str(tmp_path / "nope.json")})
    assert response.status_code == 500
    body = response.json()
    assert body["message"] == "Error generating embeddings"
    assert body["error"]["type"] == "NotFoundError"
    assert not index_root.exists()


def test_provider_failure_returns_500(client, make_embeddings, write_corpus, sample_records) -> None:
    failing = make_embeddings(failures={1: ProviderUnavailable("provider down")})
    app.dependency_overrides[get_embedding_model] = lambda: failing
    response = client.post("/generate-embeddings", json={"outputFileName": str(write_corpus(sample_records))})
    assert response.status_code == 500
    assert response.json()["error"] == {"type": "ProviderUnavailable", "detail": "provider down"}


def test_backend_exception_is_reported_as_provider_error(client, make_embeddings, write_corpus, sample_records) -> None:
    broken = make_embeddings(failures={1: RuntimeError("boom")})
    app.dependency_overrides[get_embedding_model] = lambda: broken
    response = client.post("/generate-embeddings", json={"outputFileName": str(write_corpus(sample_records))})
    assert response.status_code == 500
    assert response.json()["error"] == {
        "type": "ProviderUnavailable",
        "detail": "Embedding provider call failed: RuntimeError: boom",
    }


def test_request_without_file_name_is_rejected(client) -> None:
    response = client.post("/generate-embeddings", json={})
    assert response.status_code == 422


class _HangUpRequest:
    """Request whose client hangs up once *event* is set."""

    def __init__(self, event: asyncio.Event) -> None:
        self.event = event

    async def is_disconnected(self) -> bool:
        return self.event.is_set()


@pytest.mark.asyncio
async def test_client_disconnect_cancels_indexing(
    monkeypatch, gated_embeddings, test_settings, index_root, write_corpus, sample_records
) -> None:
    monkeypatch.setattr("crawl_index.serving.app.DISCONNECT_POLL_SECONDS", 0.01)
    pending = asyncio.ensure_future(
        generate_index(write_corpus(sample_records), embeddings=gated_embeddings, cfg=test_settings)
    )
    with pytest.raises(ClientDisconnected):
        await _run_until_disconnect(_HangUpRequest(gated_embeddings.started), pending)
    assert pending.cancelled()
    assert gated_embeddings.calls == 1
    assert not index_root.exists() or list(index_root.iterdir()) == []
