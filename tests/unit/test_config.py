"""Unit tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from crawl_index.config import Settings


def test_defaults_match_original_service() -> None:
    cfg = Settings(_env_file=None)
    assert (cfg.chunk_size, cfg.chunk_overlap) == (1000, 100)
    assert cfg.distance_strategy == "cosine"
    assert cfg.index_root == "faiss"
    assert cfg.api_port == 3000
    assert cfg.embedding_dimension is None


def test_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CHUNK_SIZE", "500")
    monkeypatch.setenv("CHUNK_OVERLAP", "50")
    monkeypatch.setenv("AZURE_OPENAI_API_DEPLOYMENT_NAME", "embeddings")
    cfg = Settings(_env_file=None)
    assert cfg.chunk_size == 500
    assert cfg.chunk_overlap == 50
    assert cfg.azure_openai_api_deployment_name == "embeddings"


def test_overlap_must_be_smaller_than_chunk() -> None:
    with pytest.raises(ValidationError, match="chunk_overlap"):
        Settings(_env_file=None, chunk_size=100, chunk_overlap=100)


def test_unknown_distance_strategy_is_rejected() -> None:
    with pytest.raises(ValidationError):
        Settings(_env_file=None, distance_strategy="manhattan")


def test_endpoint_derived_from_instance_name() -> None:
    cfg = Settings(_env_file=None, azure_api_endpoint="", azure_openai_api_instance_name="my-res")
    assert cfg.azure_endpoint == "https://my-res.openai.azure.com/"


def test_explicit_endpoint_wins() -> None:
    cfg = Settings(
        _env_file=None,
        azure_api_endpoint="https://custom.example.com/",
        azure_openai_api_instance_name="my-res",
    )
    assert cfg.azure_endpoint == "https://custom.example.com/"
