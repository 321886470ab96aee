"""Embedding provider adapter.

The only network-bound, non-deterministic stage of the pipeline.  Everything
provider specific is kept behind :class:`ProviderEmbedder`, which accepts a
LangChain :class:`~langchain_core.embeddings.Embeddings` so tests can plug in
``DeterministicFakeEmbedding`` instead of a live endpoint.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import openai

from crawl_index.config import Settings, settings
from crawl_index.errors import (
    DimensionMismatch,
    IndexingError,
    InvariantViolation,
    ProviderUnavailable,
    RateLimited,
)

if TYPE_CHECKING:
    from langchain_core.embeddings import Embeddings

logger = logging.getLogger(__name__)


def get_embeddings(cfg: Settings = settings) -> Embeddings:
    """Return the configured LangChain embedding model.

    The Azure client is built with ``max_retries=0``: throttling must reach
    the pipeline as :class:`RateLimited` instead of being retried silently
    inside the SDK.
    """
    if cfg.embedding_provider == "huggingface":
        from langchain_huggingface import HuggingFaceEmbeddings

        logger.info("Using local HuggingFace embeddings: %s", cfg.embedding_model)
        return HuggingFaceEmbeddings(model_name=cfg.embedding_model)

    from langchain_openai import AzureOpenAIEmbeddings

    logger.info(
        "Using Azure OpenAI embeddings: deployment=%s endpoint=%s",
        cfg.azure_openai_api_deployment_name,
        cfg.azure_endpoint,
    )
    return AzureOpenAIEmbeddings(
        azure_endpoint=cfg.azure_endpoint,
        azure_deployment=cfg.azure_openai_api_deployment_name,
        api_key=cfg.azure_openai_api_key,
        api_version=cfg.azure_openai_api_version,
        timeout=cfg.embed_timeout_seconds,
        max_retries=0,
    )


def embedding_model_name(cfg: Settings = settings) -> str:
    """Identifier of the model that produced an index's vectors."""
    if cfg.embedding_provider == "huggingface":
        return cfg.embedding_model
    return f"azure:{cfg.azure_openai_api_deployment_name}"


def _retry_after(exc: openai.APIStatusError) -> float | None:
    value = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class ProviderEmbedder:
    """One bounded, order-preserving call to the embedding provider per batch.

    Parameters
    ----------
    embeddings:
        Any LangChain embedding model.
    timeout:
        Upper bound in seconds on a single provider call.
    """

    def __init__(self, embeddings: Embeddings, *, timeout: float = settings.embed_timeout_seconds) -> None:
        self._embeddings = embeddings
        self.timeout = timeout

    async def embed_batch(
        self,
        texts: list[str],
        *,
        expected_dimension: int | None = None,
    ) -> list[list[float]]:
        """Embed *texts* and return one vector per text, in input order.

        Raises
        ------
        RateLimited
            The provider throttled the call.  Not retried here.
        ProviderUnavailable
            Network, auth, timeout or any other provider failure.
        InvariantViolation
            The provider returned a different number of vectors.
        DimensionMismatch
            Vectors disagree with each other or with *expected_dimension*.
        """
        if not texts:
            return []

        try:
            vectors = await asyncio.wait_for(
                self._embeddings.aembed_documents(texts), timeout=self.timeout
            )
        except IndexingError:
            raise
        except asyncio.TimeoutError as exc:
            raise ProviderUnavailable(
                f"Embedding provider did not answer within {self.timeout:.0f}s",
                details={"batch_size": len(texts)},
            ) from exc
        except openai.RateLimitError as exc:
            raise RateLimited(retry_after=_retry_after(exc)) from exc
        except openai.APIStatusError as exc:
            raise ProviderUnavailable(
                f"Embedding provider returned HTTP {exc.status_code}",
                details={"status_code": exc.status_code},
            ) from exc
        except (openai.OpenAIError, OSError) as exc:
            raise ProviderUnavailable(f"Embedding provider call failed: {exc}") from exc
        except Exception as exc:
            # Local backends (sentence-transformers, torch) raise their own types.
            raise ProviderUnavailable(
                f"Embedding provider call failed: {type(exc).__name__}: {exc}"
            ) from exc

        if len(vectors) != len(texts):
            raise InvariantViolation(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                details={"expected": len(texts), "actual": len(vectors)},
            )

        dim = expected_dimension if expected_dimension is not None else len(vectors[0])
        for pos, vec in enumerate(vectors):
            if len(vec) != dim:
                raise DimensionMismatch(dim, len(vec), position=pos)
        return [list(vec) for vec in vectors]
