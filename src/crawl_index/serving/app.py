"""FastAPI application exposing corpus indexing over HTTP."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Coroutine
from typing import Any

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from langchain_core.embeddings import Embeddings
from pydantic import BaseModel, ConfigDict, Field

from crawl_index.config import Settings, settings
from crawl_index.errors import IndexingError
from crawl_index.pipeline import IndexingResult, generate_index

logger = logging.getLogger(__name__)

# How often a running request checks whether its client went away.
DISCONNECT_POLL_SECONDS = 0.5

app = FastAPI(
    title="Crawl Index API",
    version="0.1.0",
    description="Turns crawler output into persisted FAISS vector indexes.",
)


# ── Request / Response schemas ────────────────────────────────────────
class GenerateEmbeddingsRequest(BaseModel):
    """Reference to a corpus file previously written by the crawler."""

    model_config = ConfigDict(populate_by_name=True)

    output_file_name: str = Field(alias="outputFileName")


class GenerateEmbeddingsResponse(BaseModel):
    message: str = "Embeddings generated successfully"
    artifact: str


class ErrorResponse(BaseModel):
    message: str
    error: dict[str, Any]


class ClientDisconnected(Exception):
    """The HTTP client went away before the pipeline finished."""


# ── Dependencies ──────────────────────────────────────────────────────
def get_settings() -> Settings:
    return settings


def get_embedding_model(request: Request) -> Embeddings | None:
    """Embedding model pinned on ``app.state``, if any.

    When unset the pipeline builds one from settings for each request, so a
    misconfigured provider surfaces in the 500 body like any other failure.
    """
    return getattr(request.app.state, "embeddings", None)


async def _run_until_disconnect(
    request: Request, coro: Coroutine[Any, Any, IndexingResult]
) -> IndexingResult:
    """Await *coro*, cancelling it if the client disconnects first."""
    task = asyncio.ensure_future(coro)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_SECONDS)
            if done:
                return task.result()
            if await request.is_disconnected():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
                raise ClientDisconnected()
    finally:
        if not task.done():
            task.cancel()


def _error_response(error: dict[str, Any]) -> JSONResponse:
    body = ErrorResponse(message="Error generating embeddings", error=error)
    return JSONResponse(status_code=500, content=body.model_dump())


# ── Routes ────────────────────────────────────────────────────────────
@app.get("/health")
async def health() -> dict[str, str]:
    """Liveness probe."""
    return {"status": "ok"}


@app.post(
    "/generate-embeddings",
    response_model=GenerateEmbeddingsResponse,
    responses={500: {"model": ErrorResponse}},
)
async def generate_embeddings(
    body: GenerateEmbeddingsRequest,
    request: Request,
    cfg: Settings = Depends(get_settings),
    embeddings: Embeddings | None = Depends(get_embedding_model),
) -> GenerateEmbeddingsResponse | JSONResponse:
    """Chunk, embed and index a crawled corpus into a new FAISS artifact."""
    try:
        result = await _run_until_disconnect(
            request, generate_index(body.output_file_name, embeddings=embeddings, cfg=cfg)
        )
    except ClientDisconnected:
        logger.warning("Client disconnected; indexing of %s abandoned", body.output_file_name)
        return _error_response({"type": "ClientDisconnected", "detail": "Request cancelled"})
    except IndexingError as exc:
        logger.exception("Indexing %s failed", body.output_file_name)
        return _error_response(exc.to_dict())
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error indexing %s", body.output_file_name)
        return _error_response({"type": type(exc).__name__, "detail": str(exc)})

    return GenerateEmbeddingsResponse(artifact=str(result.artifact))


def main() -> None:
    """Run the API server (``crawl-index-api``)."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("API server listening at http://%s:%d", settings.api_host, settings.api_port)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    main()
