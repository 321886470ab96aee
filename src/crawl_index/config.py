"""Shared configuration loaded from environment / .env file."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application-wide settings, populated from env vars or .env file."""

    # Embedding provider
    embedding_provider: Literal["azure", "huggingface"] = Field(
        default="azure",
        description="Which embedding backend to use: Azure OpenAI or a local HuggingFace model",
    )
    azure_api_endpoint: str = Field(default="", description="Azure OpenAI endpoint URL")
    azure_openai_api_key: str = ""
    azure_openai_api_instance_name: str = Field(
        default="",
        description=(
            "Azure resource name. Only used to derive the endpoint "
            "(https://<instance>.openai.azure.com/) when AZURE_API_ENDPOINT is empty."
        ),
    )
    azure_openai_api_deployment_name: str = ""
    azure_openai_api_version: str = "2024-02-01"
    embedding_model: str = "sentence-transformers/all-MiniLM-L6-v2"
    embedding_dimension: int | None = Field(
        default=None,
        gt=0,
        description=(
            "Vector size of an empty index. When unset, one sample text is embedded "
            "to learn it from the provider."
        ),
    )

    # Embedding calls
    embed_batch_size: int = Field(default=64, gt=0)
    embed_timeout_seconds: float = Field(default=60.0, gt=0)
    embed_max_attempts: int = Field(default=5, gt=0)
    embed_backoff_min_seconds: float = Field(default=1.0, ge=0)
    embed_backoff_max_seconds: float = Field(default=30.0, ge=0)

    # Chunking
    chunk_size: int = Field(default=1000, gt=0)
    chunk_overlap: int = Field(default=100, ge=0)

    # Index
    distance_strategy: Literal["cosine", "euclidean"] = "cosine"
    index_root: str = "faiss"

    # Serving
    api_host: str = "localhost"
    api_port: int = 3000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @model_validator(mode="after")
    def _check_chunking(self) -> Settings:
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be < chunk_size ({self.chunk_size})"
            )
        return self

    @property
    def azure_endpoint(self) -> str:
        """Resolved Azure endpoint, falling back to the instance name."""
        if self.azure_api_endpoint:
            return self.azure_api_endpoint
        if self.azure_openai_api_instance_name:
            return f"https://{self.azure_openai_api_instance_name}.openai.azure.com/"
        return ""


# Singleton — import `settings` wherever needed.
settings = Settings()
