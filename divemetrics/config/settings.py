"""divemetrics configuration settings."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


def _csv_env(var_name: str) -> list[str]:
    raw = os.getenv(var_name, "")
    return [item.strip().lower().rstrip(".") for item in raw.split(",") if item.strip()]


class VisionConfig(BaseModel):
    """OCR / vision backend configuration."""

    backend: Literal["gemini", "openai", "tesseract"] = Field(
        default_factory=lambda: os.getenv("DIVEMETRICS_VISION_BACKEND", "openai")
    )
    prompt_variant: Literal["short", "detailed"] = Field(
        default_factory=lambda: os.getenv("DIVEMETRICS_PROMPT_VARIANT", "detailed")
    )
    timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("DIVEMETRICS_ENGINE_TIMEOUT_S", "30"))
    )

    # Vertex AI
    project_id: str = Field(default_factory=lambda: os.getenv("VERTEX_PROJECT_ID", ""))
    location: str = Field(default_factory=lambda: os.getenv("VERTEX_LOCATION", "us-central1"))
    gemini_model: str = "gemini-2.5-flash"

    # OpenAI
    openai_api_key: str = Field(default_factory=lambda: os.getenv("OPENAI_API_KEY", ""))
    openai_base_url: str | None = Field(
        default_factory=lambda: os.getenv("OPENAI_BASE_URL") or None
    )
    openai_model: str = "gpt-4o"
    max_tokens: int = 1000
    temperature: float = 0.1

    # Tesseract
    tesseract_cmd: str | None = Field(
        default_factory=lambda: os.getenv("TESSERACT_CMD") or None
    )

    @field_validator("timeout_s")
    @classmethod
    def _validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("DIVEMETRICS_ENGINE_TIMEOUT_S must be > 0")
        return value


class RetryConfig(BaseModel):
    """Retry and backoff configuration for transient engine failures."""

    max_retries: int = 3
    backoff_base_ms: int = 1000
    backoff_max_ms: int = 30000
    jitter: bool = True


class BatchConfig(BaseModel):
    """Batch analysis limits."""

    max_concurrency: int = Field(
        default_factory=lambda: int(os.getenv("DIVEMETRICS_MAX_CONCURRENCY", "4"))
    )
    max_batch_size: int = 20

    @field_validator("max_concurrency")
    @classmethod
    def _validate_concurrency(cls, value: int) -> int:
        if not 1 <= value <= 8:
            raise ValueError("DIVEMETRICS_MAX_CONCURRENCY must be between 1 and 8")
        return value


class ImageConfig(BaseModel):
    """Accepted image payloads and pre-processing."""

    max_bytes: int = Field(
        default_factory=lambda: int(os.getenv("DIVEMETRICS_MAX_IMAGE_MB", "10")) * 1024 * 1024
    )
    allowed_formats: frozenset[str] = frozenset({"JPEG", "PNG", "WEBP"})
    max_width: int = 1920
    max_height: int = 1080
    jpeg_quality: int = 80


class StoreConfig(BaseModel):
    """Persistence collaborator selection."""

    backend: Literal["none", "jsonl", "supabase"] = Field(
        default_factory=lambda: os.getenv("DIVEMETRICS_STORE", "jsonl")
    )
    data_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("DIVEMETRICS_DATA_DIR", "./data"))
    )
    supabase_url: str = Field(default_factory=lambda: os.getenv("SUPABASE_URL", ""))
    supabase_key: str = Field(
        default_factory=lambda: os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")
    )
    supabase_table: str = "dive_metric_records"


class ImageURLPolicyConfig(BaseModel):
    """Remote image URL policy (SSRF guard)."""

    allowed_domains: list[str] = Field(
        default_factory=lambda: _csv_env("DIVEMETRICS_IMAGE_URL_ALLOWED_DOMAINS")
    )
    denied_domains: list[str] = Field(
        default_factory=lambda: _csv_env("DIVEMETRICS_IMAGE_URL_DENIED_DOMAINS")
    )
    block_private_network_targets: bool = True
    fetch_timeout_s: float = 30.0


class APIConfig(BaseModel):
    """HTTP surface controls from environment."""

    allowed_origins: list[str] = Field(
        default_factory=lambda: APIConfig.parse_allowed_origins(
            os.getenv("DIVEMETRICS_ALLOWED_ORIGINS", "")
        )
    )
    log_level: str = Field(default_factory=lambda: os.getenv("DIVEMETRICS_LOG_LEVEL", "INFO"))

    @staticmethod
    def parse_allowed_origins(value: str) -> list[str]:
        if not value.strip():
            return ["http://localhost", "http://127.0.0.1"]
        origins = [origin.strip() for origin in value.split(",") if origin.strip()]
        if "*" in origins:
            raise ValueError("DIVEMETRICS_ALLOWED_ORIGINS cannot include '*'")
        return origins

    @field_validator("allowed_origins")
    @classmethod
    def _validate_allowed_origins(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("allowed_origins cannot be empty")
        for origin in value:
            if not origin.startswith(("http://", "https://")):
                raise ValueError(f"Invalid CORS origin: {origin}")
        return value


class DiveMetricsConfig(BaseModel):
    """Root configuration for the extraction pipeline and its API."""

    vision: VisionConfig = Field(default_factory=VisionConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    images: ImageConfig = Field(default_factory=ImageConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    image_url_policy: ImageURLPolicyConfig = Field(default_factory=ImageURLPolicyConfig)
    api: APIConfig = Field(default_factory=APIConfig)
