"""FastAPI application entry point for divemetrics."""

from __future__ import annotations

import logging

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from divemetrics.api.routes import router
from divemetrics.config.settings import DiveMetricsConfig
from divemetrics.ingestion.adapter import OCRAdapter
from divemetrics.ingestion.engines import build_engine
from divemetrics.pipeline.analyzer import DiveImageAnalyzer
from divemetrics.pipeline.batch import BatchProcessor
from divemetrics.pipeline.store import RecordStore, build_store

VERSION = "0.1.0"


def create_app(
    config: DiveMetricsConfig | None = None,
    analyzer: DiveImageAnalyzer | None = None,
    store: RecordStore | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Factory function for creating the FastAPI application.

    Collaborators not passed in are built from `config`. SDK clients are
    created lazily by the engines, so building the app needs no credentials.
    """
    config = config or DiveMetricsConfig()
    logging.getLogger("divemetrics").setLevel(config.api.log_level.upper())

    if analyzer is None:
        adapter = OCRAdapter(build_engine(config.vision), config.vision, config.images)
        analyzer = DiveImageAnalyzer(adapter)
    if store is None:
        store = build_store(config.store)

    app = FastAPI(
        title="divemetrics",
        description="Dive computer photo to validated dive-log record",
        version=VERSION,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.analyzer = analyzer
    app.state.store = store
    app.state.http_transport = http_transport
    app.state.batch_processor = BatchProcessor(
        analyzer,
        config.batch,
        config.retry,
        ledger_dir=config.store.data_dir / "batches" if config.store.backend == "jsonl" else None,
    )

    app.include_router(router, prefix="/api/v1")

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {
            "status": "healthy",
            "service": "divemetrics",
            "version": VERSION,
            "vision_backend": config.vision.backend,
        }

    return app


app = create_app()
