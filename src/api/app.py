"""FastAPI application exposing the webhook intake endpoint."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.store.db import WebhookStore
from src.webhook.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db_path = os.environ.get("WEBHOOK_DB_PATH", "data/webhooks.db")
    return create_app(WebhookStore(db_path), close_store=True)


def create_app(store: WebhookStore, close_store: bool = False) -> FastAPI:
    """Create the intake app around an open store.

    With close_store set, the store is closed when the app shuts down.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if close_store:
                store.close()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    pipeline = IngestionPipeline(store)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            logger.info("404 - Route not found: %s", request.url)
            return JSONResponse({"error": "Not Found", "path": request.url.path}, status_code=404)
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/hook/{receiver_id}")
    async def hook(request: Request, receiver_id: str) -> JSONResponse:
        if not (receiver_id.isascii() and receiver_id.isdigit()) or int(receiver_id) <= 0:
            return JSONResponse({"error": "Invalid webhook_receiver_id"}, status_code=400)

        try:
            envelope = json.loads(await request.body())
        except ValueError:
            # Unparseable envelopes are treated like ones missing both fields
            envelope = None

        result = pipeline.ingest(int(receiver_id), envelope)
        return JSONResponse(result.body, status_code=result.status_code)

    return app
