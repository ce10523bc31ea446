"""FastAPI application for identity linking.

``POST /identify`` links the caller's email/phone observation to the
identity cluster of their provider-issued fingerprint and returns the merged
view; ``GET /contacts/{contact_id}`` reads a cluster without writing.
Includes request tracing, Prometheus instrumentation, health checks, and
optional static hosting for the browser agent page.
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from identity_engine.common.config import ServiceConfig, get_config
from identity_engine.common.errors import IdentityEngineError
from identity_engine.common.logging_config import set_correlation_id, setup_logging
from identity_engine.common.metrics import PrometheusMiddleware, metrics_router
from identity_engine.fingerprint.provider import FingerprintProClient
from identity_engine.linking.identity_linker import IdentityLinker
from identity_engine.linking.ports import ContactStore, FingerprintProvider
from identity_engine.storage.models.contact import IdentifyRequest, IdentifyResponse
from identity_engine.storage.mongodb_contact_store import MongoContactStore

logger = logging.getLogger(__name__)


# ── Dependencies ──────────────────────────────────────────────────────


def _get_linker(request: Request) -> IdentityLinker:
    return request.app.state.linker


def _get_store(request: Request) -> ContactStore:
    return request.app.state.store


# ── Error rendering ───────────────────────────────────────────────────


async def _identity_error_handler(request: Request, exc: IdentityEngineError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.http_status, content={"error": exc.message})


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        problems.append(f"{loc}: {err.get('msg')}" if loc else str(err.get("msg")))
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request body: " + "; ".join(problems)},
    )


# ── Application factory ───────────────────────────────────────────────


def create_app(
    config: ServiceConfig | None = None,
    store: ContactStore | None = None,
    provider: FingerprintProvider | None = None,
) -> FastAPI:
    """Build the service application.

    Collaborators passed in are used as-is and never closed by the app;
    missing ones are built from *config* at startup and released at
    shutdown.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(config.service_name, config.log_level)
        owned_store: MongoContactStore | None = None
        owned_provider: FingerprintProClient | None = None
        if app.state.store is None:
            owned_store = MongoContactStore.from_config(config)
            await owned_store.ensure_indexes()
            app.state.store = owned_store
        if app.state.provider is None:
            owned_provider = FingerprintProClient.from_config(config)
            app.state.provider = owned_provider
        app.state.linker = IdentityLinker(app.state.store, app.state.provider)
        logger.info("Contact identity service started (db=%s)", config.db_name)
        try:
            yield
        finally:
            if owned_provider is not None:
                await owned_provider.aclose()
            if owned_store is not None:
                owned_store.close()
            logger.info("Contact identity service stopped")

    app = FastAPI(title="Contact Identity API", version="1.0.0", lifespan=lifespan)
    app.state.store = store
    app.state.provider = provider
    app.state.linker = (
        IdentityLinker(store, provider) if store is not None and provider is not None else None
    )

    app.add_exception_handler(IdentityEngineError, _identity_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _request_validation_handler)  # type: ignore[arg-type]
    app.add_middleware(PrometheusMiddleware)

    @app.middleware("http")
    async def request_tracing(request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        set_correlation_id(request_id)
        start = time.monotonic()
        response: Response = await call_next(request)
        elapsed = time.monotonic() - start
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "req=%s method=%s path=%s status=%d latency=%.4fs",
            request_id,
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
        )
        return response

    # ── Endpoints ─────────────────────────────────────────────────────

    @app.get("/health")
    async def health(store: ContactStore = Depends(_get_store)) -> JSONResponse:  # noqa: B008
        if await store.ping():
            return JSONResponse(status_code=200, content={"status": "ok"})
        return JSONResponse(status_code=503, content={"status": "degraded"})

    @app.post("/identify", response_model=IdentifyResponse)
    async def identify(
        body: IdentifyRequest,
        linker: IdentityLinker = Depends(_get_linker),  # noqa: B008
        x_fingerprint_request_id: Annotated[
            str | None, Header(alias="X-Fingerprint-Request-Id")
        ] = None,
    ) -> dict[str, Any]:
        view = await linker.identify(body, request_id=x_fingerprint_request_id)
        return {"contact": view}

    @app.get("/contacts/{contact_id}", response_model=IdentifyResponse)
    async def get_cluster(
        contact_id: str,
        linker: IdentityLinker = Depends(_get_linker),  # noqa: B008
    ) -> dict[str, Any]:
        view = await linker.cluster(contact_id)
        return {"contact": view}

    app.include_router(metrics_router)

    # Mounted last so the API routes above take precedence.
    if config.static_dir and os.path.isdir(config.static_dir):
        app.mount("/", StaticFiles(directory=config.static_dir, html=True), name="static")

    return app
