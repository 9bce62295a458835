"""
FastAPI application for the CareNow booking service.

Wires the booking, partner and matching routers, the correlation-id
middleware and the JSON error handlers, and exposes /health and /metrics.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from fastapi.exceptions import RequestValidationError
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from carenow.api.routes import bookings, matching, partners
from carenow.api.middleware.error_handler import (
    AppException,
    app_exception_handler,
    domain_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
)
from carenow.lib.db import engine, init_db
from carenow.lib.logging import correlation_id_var, get_logger
from carenow.lib.metrics import get_metrics_collector
from carenow.lib.settings import settings
from carenow.services.errors import CareNowError
import carenow.models  # noqa: F401  registers the booking tables

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Tag each request with a correlation id.

    Reuses the caller's X-Correlation-ID or generates a UUID, exposes it on
    request.state and in every log line of the request, and echoes it back.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        started = time.perf_counter()

        try:
            logger.info(
                "Incoming request",
                extra={
                    "method": request.method,
                    "path": request.url.path,
                    "client": request.client.host if request.client else None,
                }
            )

            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id

            logger.info(
                "Response sent",
                extra={
                    "status_code": response.status_code,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            return response
        finally:
            correlation_id_var.reset(token)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info(f"{settings.app_name} starting up...")
    if settings.create_tables_on_startup:
        await init_db()
        logger.info("Booking tables ensured")
    yield
    await engine.dispose()
    logger.info(f"{settings.app_name} shutting down...")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Booking lifecycle and partner matching APIs for clients and partners",
    lifespan=lifespan,
)


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=[CORRELATION_HEADER],
)

app.add_middleware(CorrelationIdMiddleware)


# Domain failures first; Exception last catches everything else as a 500
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(CareNowError, domain_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)


app.include_router(bookings.router)
app.include_router(partners.router)
app.include_router(matching.router)


@app.get("/health")
def health_check():
    return {"status": "ok"}


@app.get("/metrics", include_in_schema=False)
def metrics_endpoint():
    """Booking transition, matching and notification counters in Prometheus text format."""
    metrics = get_metrics_collector()
    return PlainTextResponse(
        content=metrics.export_prometheus(),
        media_type="text/plain; version=0.0.4; charset=utf-8"
    )
