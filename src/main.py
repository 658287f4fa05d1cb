"""Contract Broker — contract-testing coordination API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.database import close_db, init_db
from src.errors import BrokerError
from src.routes import (
    contracts,
    dependencies,
    deployments,
    fixtures,
    interactions,
    services,
    verification,
)
from src.config import settings

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield
    await close_db()


app = FastAPI(
    title="Contract Broker",
    description="Contract-testing coordination — interactions, verification, fixtures and can-i-deploy",
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(BrokerError)
async def broker_error_handler(request: Request, exc: BrokerError):
    if exc.status_code >= 409:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.detail,
            "error": type(exc).__name__,
            "message": exc.message,
            "retryable": exc.retryable,
        },
    )


app.include_router(services.router, prefix=settings.api_prefix)
app.include_router(interactions.router, prefix=settings.api_prefix)
app.include_router(contracts.router, prefix=settings.api_prefix)
app.include_router(verification.router, prefix=settings.api_prefix)
app.include_router(deployments.router, prefix=settings.api_prefix)
app.include_router(deployments.gate_router, prefix=settings.api_prefix)
app.include_router(fixtures.router, prefix=settings.api_prefix)
app.include_router(dependencies.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "healthy", "service": "contract-broker", "version": settings.api_version}
