"""FastAPI server for the Mnemo assistant.

Run with:
    uvicorn mnemo.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from mnemo.api.routes import router
from mnemo.config import CORS_ORIGINS, ENVIRONMENT, SERVER_HOST, SERVER_PORT
from mnemo.runtime import open_runtime

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the runtime once and store it in app state.

    Database engine, memory client, provider clients and the checkpointer
    live for the whole process and are closed on shutdown.
    """
    logger.info("Starting Mnemo (%s)…", ENVIRONMENT)
    async with open_runtime() as runtime:
        application.state.runtime = runtime
        logger.info("Assistant ready.")
        yield
        application.state.runtime = None


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Mnemo Assistant",
    description=(
        "WhatsApp-first executive assistant: calendar, email, documents, "
        "pull requests and long-term memory."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── CORS (dashboard frontend) ────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Request-ID middleware ────────────────────────────────────────────
@app.middleware("http")
async def add_request_id(request: Request, call_next) -> Response:
    """Attach a unique request ID to every request for log correlation.

    The ID is echoed in the ``X-Request-ID`` response header and prefixed
    to the route's log lines.
    """
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info(
        "[%s] %s %s", request_id, request.method, request.url.path,
    )
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Mnemo Assistant",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


# ── CLI entry point ──────────────────────────────────────────────────

if __name__ == "__main__":
    logger.info("Starting Mnemo API server on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "mnemo.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
