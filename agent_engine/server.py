"""FastAPI server for the decision & booking engine.

Run with:
    uvicorn agent_engine.server:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from agent_engine.api.routes import router
from agent_engine.config import COMPANY_CONFIG_DIR, CORS_ORIGINS, SERVER_HOST, SERVER_PORT
from agent_engine.engine import create_decision_engine
from agent_engine.services.metrics import metrics

# ── Logging ──────────────────────────────────────────────────────────
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-8s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)


# ── Lifespan: initialise / tear-down shared resources ────────────────
@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the engine once (loader, cache, graph) and keep it in app state."""
    logger.info("Building decision engine from %s…", COMPANY_CONFIG_DIR)
    application.state.engine = create_decision_engine()
    logger.info("Engine ready.")
    yield
    metrics.flush()


# ── FastAPI application ──────────────────────────────────────────────
app = FastAPI(
    title="Agent Decision Engine",
    description=(
        "Per-company routing of inbound turns to knowledge answers, "
        "model answers or escalation, plus booking contract compilation."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

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
    """Attach a request ID (``X-Request-ID``) to every request for log correlation."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    request.state.request_id = request_id
    logger.info("[%s] %s %s", request_id, request.method, request.url.path)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


# ── Register routes ──────────────────────────────────────────────────
app.include_router(router, prefix="/api")


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "service": "Agent Decision Engine",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    logger.info("Starting decision engine API on %s:%d", SERVER_HOST, SERVER_PORT)
    uvicorn.run(
        "agent_engine.server:app",
        host=SERVER_HOST,
        port=SERVER_PORT,
        reload=True,
    )
