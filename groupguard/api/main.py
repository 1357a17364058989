"""
groupguard.api.main — FastAPI application entry point
======================================================

Run with::

    uvicorn groupguard.api.main:app --port 8000

or ``python -m groupguard``, which also configures logging.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

from groupguard import __version__  # noqa: E402
from groupguard.api.routes.moderation import router as moderation_router  # noqa: E402
from groupguard.api.routes.occupancy import router as occupancy_router  # noqa: E402
from groupguard.api.routes.rules import router as rules_router  # noqa: E402
from groupguard.config import load_config  # noqa: E402
from groupguard.database.engine import create_db_engine, init_db  # noqa: E402
from groupguard.runtime import build_runtime  # noqa: E402

logger = logging.getLogger(__name__)


def _cors_origins() -> list[str]:
    """Allowed CORS origins from ``CORS_ALLOW_ORIGINS`` (comma-separated)."""
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and start the runtime unless one was injected beforehand."""
    runtime = getattr(app.state, "runtime", None)
    if runtime is None:
        cfg = load_config(os.getenv("GROUPGUARD_CONFIG", "config.yaml"))
        engine = create_db_engine()
        init_db(engine)
        runtime = build_runtime(cfg, engine)
        app.state.runtime = runtime
    await runtime.start()
    logger.info("GroupGuard API started (rules r%d)", runtime.store.snapshot().revision)
    yield
    await runtime.stop()
    logger.info("GroupGuard API shutting down")


app = FastAPI(
    title="GroupGuard API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(moderation_router, prefix="/api")
app.include_router(occupancy_router, prefix="/api")
app.include_router(rules_router, prefix="/api")


@app.get("/api/health")
def health():
    return {"status": "ok"}
