"""
possumbly.api.main — FastAPI application entry point
=====================================================

Run with::

    uvicorn possumbly.api.main:app --reload --port 3000

or ``python -m possumbly``.
"""

from __future__ import annotations

import asyncio
import logging
import os
from contextlib import asynccontextmanager, suppress

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

load_dotenv()

from possumbly import __version__  # noqa: E402
from possumbly.api.auth import router as auth_router  # noqa: E402
from possumbly.api.deps import get_config, get_engine  # noqa: E402
from possumbly.api.rate_limit import configure_rate_limiters, rate_limit  # noqa: E402
from possumbly.api.routes.admin import router as admin_router  # noqa: E402
from possumbly.api.routes.gallery import router as gallery_router  # noqa: E402
from possumbly.api.routes.invites import router as invites_router  # noqa: E402
from possumbly.api.routes.memes import router as memes_router  # noqa: E402
from possumbly.api.routes.templates import router as templates_router  # noqa: E402
from possumbly.api.routes.uploads import router as uploads_router  # noqa: E402
from possumbly.api.routes.votes import router as votes_router  # noqa: E402
from possumbly.database.engine import init_db  # noqa: E402
from possumbly.errors import PossumblyError  # noqa: E402
from possumbly.services.audit_service import AuditLogger  # noqa: E402
from possumbly.services.retention_service import retention_loop  # noqa: E402
from possumbly.services.upload_service import ensure_upload_dirs  # noqa: E402

logger = logging.getLogger(__name__)

DEFAULT_FRONTEND_ORIGIN = "http://localhost:5173"


def _cors_origins() -> list[str]:
    """Resolve allowed CORS origins from env with safe defaults.

    Priority:
      1) CORS_ALLOW_ORIGINS (comma-separated)
      2) PUBLIC_URL (single origin)
    """
    raw = os.getenv("CORS_ALLOW_ORIGINS", "").strip()
    if raw:
        return [origin.strip().rstrip("/") for origin in raw.split(",") if origin.strip()]

    public_url = os.getenv("PUBLIC_URL", "").strip()
    return [(public_url or DEFAULT_FRONTEND_ORIGIN).rstrip("/")]


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup/shutdown lifecycle — schema, upload dirs, audit flushing, retention."""
    engine = get_engine()
    cfg = get_config()

    init_db(engine)
    ensure_upload_dirs()
    configure_rate_limiters(cfg)

    audit = AuditLogger(engine, flush_seconds=cfg.audit_flush_seconds)
    app.state.audit = audit
    audit.start()
    retention_task = asyncio.create_task(
        retention_loop(engine, cfg.audit_retention_days), name="audit-retention"
    )
    logger.info("%s API started — engine ready (%s)", cfg.site_name, engine.url.database)

    yield

    logger.info("%s API shutting down", cfg.site_name)
    retention_task.cancel()
    with suppress(asyncio.CancelledError):
        await retention_task
    await audit.stop()


app = FastAPI(
    title="Possumbly API",
    version=__version__,
    lifespan=lifespan,
    dependencies=[Depends(rate_limit("global"))],
)

# CORS: the Vite dev server and the production frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------
@app.exception_handler(PossumblyError)
async def domain_error_handler(request: Request, exc: PossumblyError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse({"detail": str(exc)}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"detail": "An unexpected error occurred"}, status_code=500)


# Mount routers
app.include_router(auth_router)
app.include_router(uploads_router)
app.include_router(invites_router, prefix="/api")
app.include_router(votes_router, prefix="/api")
app.include_router(gallery_router, prefix="/api")
app.include_router(templates_router, prefix="/api")
app.include_router(memes_router, prefix="/api")
app.include_router(admin_router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "ok"}
