"""sidring FastAPI conversion gateway.

Exposes the object ID / SID codec to tools that cannot import it.
"""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from sidring.auth import make_api_key_checker
from sidring.codec import FormatError
from sidring.config import SidringConfig, load_config
from sidring.routes import convert, meta

logger = logging.getLogger("sidring")
audit_logger = logging.getLogger("sidring.audit")


@asynccontextmanager
async def lifespan(app: FastAPI):
    config: SidringConfig = app.state.config
    logger.info(
        "sidring gateway ready on %s:%d (auth %s)",
        config.host,
        config.port,
        "enabled" if config.api_key else "disabled",
    )
    yield
    logger.info("sidring gateway shut down")


def create_app(config: SidringConfig | None = None) -> FastAPI:
    """Application factory."""
    if config is None:
        config = load_config()

    app = FastAPI(
        title="sidring",
        description="Entra ID object ID <-> S-1-12-1 SID conversion gateway",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.config = config

    check_key = make_api_key_checker(config.api_key)

    # ── Exception handlers ────────────────────────────────────

    @app.exception_handler(FormatError)
    async def format_error_handler(request: Request, exc: FormatError):
        return JSONResponse(
            status_code=400,
            content={"detail": str(exc), "reason": exc.reason},
        )

    # ── Audit middleware ──────────────────────────────────────

    @app.middleware("http")
    async def audit_log(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        elapsed = time.monotonic() - start
        audit_logger.info(
            "%s %s %d %.3fs",
            request.method,
            request.url.path,
            response.status_code,
            elapsed,
        )
        return response

    # ── Routers ───────────────────────────────────────────────

    app.include_router(meta.router, dependencies=[Depends(check_key)])
    app.include_router(convert.router, dependencies=[Depends(check_key)])

    return app
