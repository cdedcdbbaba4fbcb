"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and mounts the
export and site routes.

Usage::

    # Development server (from project root)
    uvicorn site_personalizer.api.main:app --reload
"""

from __future__ import annotations

import time
import uuid
from typing import Callable

import structlog
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from site_personalizer import __version__
from site_personalizer.config.settings import get_settings
from site_personalizer.core.logging_config import configure_logging, request_id_var

# Applied at import time so records emitted during app construction are
# captured.  Re-applied in create_app() with the configured level.
configure_logging("INFO")

logger = structlog.get_logger(__name__)


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()
    configure_logging(settings.log_level)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Crawls the websites listed in an uploaded spreadsheet, summarizes "
            "them and writes personalized outreach copy for every row."
        ),
        version=__version__,
        debug=settings.debug,
        redirect_slashes=False,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration under a request ID."""
        request_id = str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn("request_complete", status_code=status_code, elapsed_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Routers -----------------------------------------------------------

    from site_personalizer.api.routes import exports, sites  # noqa: PLC0415

    application.include_router(exports.router, prefix="/exports", tags=["exports"])
    application.include_router(sites.router, prefix="/sites", tags=["sites"])

    # ---- Health endpoint ---------------------------------------------------

    @application.get("/health", tags=["system"])
    async def health() -> JSONResponse:
        """Return a minimal process-level liveness status."""
        return JSONResponse({"status": "ok"})

    return application


app = create_app()
"""The FastAPI application instance passed to Uvicorn."""
