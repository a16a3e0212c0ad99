"""
CertVal — FastAPI Application.

Run: uvicorn certval.main:app --host 0.0.0.0 --port 8000 --reload

Routes:
  - POST /api/validation/reject | /approve   ← reviewer decisions
  - GET  /api/validation/status | /can-reapprove | /cert-nos
  - POST /api/validation/recommendation/save
  - GET  /health
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from certval.api.deps import get_coordinator
from certval.api.routers.validation import router as validation_router
from certval.config import settings
from certval.db.engine import close_db, init_db
from certval.errors import register_exception_handlers
from certval.logging_config import configure_logging
from certval.middleware.error_handler import ErrorHandlerMiddleware
from certval.middleware.request_context import RequestContextMiddleware

configure_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan — startup and shutdown."""
    logger.info("certval_starting", version=settings.app_version, environment=settings.environment)
    if not (settings.phoenix_username and settings.phoenix_password):
        logger.warning("phoenix_credentials_not_set", msg="Approve/reject calls will fail upstream")
    await init_db()
    yield
    # Let detached webhook sends finish before the loop goes away
    await get_coordinator().notifier.drain()
    await close_db()
    logger.info("certval_shutdown")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description=(
            "Certificate validation decisions.\n\n"
            "A reviewer's approve/reject is applied to Phoenix first and then "
            "recorded in the certificate store. Rejections re-queue the "
            "certificate's evaluation.\n\n"
            "Decision endpoints require `Authorization: Bearer <JWT>` with an "
            "`email` claim."
        ),
        version=settings.app_version,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_tags=[
            {"name": "health", "description": "Liveness check"},
            {"name": "validation", "description": "Approve/reject decisions and status"},
        ],
    )

    # ── Middleware (last added = outermost): CORS > request context > errors ──
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # ── Routes ────────────────────────────────────────────────────────
    app.include_router(validation_router)

    @app.get("/health", tags=["health"])
    async def health():
        """Liveness check. Does not check Phoenix or the database."""
        return {
            "status": "ok",
            "version": settings.app_version,
            "service": "certval",
        }

    return app


app = create_app()
