"""
evergreenOS FastAPI application entry point.

Identity webhooks keep workspaces and users in sync; entity routes read and
write the unified entities table through the secure query layer.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from evergreen import __version__
from evergreen.config import get_settings
from evergreen.db.session import check_db_connection, engine, get_db
from evergreen.entities.types import mark_user_scoped
from evergreen.errors import (
    EntityValidationError,
    IsolationViolation,
    NotFoundError,
    StoreError,
)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("evergreenOS starting")
    try:
        try:
            check_db_connection()
            logger.info("Database connection verified")
        except Exception as e:
            logger.critical("Database unreachable: %s", e)
            raise
        yield
    finally:
        logger.info("evergreenOS shutting down")
        engine.dispose()
        logger.info("Database connection pool closed")


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(EntityValidationError)
    async def _invalid(request: Request, exc: EntityValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(IsolationViolation)
    async def _isolation(request: Request, exc: IsolationViolation) -> JSONResponse:
        # Already logged at CRITICAL by the query layer; never echo the other owner
        logger.error("Isolation violation on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=403, content={"detail": "Access denied"})

    @app.exception_handler(StoreError)
    async def _store(request: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    if settings.user_scoped_types:
        mark_user_scoped(settings.user_scoped_types)

    app = FastAPI(
        title=settings.app_name,
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )
    _register_error_handlers(app)

    from evergreen.api import entities_router, webhooks_router

    app.include_router(webhooks_router, prefix="/api/webhooks", tags=["webhooks"])
    app.include_router(entities_router, prefix="/api/entities", tags=["entities"])

    @app.get("/health")
    def health(db: Session = Depends(get_db)) -> dict:
        """Health check endpoint. Confirms DB connectivity."""
        try:
            db.execute(text("SELECT 1"))
            return {
                "status": "ok",
                "version": __version__,
                "database": "connected",
            }
        except SQLAlchemyError:
            return JSONResponse(
                status_code=503,
                content={
                    "status": "unhealthy",
                    "version": __version__,
                    "database": "disconnected",
                },
            )

    return app


app = create_app()
