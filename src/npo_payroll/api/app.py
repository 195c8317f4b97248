"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from npo_payroll.api.routes import catalog_router, drafts_router, health_router, insurance_router
from npo_payroll.calculators.tax_table import get_tax_table
from npo_payroll.database import dispose_db, get_session, init_db
from npo_payroll.services.catalog_service import CatalogValidationError, PayItemCatalog
from npo_payroll.services.draft_store import DraftPersistenceError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    # Startup
    await init_db()
    async with get_session() as session:
        seeded = await PayItemCatalog(session).initialize_defaults()
    if seeded:
        logger.info("Seeded %d default catalog sections", seeded)
    table = get_tax_table()
    if table.is_fallback:
        logger.warning("Running with the built-in fallback tax table")
    yield
    # Shutdown
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="NPO Payroll API",
        description="Monthly payroll preparation for nonprofit organizations",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(CatalogValidationError)
    async def catalog_validation_handler(
        request: Request, exc: CatalogValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": str(exc), "code": "CATALOG_INVALID"},
        )

    @app.exception_handler(DraftPersistenceError)
    async def draft_persistence_handler(
        request: Request, exc: DraftPersistenceError
    ) -> JSONResponse:
        logger.error("Draft %s failed: %s", exc.operation, exc.cause)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc), "code": "PERSISTENCE_UNAVAILABLE"},
        )

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.error("Database error on %s: %s", request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Storage is unavailable", "code": "PERSISTENCE_UNAVAILABLE"},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s", request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(catalog_router, prefix="/api/v1")
    app.include_router(insurance_router, prefix="/api/v1")
    app.include_router(drafts_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
