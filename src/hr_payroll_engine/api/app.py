"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from hr_payroll_engine.api.routes import benefits_router, health_router, payroll_router
from hr_payroll_engine.database import dispose_db, init_db
from hr_payroll_engine.errors import (
    AlreadyPaid,
    AuthorizationRequired,
    DuplicateItem,
    HasPaidItems,
    IncompleteChildren,
    InvalidTransition,
    ItemLocked,
    NotFoundError,
    PayrollEngineError,
)

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[PayrollEngineError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    AuthorizationRequired: status.HTTP_403_FORBIDDEN,
    InvalidTransition: status.HTTP_409_CONFLICT,
    ItemLocked: status.HTTP_409_CONFLICT,
    AlreadyPaid: status.HTTP_409_CONFLICT,
    IncompleteChildren: status.HTTP_409_CONFLICT,
    HasPaidItems: status.HTTP_409_CONFLICT,
    DuplicateItem: status.HTTP_409_CONFLICT,
}


def status_for(exc: PayrollEngineError) -> int:
    for error_type, code in ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return code
    return 422


def error_context(exc: PayrollEngineError) -> dict | None:
    item_ids = getattr(exc, "item_ids", None)
    if item_ids is not None:
        return {"item_ids": [str(i) for i in item_ids]}
    return None


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    init_db()
    yield
    await dispose_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="HR Payroll Engine API",
        description="Payroll and benefit computation engine",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(PayrollEngineError)
    async def engine_error_handler(request: Request, exc: PayrollEngineError) -> JSONResponse:
        return JSONResponse(
            status_code=status_for(exc),
            content={"detail": str(exc), "code": exc.code, "context": error_context(exc)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "detail": "An unexpected error occurred",
                "code": "INTERNAL_ERROR",
            },
        )

    app.include_router(health_router)
    app.include_router(payroll_router, prefix="/api/v1")
    app.include_router(benefits_router, prefix="/api/v1")

    return app


# Default app instance for uvicorn
app = create_app()
