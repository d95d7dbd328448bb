"""
FastAPI application entry point.

    uvicorn src.main:app
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.api.routes import health, onboarding
from src.platform.errors import AppError, ErrorHandlerMiddleware, get_correlation_id

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Build the onboarding API."""
    app = FastAPI(
        title="Account Onboarding API",
        description="Employee and admin account provisioning",
        version="0.1.0",
    )

    app.add_middleware(ErrorHandlerMiddleware)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        correlation_id = get_correlation_id(request)
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_dict(),
            headers={"X-Correlation-ID": correlation_id},
        )

    app.include_router(health.router, tags=["health"])
    app.include_router(onboarding.router)

    return app


app = create_app()
