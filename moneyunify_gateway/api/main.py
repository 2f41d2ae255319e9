"""
FastAPI application for the MoneyUnify gateway.

- Checkout, poll and sweep endpoints
- Request ID tracking with structured logging
- Global error handling
- Sweep scheduler started in the lifespan
"""
import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from moneyunify_gateway import __version__
from moneyunify_gateway.bootstrap import Services, build_services
from moneyunify_gateway.config import Settings, get_settings
from moneyunify_gateway.monitoring.logging import setup_logging
from moneyunify_gateway.workers.sweep_worker import build_scheduler

from .routes import admin_router, monitoring_router, payment_router

logger = structlog.get_logger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Gateway settings (default: environment)
        services: Pre-built services (default: built from settings)

    Returns:
        FastAPI: Configured application
    """
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            env=settings.app_env,
            sandbox=settings.sandbox,
        )

        try:
            await services.init()
            logger.info("database_initialized")
        except Exception as e:
            logger.error("database_initialization_failed", error=str(e))
            raise

        scheduler = None
        sweep_task = None
        if settings.sweep_enabled:
            scheduler = build_scheduler(
                services, settings.sweep_interval_seconds, settings.sweep_batch_size
            )
            sweep_task = asyncio.create_task(scheduler.run())

        yield

        logger.info("application_shutdown")
        if scheduler is not None:
            scheduler.stop()
            await sweep_task
        try:
            await services.aclose()
        except Exception as e:
            logger.error("services_shutdown_error", error=str(e))

    app = FastAPI(
        title="MoneyUnify Gateway",
        description=(
            "Mobile money payment gateway for MoneyUnify. Pushes approval prompts "
            "to the payer's phone and reconciles pending payments by polling and "
            "sweeping."
        ),
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """Bind a request ID to the log context and echo it in the response."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "Internal server error",
                "message": "An unexpected error occurred. Please try again later.",
            },
        )

    app.include_router(payment_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict:
        """Service information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "environment": settings.app_env,
            "sandbox": settings.sandbox,
            "health": "/health",
            "metrics": "/metrics",
        }

    return app


def main() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings)
    uvicorn.run(
        create_app(settings),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
