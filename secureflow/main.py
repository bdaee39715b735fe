"""FastAPI application main entry point"""
from contextlib import asynccontextmanager
from typing import Optional
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from secureflow.core.config import settings
from secureflow.core.database import create_tables
from secureflow.core.exceptions import (
    AuthenticationError,
    NotFoundError,
    SecureFlowError,
    StateConflictError,
    TransientExternalError,
    ValidationError,
)
from secureflow.api.v1.router import router as v1_router
from secureflow.services.container import Services, build_services

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

# most specific first; the handler walks the MRO of the raised error
_STATUS_CODES = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    StateConflictError: status.HTTP_409_CONFLICT,
    TransientExternalError: status.HTTP_502_BAD_GATEWAY,
}


async def domain_error_handler(request: Request, exc: SecureFlowError) -> JSONResponse:
    """
    Translate domain errors into JSON error responses.

    Args:
        request: The failing request
        exc: The raised domain error
    """
    code = next(
        (_STATUS_CODES[cls] for cls in type(exc).__mro__ if cls in _STATUS_CODES),
        status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
    if code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=code, content={"detail": str(exc)})


def create_app(services: Optional[Services] = None, run_scheduler: Optional[bool] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Prebuilt service graph (tests); built from settings at startup when omitted
        run_scheduler: Start the periodic scheduler; defaults to SCHEDULER_ENABLED
    """
    if run_scheduler is None:
        run_scheduler = settings.SCHEDULER_ENABLED

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        if app.state.services is None:
            logger.info("Creating database tables...")
            await create_tables()
            app.state.services = build_services(settings)
        if run_scheduler:
            app.state.services.scheduler.start()
        yield
        # Shutdown
        logger.info("Application shutting down...")
        await app.state.services.scheduler.stop()
        await app.state.services.dispatcher.drain(timeout=30)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Security analysis pipeline with human-gated automated remediation",
        lifespan=lifespan,
    )
    app.state.services = services
    app.add_exception_handler(SecureFlowError, domain_error_handler)

    # Include routers
    app.include_router(v1_router)

    @app.get("/", tags=["health"])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Returns:
            dict: Status and service information
        """
        services = app.state.services
        return {
            "status": "ok",
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "scheduler": services.scheduler.running if services else False,
            "running_tasks": services.dispatcher.pending if services else 0,
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "secureflow.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
