"""FastAPI application setup with lifespan and exception handlers."""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storyflow import __version__, validate_dependencies
from storyflow.api.routes import health_router, router
from storyflow.config import settings
from storyflow.db import async_session, init_database, shutdown
from storyflow.orchestrator import StageOrchestrator, StoryflowError

logger = logging.getLogger(__name__)


def error_body(message: str, code: str) -> dict:
    return {"error": message, "code": code}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager.

    Startup:
        - Check ffmpeg (rendering needs it; other stages do not)
        - Initialize database schema
        - Wire the orchestrator unless one was injected
        - Fail projects left mid-call by a previous process

    Shutdown:
        - Wait for follow-up stage tasks
        - Close database connections
    """
    logger.info("Starting Storyflow API...")
    try:
        validate_dependencies()
    except RuntimeError as e:
        logger.warning(f"Rendering will fail until ffmpeg is installed: {e}")
    await init_database()
    if getattr(app.state, "orchestrator", None) is None:
        from storyflow.pipeline import build_generators

        app.state.orchestrator = StageOrchestrator(async_session, build_generators())
    await app.state.orchestrator.recover_interrupted()
    logger.info("API startup complete")

    yield

    logger.info("Shutting down Storyflow API...")
    await app.state.orchestrator.serializer.shutdown()
    await shutdown()
    logger.info("API shutdown complete")


def create_app(orchestrator: Optional[StageOrchestrator] = None) -> FastAPI:
    """Build the application, optionally around a preconfigured orchestrator."""
    app = FastAPI(
        title="Storyflow API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.orchestrator = orchestrator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.server.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)
    app.include_router(router)

    @app.exception_handler(StoryflowError)
    async def storyflow_exception_handler(request: Request, exc: StoryflowError):
        if exc.http_status >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=exc.http_status, content=error_body(str(exc), exc.code))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg')}"
            for err in exc.errors()
        )
        return JSONResponse(
            status_code=400,
            content=error_body(details or "Invalid request", "VALIDATION_ERROR"),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            code = "NOT_FOUND"
        elif exc.status_code < 500:
            code = "VALIDATION_ERROR"
        else:
            code = "SERVER_ERROR"
        return JSONResponse(status_code=exc.status_code, content=error_body(str(exc.detail), code))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler to prevent stack traces in API responses."""
        logger.error(f"Unhandled exception in {request.method} {request.url.path}: {type(exc).__name__}: {str(exc)}")
        return JSONResponse(status_code=500, content=error_body("Internal server error", "SERVER_ERROR"))

    return app


app = create_app()
