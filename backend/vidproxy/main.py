"""FastAPI application entry point."""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Response
from fastapi.staticfiles import StaticFiles

from vidproxy.core.config import settings
from vidproxy.core.logging import setup_logging
from vidproxy.core.metrics import get_content_type, get_metrics, set_app_info
from vidproxy.core.middleware import CorrelationIdMiddleware, MetricsMiddleware, RequestLoggingMiddleware
from vidproxy.core.storage import get_storage
from vidproxy.core.tracing import setup_tracing, shutdown_tracing
from vidproxy.modules.job.dispatcher import get_dispatcher
from vidproxy.modules.video.router import router as video_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the storage gateway, start the dispatcher and requeue unfinished jobs.

    The dispatcher is drained on shutdown.
    """
    get_storage()
    dispatcher = get_dispatcher()
    await dispatcher.start()
    await dispatcher.recover_unfinished()
    app.state.dispatcher = dispatcher
    try:
        yield
    finally:
        await dispatcher.shutdown()
        shutdown_tracing()


def create_app() -> FastAPI:
    setup_logging(
        level=settings.LOG_LEVEL if not settings.DEBUG else "DEBUG",
        json_format=settings.LOG_JSON,
        include_stack_trace=True,
    )
    setup_tracing(
        service_name=settings.PROJECT_NAME,
        service_version=settings.VERSION,
        environment=settings.ENVIRONMENT,
        otlp_endpoint=settings.OTLP_ENDPOINT,
        enable_console_export=settings.DEBUG,
    )
    set_app_info(version=settings.VERSION, environment=settings.ENVIRONMENT)

    application = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description="Asynchronous video proxy pipeline: low-res proxies, thumbnails and media metadata.",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
        lifespan=lifespan,
        openapi_tags=[
            {"name": "health", "description": "Health check endpoints"},
            {"name": "videos", "description": "Video upload, processing status and downloads"},
        ],
    )

    application.add_middleware(RequestLoggingMiddleware)
    application.add_middleware(CorrelationIdMiddleware)
    application.add_middleware(MetricsMiddleware)

    application.include_router(video_router, prefix=settings.API_V1_PREFIX)

    if settings.STORAGE_BACKEND.lower() == "local":
        # public URLs of the local backend point here
        os.makedirs(settings.LOCAL_STORAGE_PATH, exist_ok=True)
        application.mount("/uploads", StaticFiles(directory=settings.LOCAL_STORAGE_PATH), name="uploads")

    @application.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Basic liveness check."""
        return {"status": "healthy", "version": settings.VERSION}

    @application.get("/metrics", tags=["health"])
    async def metrics() -> Response:
        """Prometheus metrics."""
        return Response(content=get_metrics(), media_type=get_content_type())

    return application


app = create_app()
