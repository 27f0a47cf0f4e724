from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from orderqueue.config.logging import setup_logging
from orderqueue.config.settings import settings
from orderqueue.infra.database import get_database
from orderqueue.v1.core.exceptions import (
    OrderQueueException,
    RequestContextMiddleware,
    general_exception_handler,
    http_exception_handler,
    order_queue_exception_handler,
)
from orderqueue.v1.core.registries import job_registry
from orderqueue.v1.healthz import router as health_router
from orderqueue.v1.infra.jobs import registry_init  # noqa: F401 registers handlers
from orderqueue.v1.infra.jobs.routes import router as jobs_router


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await get_database(settings).close()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Job queue and worker for fulfillment orders",
        version=settings.version,
        debug=settings.debug,
        lifespan=lifespan,
        # All endpoints will be under /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(OrderQueueException, order_queue_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    # Freeze the job registry outside development to prevent runtime modifications
    if settings.environment != "development":
        job_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orderqueue.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
