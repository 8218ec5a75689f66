from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from attention.config.logging import setup_logging
from attention.config.settings import settings
from attention.v1.core.exceptions import (
    AttentionException,
    RequestContextMiddleware,
    attention_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from attention.v1.core.registries import executor_registry
from attention.v1.healthz import router as health_router
from attention.v1.infra.jobs import registry_init  # noqa: F401
from attention.v1.infra.jobs.routes import router as jobs_router
from attention.v1.insights.routes import router as insights_router
from attention.v1.runs.routes import router as runs_router
from attention.v1.webhooks.routes import router as webhooks_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    # Initialize structured logging
    setup_logging()

    app = FastAPI(
        title=settings.app_name,
        description="Product attention insights with background AI explanations",
        version=settings.version,
        debug=settings.debug,
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
    app.add_exception_handler(AttentionException, attention_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(insights_router, prefix="/v1")
    app.include_router(jobs_router, prefix="/v1")
    app.include_router(runs_router, prefix="/v1")
    app.include_router(webhooks_router, prefix="/v1")

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        executor_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "attention.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        workers=1 if settings.debug else settings.workers,
    )
