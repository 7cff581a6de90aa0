from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from src.application.dtos.common_dto import HealthResponse, RootResponse
from src.infrastructure.api.middlewares import add_default_middlewares
from src.infrastructure.api.routes.annotation_routes import router as annotation_router
from src.infrastructure.api.routes.auth_routes import router as auth_router
from src.infrastructure.api.routes.canvas_routes import router as canvas_router
from src.infrastructure.api.routes.generation_routes import router as generation_router
from src.infrastructure.api.routes.image_routes import router as image_router
from src.infrastructure.config import get_settings
from src.infrastructure.storage.supabase_storage import LOCAL_URL_PREFIX


def configure_logging() -> None:
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_app() -> FastAPI:
    configure_logging()
    settings = get_settings()
    app = FastAPI(
        title="NanoCanvas Backend",
        version="0.1.0",
        description="""
        ## NanoCanvas Backend API

        FastAPI backend for an iterative image editing canvas. Images are
        uploaded or generated, annotated with masks, shapes, text stamps and
        reference chips, sent to a generation backend as edits, and browsed
        as version rows.

        ### Features
        - **Canvas**: version rows rebuilt from the stored lineage, including running jobs
        - **Generation**: credit-charged edits with progress estimates and automatic refunds
        - **Annotations**: pointer-driven vector editor with undo/redo
        - **Storage**: Supabase (or local PostgreSQL / in-memory) with signed URLs

        ### Authentication
        All endpoints (except root and health) require authentication via Bearer token
        in the Authorization header:
        ```
        Authorization: Bearer your-jwt-token
        ```

        ### Error Responses
        - **400 Bad Request**: Invalid request parameters or malformed data
        - **401 Unauthorized**: Missing or invalid authentication token
        - **402 Payment Required**: Not enough credits for the requested quality tier
        - **404 Not Found**: Requested resource does not exist or user doesn't have access
        - **409 Conflict**: An annotation interaction is already in progress
        - **422 Unprocessable Entity**: Validation error in request body
        """,
    )
    add_default_middlewares(app)

    @app.get(
        "/",
        response_model=RootResponse,
        summary="API Root",
        description="Get basic information about the NanoCanvas API",
        response_description="API information including status and version",
    )
    def root():
        """Get API root information."""
        return {"status": "ok", "service": "nanocanvas-backend", "version": app.version}

    @app.get(
        "/health",
        response_model=HealthResponse,
        summary="Health Check",
        description="Check if the API service is running and healthy",
        response_description="Health status of the API service",
    )
    def health():
        """Check API health status."""
        return {"status": "healthy"}

    app.include_router(auth_router)
    app.include_router(canvas_router)
    app.include_router(image_router)
    app.include_router(generation_router)
    app.include_router(annotation_router)

    if settings.local_mode:
        # stands in for signed storage URLs when running without Supabase
        app.mount(
            LOCAL_URL_PREFIX,
            StaticFiles(directory=settings.local_storage_dir, check_dir=False),
            name="local-storage",
        )
    return app


app = create_app()
