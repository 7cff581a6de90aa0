from __future__ import annotations

from fastapi import FastAPI
from starlette.middleware.cors import CORSMiddleware

from src.infrastructure.config import Settings, get_settings

DEV_ORIGINS = (
    "http://localhost:3000",
    "http://localhost:5173",  # Vite
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)


def allowed_origins(settings: Settings) -> list[str]:
    """CORS_ORIGINS wins; otherwise local frontends in development and any origin elsewhere."""
    if settings.cors_origins:
        return list(settings.cors_origins)
    if settings.env in ("development", "staging"):
        return list(DEV_ORIGINS)
    return ["*"]


def add_default_middlewares(app: FastAPI) -> None:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(get_settings()),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
