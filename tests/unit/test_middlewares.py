from dataclasses import replace

from src.infrastructure.api.middlewares import DEV_ORIGINS, allowed_origins
from src.infrastructure.config import Settings


def test_explicit_origins_win():
    settings = replace(Settings.from_env(), env="production", cors_origins=("https://canvas.example",))
    assert allowed_origins(settings) == ["https://canvas.example"]


def test_development_falls_back_to_local_frontends():
    settings = replace(Settings.from_env(), env="development", cors_origins=())
    assert allowed_origins(settings) == list(DEV_ORIGINS)


def test_production_without_origins_allows_any():
    settings = replace(Settings.from_env(), env="production", cors_origins=())
    assert allowed_origins(settings) == ["*"]
