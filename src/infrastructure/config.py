"""Runtime configuration read from environment variables.

Values are read once per process; tests set the environment before the first
call to :func:`get_settings`.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default) == "1"


@dataclass(frozen=True)
class Settings:
    env: str
    log_level: str
    supabase_disabled: bool
    supabase_url: str | None
    supabase_anon_key: str | None
    storage_bucket: str
    local_storage_dir: str
    signed_url_ttl_sec: int
    use_local_db: bool
    postgres_host: str
    postgres_port: int
    postgres_db: str
    postgres_user: str
    postgres_password: str
    generation_endpoint_url: str | None
    generation_api_key: str | None
    generation_timeout_sec: float
    canvas_page_size: int
    cors_origins: tuple[str, ...]

    @classmethod
    def from_env(cls) -> Settings:
        return cls(
            env=os.getenv("ENV", "development"),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            supabase_disabled=_flag("SUPABASE_DISABLED"),
            supabase_url=os.getenv("SUPABASE_URL"),
            supabase_anon_key=os.getenv("SUPABASE_ANON_KEY"),
            storage_bucket=os.getenv("SUPABASE_STORAGE_BUCKET", "user-content"),
            local_storage_dir=os.getenv("SUPABASE_STORAGE_LOCAL_DIR", ".local_storage"),
            signed_url_ttl_sec=int(os.getenv("SIGNED_URL_TTL_SEC", "3600")),
            use_local_db=_flag("USE_LOCAL_DB"),
            postgres_host=os.getenv("POSTGRES_HOST", "localhost"),
            postgres_port=int(os.getenv("POSTGRES_PORT", "5432")),
            postgres_db=os.getenv("POSTGRES_DB", "nanocanvas"),
            postgres_user=os.getenv("POSTGRES_USER", "nanocanvas"),
            postgres_password=os.getenv("POSTGRES_PASSWORD", "nanocanvas_dev_password"),
            generation_endpoint_url=os.getenv("GENERATION_ENDPOINT_URL") or None,
            generation_api_key=os.getenv("GENERATION_API_KEY") or None,
            generation_timeout_sec=float(os.getenv("GENERATION_TIMEOUT_SEC", "120")),
            canvas_page_size=int(os.getenv("CANVAS_PAGE_SIZE", "200")),
            cors_origins=tuple(o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()),
        )

    @property
    def local_mode(self) -> bool:
        """True when no Supabase client should be built."""
        return self.supabase_disabled or not self.supabase_url or not self.supabase_anon_key


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
