from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass

from supabase import Client, create_client

from src.infrastructure.config import Settings, get_settings

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UserInfo:
    id: str
    email: str | None


class SupabaseAuthAdapter:
    """Validates Supabase access tokens.

    In local mode (SUPABASE_DISABLED=1 or no credentials) any token maps to a
    deterministic fake user.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client: Client | None = get_supabase_client(self.settings)

    def validate_token(self, token: str) -> UserInfo:
        if not token:
            raise ValueError("Missing access token")
        if self._client is None:
            digest = hashlib.sha256(token.encode()).hexdigest()[:10]
            return UserInfo(id=f"fake-{digest}", email=None)
        try:
            res = self._client.auth.get_user(token)
            user = res.user
            if not user:
                raise ValueError("Invalid access token")
            return UserInfo(id=user.id, email=user.email)
        except ValueError:
            raise
        except Exception as exc:  # pragma: no cover - network path
            raise ValueError(f"Invalid access token: {exc}") from exc


_CLIENT_SINGLETON: Client | None = None


def get_supabase_client(settings: Settings | None = None) -> Client | None:
    global _CLIENT_SINGLETON
    settings = settings or get_settings()
    if settings.local_mode:
        return None
    if _CLIENT_SINGLETON is None:
        logger.info("Connecting to Supabase at %s", settings.supabase_url)
        _CLIENT_SINGLETON = create_client(settings.supabase_url, settings.supabase_anon_key)
    return _CLIENT_SINGLETON
