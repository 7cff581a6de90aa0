from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from supabase import Client

from src.domain.entities.profile import ProfileEntity
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.database.postgres_client import get_postgres_client

_MEM_PROFILES: dict[str, ProfileEntity] = {}

CENTS = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value if value is not None else "0")).quantize(CENTS)


class ProfileRepository:
    def __init__(self, client: Client | None, settings: Settings | None = None) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.pg_client = get_postgres_client(self.settings)

    @property
    def in_memory(self) -> bool:
        return self.pg_client is None and (self.settings.supabase_disabled or self.client is None)

    def _row_to_entity(self, row: dict) -> ProfileEntity:
        """Convert database row to ProfileEntity."""
        created_at = row.get("created_at")
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)

        return ProfileEntity(
            id=row["id"],
            email=row.get("email"),
            credits=_money(row.get("credits")),
            role=row.get("role") or "user",
            created_at=created_at,
        )

    def upsert(self, user_id: str, email: str | None) -> ProfileEntity:
        # PostgreSQL mode
        if self.pg_client:
            try:
                query = """
                    INSERT INTO profiles (id, email, created_at)
                    VALUES (%s, %s, CURRENT_TIMESTAMP)
                    ON CONFLICT (id) DO UPDATE SET email = COALESCE(EXCLUDED.email, profiles.email)
                    RETURNING *
                """
                row = self.pg_client.execute_returning(query, (user_id, email))
                return self._row_to_entity(row)
            except Exception as exc:
                raise RuntimeError(f"PostgreSQL upsert profile failed: {exc}") from exc

        # In-memory mode
        if self.in_memory:
            current = _MEM_PROFILES.get(user_id) or ProfileEntity(id=user_id, email=email)
            entity = replace(current, email=email or current.email)
            _MEM_PROFILES[user_id] = entity
            return entity

        # Supabase mode
        try:  # pragma: no cover - network
            data = {"id": user_id, "email": email}
            self.client.table("profiles").upsert(data, on_conflict="id").execute()
            res = self.client.table("profiles").select("*").eq("id", user_id).single().execute()
            return self._row_to_entity(res.data)
        except Exception as exc:
            raise RuntimeError(f"DB upsert profile failed: {exc}") from exc

    def get(self, user_id: str) -> ProfileEntity | None:
        # PostgreSQL mode
        if self.pg_client:
            row = self.pg_client.fetch_one("SELECT * FROM profiles WHERE id = %s", (user_id,))
            return self._row_to_entity(row) if row else None

        # In-memory mode
        if self.in_memory:
            return _MEM_PROFILES.get(user_id)

        # Supabase mode
        try:  # pragma: no cover - network
            res = self.client.table("profiles").select("*").eq("id", user_id).limit(1).execute()
            return self._row_to_entity(res.data[0]) if res.data else None
        except Exception as exc:
            raise RuntimeError(f"DB get profile failed: {exc}") from exc

    def adjust_credits(self, user_id: str, delta: Decimal) -> Decimal:
        """Add `delta` (negative to charge) to the stored balance, returning the new balance."""
        delta = _money(delta)

        # PostgreSQL mode
        if self.pg_client:
            try:
                row = self.pg_client.execute_returning(
                    "UPDATE profiles SET credits = credits + %s WHERE id = %s RETURNING credits",
                    (delta, user_id),
                )
            except Exception as exc:
                raise RuntimeError(f"PostgreSQL adjust credits failed: {exc}") from exc
            return _money(row["credits"])

        # In-memory mode
        if self.in_memory:
            current = _MEM_PROFILES.get(user_id) or ProfileEntity(id=user_id, email=None)
            updated = replace(current, credits=current.credits + delta)
            _MEM_PROFILES[user_id] = updated
            return updated.credits

        # Supabase mode
        try:  # pragma: no cover - network
            res = self.client.rpc("adjust_credits", {"p_user_id": user_id, "p_delta": str(delta)}).execute()
            return _money(res.data)
        except Exception as exc:
            raise RuntimeError(f"DB adjust credits failed: {exc}") from exc

    def set_credits(self, user_id: str, credits: Decimal, role: str | None = None) -> ProfileEntity:
        """Administrative top-up."""
        credits = _money(credits)

        # PostgreSQL mode
        if self.pg_client:
            try:
                row = self.pg_client.execute_returning(
                    "UPDATE profiles SET credits = %s, role = COALESCE(%s, role) WHERE id = %s RETURNING *",
                    (credits, role, user_id),
                )
            except Exception as exc:
                raise RuntimeError(f"PostgreSQL update profile failed: {exc}") from exc
            return self._row_to_entity(row)

        # In-memory mode
        if self.in_memory:
            current = _MEM_PROFILES.get(user_id) or ProfileEntity(id=user_id, email=None)
            updated = replace(current, credits=credits, role=role or current.role)
            _MEM_PROFILES[user_id] = updated
            return updated

        # Supabase mode
        try:  # pragma: no cover - network
            data: dict = {"credits": str(credits)}
            if role:
                data["role"] = role
            self.client.table("profiles").update(data).eq("id", user_id).execute()
            res = self.client.table("profiles").select("*").eq("id", user_id).single().execute()
            return self._row_to_entity(res.data)
        except Exception as exc:
            raise RuntimeError(f"DB update profile failed: {exc}") from exc
