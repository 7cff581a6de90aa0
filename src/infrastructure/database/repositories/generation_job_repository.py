from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from supabase import Client

from src.domain.entities.generation_job import GenerationJobEntity, JobStatus
from src.infrastructure.config import Settings, get_settings
from src.infrastructure.database.postgres_client import get_postgres_client

_MEM_JOBS: dict[str, GenerationJobEntity] = {}


class GenerationJobRepository:
    """Server-side record of generation requests, used to rebuild placeholders on reload."""

    def __init__(self, client: Client | None, settings: Settings | None = None) -> None:
        self.client = client
        self.settings = settings or get_settings()
        self.pg_client = get_postgres_client(self.settings)

    @property
    def in_memory(self) -> bool:
        return self.pg_client is None and (self.settings.supabase_disabled or self.client is None)

    def _row_to_entity(self, row: dict) -> GenerationJobEntity:
        created_at = row["created_at"]
        if isinstance(created_at, str):
            created_at = datetime.fromisoformat(created_at)
        return GenerationJobEntity(
            id=row["id"],
            user_id=row["user_id"],
            parent_id=row.get("parent_id"),
            status=JobStatus(row["status"]),
            quality=row["quality"],
            cost=Decimal(str(row.get("cost") or "0")),
            created_at=created_at,
            prompt=row.get("prompt") or "",
            kind=row.get("kind") or "style",
            concurrent_jobs=row.get("concurrent_jobs") or 1,
            error=row.get("error"),
        )

    def create(self, job: GenerationJobEntity) -> GenerationJobEntity:
        # PostgreSQL mode
        if self.pg_client:
            try:
                row = self.pg_client.execute_returning(
                    """
                    INSERT INTO generation_jobs
                        (id, user_id, parent_id, status, quality, cost, prompt, kind, concurrent_jobs, created_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        job.id,
                        job.user_id,
                        job.parent_id,
                        job.status.value,
                        job.quality,
                        job.cost,
                        job.prompt,
                        job.kind,
                        job.concurrent_jobs,
                        job.created_at,
                    ),
                )
            except Exception as exc:
                raise RuntimeError(f"PostgreSQL insert job failed: {exc}") from exc
            return self._row_to_entity(row)

        # In-memory mode
        if self.in_memory:
            _MEM_JOBS[job.id] = job
            return job

        # Supabase mode
        try:  # pragma: no cover - network
            data = {
                "id": job.id,
                "user_id": job.user_id,
                "parent_id": job.parent_id,
                "status": job.status.value,
                "quality": job.quality,
                "cost": str(job.cost),
                "prompt": job.prompt,
                "kind": job.kind,
                "concurrent_jobs": job.concurrent_jobs,
                "created_at": job.created_at.isoformat(),
            }
            res = self.client.table("generation_jobs").insert(data).execute()
            return self._row_to_entity(res.data[0])
        except Exception as exc:
            raise RuntimeError(f"DB insert job failed: {exc}") from exc

    def list_by_user(self, user_id: str) -> list[GenerationJobEntity]:
        # PostgreSQL mode
        if self.pg_client:
            rows = self.pg_client.fetch_all(
                "SELECT * FROM generation_jobs WHERE user_id = %s ORDER BY created_at DESC",
                (user_id,),
            )
            return [self._row_to_entity(row) for row in rows]

        # In-memory mode
        if self.in_memory:
            jobs = [j for j in _MEM_JOBS.values() if j.user_id == user_id]
            return sorted(jobs, key=lambda j: j.created_at, reverse=True)

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("generation_jobs")
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .execute()
            )
            return [self._row_to_entity(row) for row in res.data or []]
        except Exception as exc:
            raise RuntimeError(f"DB list jobs failed: {exc}") from exc

    def update_status(self, job_id: str, status: JobStatus, error: str | None = None) -> None:
        # PostgreSQL mode
        if self.pg_client:
            self.pg_client.execute(
                "UPDATE generation_jobs SET status = %s, error = %s WHERE id = %s",
                (status.value, error, job_id),
            )
            return

        # In-memory mode
        if self.in_memory:
            current = _MEM_JOBS.get(job_id)
            if current is not None:
                _MEM_JOBS[job_id] = replace(current, status=status, error=error)
            return

        # Supabase mode
        try:  # pragma: no cover - network
            (
                self.client.table("generation_jobs")
                .update({"status": status.value, "error": error})
                .eq("id", job_id)
                .execute()
            )
        except Exception as exc:
            raise RuntimeError(f"DB update job failed: {exc}") from exc

    def delete_many(self, job_ids: list[str], user_id: str) -> int:
        if not job_ids:
            return 0
        # PostgreSQL mode
        if self.pg_client:
            return self.pg_client.execute(
                "DELETE FROM generation_jobs WHERE id = ANY(%s) AND user_id = %s",
                (list(job_ids), user_id),
            )

        # In-memory mode
        if self.in_memory:
            removed = 0
            for job_id in job_ids:
                job = _MEM_JOBS.get(job_id)
                if job is not None and job.user_id == user_id:
                    del _MEM_JOBS[job_id]
                    removed += 1
            return removed

        # Supabase mode
        try:  # pragma: no cover - network
            res = (
                self.client.table("generation_jobs")
                .delete()
                .in_("id", list(job_ids))
                .eq("user_id", user_id)
                .execute()
            )
            return len(res.data or [])
        except Exception as exc:
            raise RuntimeError(f"DB delete jobs failed: {exc}") from exc
