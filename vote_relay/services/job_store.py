from __future__ import annotations

import asyncio
import json
import os
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Protocol

import asyncpg  # type: ignore[import-untyped]

from vote_relay.core.config import get_settings
from vote_relay.core.errors import StorageError
from vote_relay.schemas.votes import SubmissionJob


class JobStore(Protocol):
    async def save(self, record: SubmissionJob) -> None: ...

    async def close(self) -> None: ...


class FileJobStore:
    """One pretty-printed JSON document per job, replaced atomically on every save."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def path_for(self, job_id: str) -> Path:
        return self.directory / f"{job_id}.json"

    async def save(self, record: SubmissionJob) -> None:
        try:
            payload = json.dumps(record.model_dump(mode="json"), ensure_ascii=False, indent=2)
            await asyncio.to_thread(self._write, self.path_for(record.job_id), payload)
        except (OSError, ValueError) as exc:
            raise StorageError(f"failed to write job record {record.job_id}: {exc}") from exc

    async def close(self) -> None:
        return None

    def _write(self, path: Path, payload: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class PostgresJobStore:
    def __init__(self, database_url: str | None, min_pool_size: int = 1, max_pool_size: int = 5) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def save(self, record: SubmissionJob) -> None:
        pool = await self._get_pool()
        try:
            await pool.execute(
                """
                insert into vote_jobs (id, status, record, updated_at)
                values ($1, $2, $3::jsonb, now())
                on conflict (id) do update
                set status = excluded.status,
                    record = excluded.record,
                    updated_at = excluded.updated_at
                """,
                record.job_id,
                record.status.value,
                record.model_dump_json(),
            )
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, ValueError) as exc:
            raise StorageError(f"failed to write job record {record.job_id}: {exc}") from exc

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise StorageError("DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            await pool.execute(
                """
                create table if not exists vote_jobs (
                  id text primary key,
                  status text not null,
                  record jsonb not null,
                  updated_at timestamptz not null default now()
                )
                """
            )
        except Exception as exc:  # pragma: no cover - depends on environment
            raise StorageError("database unavailable") from exc
        self._pool = pool
        return pool


@lru_cache
def get_job_store() -> JobStore:
    settings = get_settings()
    if settings.database_url:
        return PostgresJobStore(
            settings.database_url,
            min_pool_size=settings.database_pool_min_size,
            max_pool_size=settings.database_pool_max_size,
        )
    return FileJobStore(settings.vote_results_dir)
