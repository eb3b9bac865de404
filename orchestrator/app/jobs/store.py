"""
Job persistence.

Every store saves whole Jobs: one `save` replaces the stored record for that
job id in a single atomic step, which is the only consistency the orchestrator
relies on. Three backends share the same coroutine interface:

  - JsonFileJobStore: the `multiAngleJobs` collection inside a JSON document
    that may hold other collections too (they are preserved untouched).
  - MemoryJobStore: process-local dict, for tests and throwaway runs.
  - PostgresJobStore: one JSONB row per job (asyncpg).
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from typing import Any, Dict, List, Optional

import asyncpg  # type: ignore

from ..config import Settings
from .state import Job

log = logging.getLogger(__name__)

COLLECTION = "multiAngleJobs"


class JobStore:
    async def load(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    async def save(self, job: Job) -> None:
        raise NotImplementedError

    async def delete(self, job_id: str) -> bool:
        raise NotImplementedError

    async def list_all(self) -> List[Job]:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class MemoryJobStore(JobStore):
    def __init__(self) -> None:
        # Jobs are kept serialized so callers never share mutable objects with the store.
        self._rows: Dict[str, Dict[str, Any]] = {}

    async def load(self, job_id: str) -> Optional[Job]:
        row = self._rows.get(job_id)
        return Job.from_dict(row) if row is not None else None

    async def save(self, job: Job) -> None:
        self._rows[job.id] = job.to_dict()

    async def delete(self, job_id: str) -> bool:
        return self._rows.pop(job_id, None) is not None

    async def list_all(self) -> List[Job]:
        return [Job.from_dict(r) for r in self._rows.values()]


def _write_json_atomic(path: str, doc: Dict[str, Any]) -> None:
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tmp = path + ".tmp"
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(json.dumps(doc, ensure_ascii=False, indent=2))
        f.flush(); os.fsync(f.fileno())
    os.replace(tmp, path)


def _read_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError:
        return {}
    if not text.strip():
        return {}
    doc = json.loads(text)
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: expected a JSON object at top level")
    return doc


class JsonFileJobStore(JobStore):
    def __init__(self, path: str) -> None:
        self.path = path
        self._lock = asyncio.Lock()

    async def _run(self, fn, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, fn, *args)

    async def _rows(self) -> List[Dict[str, Any]]:
        doc = await self._run(_read_json, self.path)
        return list(doc.get(COLLECTION) or [])

    async def load(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            for row in await self._rows():
                if row.get("id") == job_id:
                    return Job.from_dict(row)
        return None

    async def save(self, job: Job) -> None:
        async with self._lock:
            doc = await self._run(_read_json, self.path)
            rows = list(doc.get(COLLECTION) or [])
            data = job.to_dict()
            for i, row in enumerate(rows):
                if row.get("id") == job.id:
                    rows[i] = data
                    break
            else:
                rows.append(data)
            doc[COLLECTION] = rows
            await self._run(_write_json_atomic, self.path, doc)

    async def delete(self, job_id: str) -> bool:
        async with self._lock:
            doc = await self._run(_read_json, self.path)
            rows = list(doc.get(COLLECTION) or [])
            kept = [r for r in rows if r.get("id") != job_id]
            if len(kept) == len(rows):
                return False
            doc[COLLECTION] = kept
            await self._run(_write_json_atomic, self.path, doc)
            return True

    async def list_all(self) -> List[Job]:
        async with self._lock:
            rows = await self._rows()
        return [Job.from_dict(r) for r in rows]


_SCHEMA = """
CREATE TABLE IF NOT EXISTS multiangle_job (
  id          TEXT PRIMARY KEY,
  state       TEXT NOT NULL,
  doc         JSONB NOT NULL,
  created_at  TIMESTAMPTZ NOT NULL,
  updated_at  TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS multiangle_job_created_idx ON multiangle_job(created_at DESC);
"""


class PostgresJobStore(JobStore):
    def __init__(self, pool: asyncpg.pool.Pool) -> None:
        self._pool = pool

    @classmethod
    async def connect(cls, settings: Settings) -> "PostgresJobStore":
        if not (settings.postgres_host and settings.postgres_db and settings.postgres_user and settings.postgres_password):
            raise RuntimeError("JOB_STORE=postgres needs POSTGRES_HOST, POSTGRES_DB, POSTGRES_USER and POSTGRES_PASSWORD")
        pool = await asyncpg.create_pool(
            host=settings.postgres_host,
            port=settings.postgres_port,
            user=settings.postgres_user,
            password=settings.postgres_password,
            database=settings.postgres_db,
            min_size=1,
            max_size=10,
        )
        async with pool.acquire() as conn:
            await conn.execute(_SCHEMA)
        return cls(pool)

    async def load(self, job_id: str) -> Optional[Job]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT doc FROM multiangle_job WHERE id = $1", job_id)
        return Job.from_dict(json.loads(row["doc"])) if row is not None else None

    async def save(self, job: Job) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO multiangle_job (id, state, doc, created_at, updated_at)
                VALUES ($1, $2, $3::jsonb, $4, $5)
                ON CONFLICT (id) DO UPDATE
                  SET state = EXCLUDED.state, doc = EXCLUDED.doc, updated_at = EXCLUDED.updated_at
                """,
                job.id,
                job.state,
                json.dumps(job.to_dict(), ensure_ascii=False),
                job.created_at,
                job.updated_at,
            )

    async def delete(self, job_id: str) -> bool:
        async with self._pool.acquire() as conn:
            status = await conn.execute("DELETE FROM multiangle_job WHERE id = $1", job_id)
        # asyncpg returns the command tag, e.g. "DELETE 1".
        return status.split()[-1] != "0"

    async def list_all(self) -> List[Job]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch("SELECT doc FROM multiangle_job ORDER BY created_at DESC")
        return [Job.from_dict(json.loads(r["doc"])) for r in rows]

    async def close(self) -> None:
        await self._pool.close()


async def build_store(settings: Settings) -> JobStore:
    if settings.job_store == "memory":
        return MemoryJobStore()
    if settings.job_store == "postgres":
        return await PostgresJobStore.connect(settings)
    log.info("[jobs.store] json document at %s", settings.jobs_path)
    return JsonFileJobStore(settings.jobs_path)
