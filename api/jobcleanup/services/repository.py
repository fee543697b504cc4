from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from jobcleanup.core.config import get_settings


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryConflictError(RepositoryError):
    """Raised when an operation violates state transition rules."""


class RepositoryValidationError(RepositoryError):
    """Raised when payload validation fails before persistence."""


UPDATABLE_POSTING_FIELDS = (
    "last_checked_at",
    "check_count",
    "check_method",
    "status",
    "expired_evidence",
    "check_failure_reason",
)
REVIEW_ACTION_STATUSES = {"approve": "approved", "expire": "expired"}
POSTING_COLUMNS = """
  id::text as id,
  title,
  application_url,
  status::text as status,
  employer_id::text as employer_id,
  last_checked_at,
  coalesce(check_count, 0) as check_count,
  check_method,
  expired_evidence,
  check_failure_reason,
  admin_notes,
  reviewed_at,
  updated_at
"""


class PostgresRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        cleanup_lock_key: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.cleanup_lock_key = cleanup_lock_key
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def select_due_jobs(self, *, batch_size: int, cutoff: datetime) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id::text as id,
                  title,
                  application_url,
                  last_checked_at,
                  coalesce(check_count, 0) as check_count,
                  employer_id::text as employer_id
                from jobs
                where status = 'approved'
                  and application_url is not null
                  and (last_checked_at is null or last_checked_at < $2)
                order by last_checked_at asc nulls first
                limit $1
                """,
                batch_size,
                cutoff,
            )
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError(f"failed to select due jobs: {exc}") from exc
        return [self._due_job_row_to_dict(row) for row in rows]

    async def insert_check_log(self, entry: dict[str, Any]) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            insert into job_check_logs (
              job_id,
              check_method,
              status_code,
              evidence_found,
              decision,
              error_message,
              response_time_ms
            )
            values ($1::uuid, $2, $3, $4::jsonb, $5, $6, $7)
            """,
            entry["job_id"],
            entry["check_method"],
            entry.get("status_code"),
            json.dumps(list(entry.get("evidence_found") or [])),
            entry["decision"],
            entry.get("error_message"),
            entry.get("response_time_ms"),
        )

    async def update_posting(self, job_id: str, fields: dict[str, Any]) -> None:
        unknown = sorted(set(fields) - set(UPDATABLE_POSTING_FIELDS))
        if unknown:
            raise RepositoryValidationError(f"unsupported posting fields: {unknown}")
        if not fields:
            return

        columns = [column for column in UPDATABLE_POSTING_FIELDS if column in fields]
        assignments = ", ".join(f"{column} = ${index}" for index, column in enumerate(columns, start=2))
        pool = await self._get_pool()
        try:
            await pool.execute(
                f"update jobs set {assignments} where id = $1::uuid",
                job_id,
                *(fields[column] for column in columns),
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    @asynccontextmanager
    async def cleanup_run_lock(self) -> AsyncIterator[bool]:
        """Hold a session advisory lock for the duration of a cleanup run.

        Yields ``False`` without waiting when another run holds the lock.
        """
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            acquired = bool(await conn.fetchval("select pg_try_advisory_lock($1::bigint)", self.cleanup_lock_key))
            try:
                yield acquired
            finally:
                if acquired:
                    await conn.execute("select pg_advisory_unlock($1::bigint)", self.cleanup_lock_key)

    async def list_postings_for_review(self, *, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {POSTING_COLUMNS}
            from jobs
            where status = 'needs_review'
            order by last_checked_at asc nulls first, id asc
            limit $1
            offset $2
            """,
            limit,
            offset,
        )
        return [self._posting_row_to_dict(row) for row in rows]

    async def get_posting(self, job_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {POSTING_COLUMNS} from jobs where id = $1::uuid", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._posting_row_to_dict(row)

    async def get_user_type(self, user_id: str) -> str | None:
        pool = await self._get_pool()
        try:
            value = await pool.fetchval(
                "select user_type::text from profiles where user_id = $1::uuid",
                user_id,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError):
            return None
        except (asyncpg.PostgresError, OSError) as exc:
            raise RepositoryUnavailableError(f"failed to load profile: {exc}") from exc
        return self._coerce_text(value)

    async def list_check_logs(self, *, job_id: str, limit: int, offset: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        try:
            rows = await pool.fetch(
                """
                select
                  id::text as id,
                  job_id::text as job_id,
                  check_method,
                  status_code,
                  evidence_found,
                  decision,
                  error_message,
                  response_time_ms,
                  created_at
                from job_check_logs
                where job_id = $1::uuid
                order by created_at desc
                limit $2
                offset $3
                """,
                job_id,
                limit,
                offset,
            )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        return [self._check_log_row_to_dict(row) for row in rows]

    async def review_posting(
        self,
        *,
        job_id: str,
        action: str,
        admin_notes: str | None,
    ) -> dict[str, Any]:
        new_status = REVIEW_ACTION_STATUSES.get(action)
        if new_status is None:
            raise RepositoryValidationError("action must be one of: approve, expire")

        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        """
                        select status::text as status, check_failure_reason
                        from jobs
                        where id = $1::uuid
                        for update
                        """,
                        job_id,
                    )
                    if not row:
                        raise RepositoryNotFoundError("job not found")

                    current_status = str(row["status"])
                    if current_status != "needs_review":
                        raise RepositoryConflictError(f"job status is {current_status}, not needs_review")

                    expired_evidence: str | None = None
                    if new_status == "expired":
                        reason = self._coerce_text(row["check_failure_reason"])
                        expired_evidence = "Manually expired by admin" + (f": {reason}" if reason else "")

                    now = datetime.now(timezone.utc)
                    await conn.execute(
                        """
                        update jobs
                        set
                          status = $2,
                          updated_at = $3,
                          reviewed_at = $3,
                          admin_notes = coalesce($4, admin_notes),
                          expired_evidence = coalesce($5, expired_evidence)
                        where id = $1::uuid
                        """,
                        job_id,
                        new_status,
                        now,
                        self._coerce_text(admin_notes),
                        expired_evidence,
                    )
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

        return {"job_id": job_id, "new_status": new_status}

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("AIJA_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _due_job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "title": row["title"],
            "application_url": row["application_url"],
            "last_checked_at": row["last_checked_at"],
            "check_count": int(row["check_count"] or 0),
            "employer_id": row["employer_id"],
        }

    @staticmethod
    def _posting_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "title": row["title"],
            "application_url": row["application_url"],
            "status": row["status"],
            "employer_id": row["employer_id"],
            "last_checked_at": row["last_checked_at"],
            "check_count": int(row["check_count"] or 0),
            "check_method": row["check_method"],
            "expired_evidence": row["expired_evidence"],
            "check_failure_reason": row["check_failure_reason"],
            "admin_notes": row["admin_notes"],
            "reviewed_at": row["reviewed_at"],
            "updated_at": row["updated_at"],
        }

    def _check_log_row_to_dict(self, row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "job_id": row["job_id"],
            "check_method": row["check_method"],
            "status_code": row["status_code"],
            "evidence_found": self._coerce_text_list(row["evidence_found"]),
            "decision": row["decision"],
            "error_message": row["error_message"],
            "response_time_ms": row["response_time_ms"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _coerce_text(value: Any) -> str | None:
        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return str(value)

    @staticmethod
    def _coerce_text_list(value: Any) -> list[str]:
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except json.JSONDecodeError:
                return []
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, str)]


@lru_cache
def get_repository() -> PostgresRepository:
    settings = get_settings()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        cleanup_lock_key=settings.cleanup_lock_key,
    )
