from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Awaitable, Callable, Coroutine
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar

import asyncpg  # type: ignore[import-untyped]
import pytest

from jobcleanup.services.repository import PostgresRepository, RepositoryConflictError

TEST_SCHEMA = "jobcleanup_integration"
LOCK_KEY = 48_214_799
NOW = datetime.now(timezone.utc).replace(microsecond=0)
CUTOFF = NOW - timedelta(hours=48)

T = TypeVar("T")


@pytest.fixture(scope="session")
def database_url() -> str:
    url = os.getenv("AIJA_DATABASE_URL")
    if not url:
        pytest.skip("integration tests require AIJA_DATABASE_URL")
    return url


@pytest.fixture
def schema_url(database_url: str) -> str:
    # asyncpg passes unrecognised DSN query parameters through as server settings.
    separator = "&" if "?" in database_url else "?"
    url = f"{database_url}{separator}search_path={TEST_SCHEMA}"
    _run(_reset_schema(database_url))
    return url


def test_select_due_jobs_returns_oldest_batch_with_nulls_first(schema_url: str) -> None:
    never_checked = [str(uuid.uuid4()) for _ in range(10)]
    stale = [(str(uuid.uuid4()), NOW - timedelta(hours=49 + index)) for index in range(20)]
    recent_id = str(uuid.uuid4())
    flagged_id = str(uuid.uuid4())
    no_url_id = str(uuid.uuid4())

    rows: list[tuple[str, str, str | None, datetime | None]] = []
    rows += [(job_id, "approved", f"https://jobs.example.com/{job_id}", None) for job_id in never_checked]
    rows += [(job_id, "approved", f"https://jobs.example.com/{job_id}", checked) for job_id, checked in stale]
    rows.append((recent_id, "approved", "https://jobs.example.com/recent", NOW - timedelta(hours=1)))
    rows.append((flagged_id, "needs_review", "https://jobs.example.com/flagged", None))
    rows.append((no_url_id, "approved", None, None))
    _run(_seed_jobs(schema_url, rows))

    due = _run(_with_repository(schema_url, lambda repo: repo.select_due_jobs(batch_size=25, cutoff=CUTOFF)))

    assert len(due) == 25
    assert {row["id"] for row in due[:10]} == set(never_checked)
    oldest_first = sorted(stale, key=lambda item: item[1])[:15]
    assert [row["id"] for row in due[10:]] == [job_id for job_id, _ in oldest_first]
    returned = {row["id"] for row in due}
    assert recent_id not in returned
    assert flagged_id not in returned
    assert no_url_id not in returned


def test_select_due_jobs_excludes_recently_checked(schema_url: str) -> None:
    recent_id = str(uuid.uuid4())
    due_id = str(uuid.uuid4())
    _run(
        _seed_jobs(
            schema_url,
            [
                (recent_id, "approved", "https://jobs.example.com/recent", NOW - timedelta(hours=47)),
                (due_id, "approved", "https://jobs.example.com/due", NOW - timedelta(hours=49)),
            ],
        )
    )

    due = _run(_with_repository(schema_url, lambda repo: repo.select_due_jobs(batch_size=25, cutoff=CUTOFF)))

    assert [row["id"] for row in due] == [due_id]
    assert due[0]["check_count"] == 0


def test_check_log_and_posting_update_persist(schema_url: str) -> None:
    job_id = str(uuid.uuid4())
    _run(_seed_jobs(schema_url, [(job_id, "approved", "https://jobs.example.com/gone", None)]))

    async def scenario(repo: PostgresRepository) -> tuple[dict[str, Any], list[dict[str, Any]]]:
        await repo.insert_check_log(
            {
                "job_id": job_id,
                "check_method": "http",
                "status_code": 404,
                "evidence_found": ["HTTP 404"],
                "decision": "mark_expired",
                "error_message": None,
                "response_time_ms": 42,
            }
        )
        await repo.update_posting(
            job_id,
            {
                "last_checked_at": NOW,
                "check_count": 1,
                "check_method": "http",
                "status": "expired",
                "expired_evidence": "HTTP 404",
            },
        )
        return await repo.get_posting(job_id), await repo.list_check_logs(job_id=job_id, limit=10, offset=0)

    posting, logs = _run(_with_repository(schema_url, scenario))

    assert posting["status"] == "expired"
    assert posting["check_count"] == 1
    assert posting["expired_evidence"] == "HTTP 404"
    assert logs[0]["evidence_found"] == ["HTTP 404"]
    assert logs[0]["decision"] == "mark_expired"


def test_second_run_lock_is_refused_while_first_is_held(schema_url: str) -> None:
    async def scenario() -> tuple[bool, bool, bool]:
        first_repo = _repository(schema_url)
        second_repo = _repository(schema_url)
        try:
            async with first_repo.cleanup_run_lock() as first:
                async with second_repo.cleanup_run_lock() as second:
                    pass
            async with second_repo.cleanup_run_lock() as after_release:
                pass
        finally:
            await first_repo.close()
            await second_repo.close()
        return first, second, after_release

    first, second, after_release = _run(scenario())

    assert first is True
    assert second is False
    assert after_release is True


def test_review_posting_requires_needs_review_status(schema_url: str) -> None:
    flagged_id = str(uuid.uuid4())
    approved_id = str(uuid.uuid4())
    _run(
        _seed_jobs(
            schema_url,
            [
                (flagged_id, "needs_review", "https://jobs.example.com/flagged", NOW),
                (approved_id, "approved", "https://jobs.example.com/live", NOW),
            ],
            failure_reason="HTTP 503 - uncertain",
        )
    )

    async def scenario(repo: PostgresRepository) -> tuple[dict[str, Any], dict[str, Any]]:
        result = await repo.review_posting(job_id=flagged_id, action="expire", admin_notes="  confirmed closed  ")
        return result, await repo.get_posting(flagged_id)

    result, posting = _run(_with_repository(schema_url, scenario))

    assert result == {"job_id": flagged_id, "new_status": "expired"}
    assert posting["status"] == "expired"
    assert posting["expired_evidence"] == "Manually expired by admin: HTTP 503 - uncertain"
    assert posting["admin_notes"] == "confirmed closed"
    assert posting["reviewed_at"] is not None

    with pytest.raises(RepositoryConflictError):
        _run(
            _with_repository(
                schema_url,
                lambda repo: repo.review_posting(job_id=approved_id, action="approve", admin_notes=None),
            )
        )


def test_get_user_type_reads_profile(schema_url: str) -> None:
    admin_id = str(uuid.uuid4())
    _run(_execute(schema_url, "insert into profiles (user_id, user_type) values ($1::uuid, 'admin')", admin_id))

    async def scenario(repo: PostgresRepository) -> list[str | None]:
        return [
            await repo.get_user_type(admin_id),
            await repo.get_user_type(str(uuid.uuid4())),
            await repo.get_user_type("not-a-uuid"),
        ]

    assert _run(_with_repository(schema_url, scenario)) == ["admin", None, None]


def _repository(url: str) -> PostgresRepository:
    return PostgresRepository(database_url=url, min_pool_size=1, max_pool_size=2, cleanup_lock_key=LOCK_KEY)


async def _with_repository(url: str, action: Callable[[PostgresRepository], Awaitable[T]]) -> T:
    # Pools are bound to the running loop; one repository per scenario.
    repo = _repository(url)
    try:
        return await action(repo)
    finally:
        await repo.close()


async def _reset_schema(database_url: str) -> None:
    conn = await asyncpg.connect(database_url)
    try:
        await conn.execute(f"drop schema if exists {TEST_SCHEMA} cascade")
        await conn.execute(f"create schema {TEST_SCHEMA}")
        await conn.execute(
            f"""
            create table {TEST_SCHEMA}.jobs (
              id uuid primary key,
              title text not null,
              application_url text,
              status text not null,
              employer_id uuid,
              last_checked_at timestamptz,
              check_count integer default 0,
              check_method text,
              expired_evidence text,
              check_failure_reason text,
              admin_notes text,
              reviewed_at timestamptz,
              updated_at timestamptz not null default now()
            );
            create table {TEST_SCHEMA}.job_check_logs (
              id bigserial primary key,
              job_id uuid not null references {TEST_SCHEMA}.jobs (id) on delete cascade,
              check_method text not null,
              status_code integer,
              evidence_found jsonb not null default '[]'::jsonb,
              decision text not null,
              error_message text,
              response_time_ms integer,
              created_at timestamptz not null default now()
            );
            create table {TEST_SCHEMA}.profiles (
              user_id uuid primary key,
              user_type text not null
            );
            """
        )
    finally:
        await conn.close()


async def _seed_jobs(
    url: str,
    rows: list[tuple[str, str, str | None, datetime | None]],
    *,
    failure_reason: str | None = None,
) -> None:
    conn = await asyncpg.connect(url)
    try:
        await conn.executemany(
            """
            insert into jobs (id, title, application_url, status, last_checked_at, check_failure_reason)
            values ($1::uuid, $2, $3, $4, $5, $6)
            """,
            [
                (job_id, f"Role {index}", application_url, job_status, last_checked_at, failure_reason)
                for index, (job_id, job_status, application_url, last_checked_at) in enumerate(rows)
            ],
        )
    finally:
        await conn.close()


async def _execute(url: str, query: str, *args: Any) -> None:
    conn = await asyncpg.connect(url)
    try:
        await conn.execute(query, *args)
    finally:
        await conn.close()


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)
