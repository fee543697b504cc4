from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from jobcleanup.checks.runner import CleanupRunResult, build_posting_update, run_cleanup
from jobcleanup.checks.url_checker import CheckResult
from jobcleanup.services.repository import RepositoryUnavailableError

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

RESULTS_BY_URL: dict[str, CheckResult] = {
    "https://jobs.example.com/gone": CheckResult(
        method="http", decision="mark_expired", status_code=410, evidence=["HTTP 410"], response_time_ms=40
    ),
    "https://jobs.example.com/filled": CheckResult(
        method="html_scan",
        decision="mark_expired",
        status_code=200,
        evidence=["position has been filled", "applications are closed"],
        response_time_ms=80,
    ),
    "https://jobs.example.com/flaky": CheckResult(
        method="http",
        decision="needs_review",
        status_code=503,
        evidence=["HTTP 503 - uncertain"],
        response_time_ms=30,
    ),
    "https://jobs.example.com/down": CheckResult(
        method="error",
        decision="needs_review",
        error_message="connection refused",
        response_time_ms=5,
    ),
    "https://jobs.example.com/live": CheckResult(
        method="html_scan", decision="keep_active", status_code=200, response_time_ms=60
    ),
}


class FakeCleanupRepository:
    def __init__(
        self,
        jobs: list[dict[str, Any]],
        *,
        fail_update_for: set[str] | None = None,
        fail_log_for: set[str] | None = None,
    ) -> None:
        self.jobs = jobs
        self.fail_update_for = fail_update_for or set()
        self.fail_log_for = fail_log_for or set()
        self.select_calls: list[dict[str, Any]] = []
        self.logs: list[dict[str, Any]] = []
        self.updates: list[tuple[str, dict[str, Any]]] = []

    async def select_due_jobs(self, *, batch_size: int, cutoff: datetime) -> list[dict[str, Any]]:
        self.select_calls.append({"batch_size": batch_size, "cutoff": cutoff})
        return self.jobs[:batch_size]

    async def insert_check_log(self, entry: dict[str, Any]) -> None:
        if entry["job_id"] in self.fail_log_for:
            raise RepositoryUnavailableError("log insert failed")
        self.logs.append(entry)

    async def update_posting(self, job_id: str, fields: dict[str, Any]) -> None:
        if job_id in self.fail_update_for:
            raise RepositoryUnavailableError("update failed")
        self.updates.append((job_id, fields))


async def fake_checker(url: str, attempt_html_scan: bool) -> CheckResult:
    assert attempt_html_scan is True
    return RESULTS_BY_URL[url]


def _job(job_id: str, slug: str, check_count: int = 0) -> dict[str, Any]:
    return {
        "id": job_id,
        "title": f"Role {job_id}",
        "application_url": f"https://jobs.example.com/{slug}",
        "last_checked_at": None,
        "check_count": check_count,
    }


def _run(repository: FakeCleanupRepository, **kwargs: Any) -> CleanupRunResult:
    return asyncio.run(run_cleanup(repository, checker=fake_checker, now=NOW, **kwargs))


def test_run_with_no_due_jobs_reports_zero_and_writes_nothing() -> None:
    repository = FakeCleanupRepository([])

    result = _run(repository)

    assert result.stats.as_payload() == {
        "checked": 0,
        "expired": 0,
        "needsReview": 0,
        "keptActive": 0,
        "errors": 0,
    }
    assert repository.logs == []
    assert repository.updates == []
    assert result.duration_ms >= 0


def test_run_selects_with_batch_size_and_interval_cutoff() -> None:
    repository = FakeCleanupRepository([])

    _run(repository, batch_size=10, min_check_interval_hours=48)

    assert repository.select_calls == [{"batch_size": 10, "cutoff": NOW - timedelta(hours=48)}]


def test_run_applies_each_decision_and_counts_stats() -> None:
    repository = FakeCleanupRepository(
        [
            _job("job-1", "gone", check_count=3),
            _job("job-2", "filled"),
            _job("job-3", "flaky"),
            _job("job-4", "down"),
            _job("job-5", "live", check_count=7),
        ]
    )

    result = _run(repository)

    assert result.stats.as_payload() == {
        "checked": 5,
        "expired": 2,
        "needsReview": 2,
        "keptActive": 1,
        "errors": 0,
    }
    assert [log["job_id"] for log in repository.logs] == ["job-1", "job-2", "job-3", "job-4", "job-5"]
    assert repository.logs[3]["check_method"] == "error"
    assert repository.logs[3]["evidence_found"] == []
    assert repository.logs[3]["error_message"] == "connection refused"

    updates = dict(repository.updates)
    assert updates["job-1"]["status"] == "expired"
    assert updates["job-1"]["expired_evidence"] == "HTTP 410"
    assert updates["job-1"]["check_count"] == 4
    assert updates["job-2"]["expired_evidence"] == "position has been filled, applications are closed"
    assert updates["job-3"]["status"] == "needs_review"
    assert updates["job-3"]["check_failure_reason"] == "HTTP 503 - uncertain"
    assert updates["job-4"]["check_failure_reason"] == "connection refused"
    assert "status" not in updates["job-5"]
    assert updates["job-5"]["check_count"] == 8
    assert updates["job-5"]["check_method"] == "html_scan"


def test_persistence_failure_does_not_abort_batch() -> None:
    repository = FakeCleanupRepository(
        [_job("job-1", "live"), _job("job-2", "gone"), _job("job-3", "flaky"), _job("job-4", "live")],
        fail_update_for={"job-2"},
    )

    result = _run(repository)

    assert result.stats.errors == 1
    assert result.stats.checked == 4
    assert result.stats.needs_review == 1
    assert result.stats.kept_active == 2
    assert [job_id for job_id, _ in repository.updates] == ["job-1", "job-3", "job-4"]
    assert len(repository.logs) == 4


def test_check_log_failure_still_updates_posting() -> None:
    repository = FakeCleanupRepository([_job("job-1", "gone")], fail_log_for={"job-1"})

    result = _run(repository)

    assert result.stats.errors == 1
    assert result.stats.expired == 1
    assert repository.updates[0][1]["status"] == "expired"


def test_checker_exception_is_isolated_to_its_job() -> None:
    repository = FakeCleanupRepository([_job("job-1", "missing"), _job("job-2", "live")])

    result = _run(repository)

    assert result.stats.errors == 1
    assert result.stats.kept_active == 1
    assert [job_id for job_id, _ in repository.updates] == ["job-2"]


def test_selection_failure_propagates() -> None:
    class BrokenRepository(FakeCleanupRepository):
        async def select_due_jobs(self, *, batch_size: int, cutoff: datetime) -> list[dict[str, Any]]:
            raise RepositoryUnavailableError("database unavailable")

    with pytest.raises(RepositoryUnavailableError):
        _run(BrokenRepository([]))


def test_build_posting_update_for_keep_active_only_bumps_bookkeeping() -> None:
    result = CheckResult(method="http", decision="keep_active", status_code=200, response_time_ms=12)

    fields = build_posting_update({"id": "job-1", "check_count": None}, result, now=NOW)

    assert fields == {"last_checked_at": NOW, "check_count": 1, "check_method": "http"}


def test_build_posting_update_prefers_error_message_for_review_reason() -> None:
    result = CheckResult(
        method="error",
        decision="needs_review",
        evidence=["ignored"],
        error_message="request timed out after 15s",
        response_time_ms=15000,
    )

    fields = build_posting_update({"id": "job-1", "check_count": 2}, result, now=NOW)

    assert fields["status"] == "needs_review"
    assert fields["check_failure_reason"] == "request timed out after 15s"
    assert fields["check_count"] == 3
    assert "expired_evidence" not in fields
