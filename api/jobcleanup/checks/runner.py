from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol

from opentelemetry import trace

from jobcleanup.checks.url_checker import CheckResult, check_job_url

BATCH_SIZE = 25
MIN_CHECK_INTERVAL_HOURS = 48

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

UrlChecker = Callable[[str, bool], Awaitable[CheckResult]]


class CleanupRepository(Protocol):
    async def select_due_jobs(self, *, batch_size: int, cutoff: datetime) -> list[dict[str, Any]]: ...

    async def insert_check_log(self, entry: dict[str, Any]) -> None: ...

    async def update_posting(self, job_id: str, fields: dict[str, Any]) -> None: ...


@dataclass(slots=True)
class CleanupStats:
    checked: int = 0
    expired: int = 0
    needs_review: int = 0
    kept_active: int = 0
    errors: int = 0

    def as_payload(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "expired": self.expired,
            "needsReview": self.needs_review,
            "keptActive": self.kept_active,
            "errors": self.errors,
        }


@dataclass(slots=True)
class CleanupRunResult:
    started_at: datetime
    finished_at: datetime
    duration_ms: int
    stats: CleanupStats = field(default_factory=CleanupStats)


async def run_cleanup(
    repository: CleanupRepository,
    *,
    batch_size: int = BATCH_SIZE,
    min_check_interval_hours: int = MIN_CHECK_INTERVAL_HOURS,
    attempt_html_scan: bool = True,
    checker: UrlChecker = check_job_url,
    now: datetime | None = None,
) -> CleanupRunResult:
    """Re-validate the batch of approved postings that are due for a check.

    Selection errors propagate to the caller. Anything that goes wrong while
    handling a single posting is logged and counted under ``errors`` and the
    batch moves on to the next posting.
    """
    started = time.perf_counter()
    started_at = now or datetime.now(timezone.utc)
    cutoff = started_at - timedelta(hours=min_check_interval_hours)
    stats = CleanupStats()

    with tracer.start_as_current_span("cleanup.run") as run_span:
        logger.info(
            "cleanup run starting batch_size=%s min_check_interval_hours=%s cutoff=%s",
            batch_size,
            min_check_interval_hours,
            cutoff.isoformat(),
        )
        jobs = await repository.select_due_jobs(batch_size=batch_size, cutoff=cutoff)
        stats.checked = len(jobs)
        run_span.set_attribute("cleanup.batch_count", len(jobs))
        if not jobs:
            logger.info("cleanup run found no jobs to check")

        for job in jobs:
            with tracer.start_as_current_span("cleanup.check_job") as job_span:
                job_span.set_attribute("job.id", str(job["id"]))
                try:
                    await _process_job(
                        repository,
                        job=job,
                        stats=stats,
                        attempt_html_scan=attempt_html_scan,
                        checker=checker,
                        span=job_span,
                    )
                except Exception:
                    stats.errors += 1
                    logger.exception("cleanup failed for job id=%s", job.get("id"))

    finished_at = datetime.now(timezone.utc)
    duration_ms = int((time.perf_counter() - started) * 1000)
    logger.info("cleanup run complete stats=%s duration_ms=%s", stats.as_payload(), duration_ms)
    return CleanupRunResult(stats=stats, started_at=started_at, finished_at=finished_at, duration_ms=duration_ms)


async def _process_job(
    repository: CleanupRepository,
    *,
    job: dict[str, Any],
    stats: CleanupStats,
    attempt_html_scan: bool,
    checker: UrlChecker,
    span: trace.Span,
) -> None:
    job_id = str(job["id"])
    result = await checker(job["application_url"], attempt_html_scan)
    span.set_attribute("check.method", result.method)
    span.set_attribute("check.decision", result.decision)
    logger.info(
        "job checked id=%s method=%s decision=%s status_code=%s response_time_ms=%s evidence=%s",
        job_id,
        result.method,
        result.decision,
        result.status_code,
        result.response_time_ms,
        result.evidence,
    )

    try:
        await repository.insert_check_log(result.to_log_dict(job_id))
    except Exception:
        stats.errors += 1
        logger.exception("failed to record check log for job id=%s", job_id)

    if result.decision == "mark_expired":
        stats.expired += 1
        logger.info("marking job expired id=%s title=%s", job_id, job.get("title"))
    elif result.decision == "needs_review":
        stats.needs_review += 1
        logger.info("flagging job for review id=%s title=%s", job_id, job.get("title"))
    else:
        stats.kept_active += 1

    await repository.update_posting(job_id, build_posting_update(job, result))


def build_posting_update(
    job: dict[str, Any],
    result: CheckResult,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "last_checked_at": now or datetime.now(timezone.utc),
        "check_count": int(job.get("check_count") or 0) + 1,
        "check_method": result.method,
    }
    evidence = ", ".join(result.evidence or [])
    if result.decision == "mark_expired":
        fields["status"] = "expired"
        fields["expired_evidence"] = evidence
    elif result.decision == "needs_review":
        fields["status"] = "needs_review"
        fields["check_failure_reason"] = result.error_message or evidence
    return fields
