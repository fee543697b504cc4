from datetime import timezone
from functools import partial
import logging

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from jobcleanup.checks.runner import run_cleanup
from jobcleanup.checks.url_checker import check_job_url
from jobcleanup.core.auth import Principal
from jobcleanup.core.config import Settings, get_settings
from jobcleanup.core.security import verify_cron_secret
from jobcleanup.schemas.cleanup import CleanupRunOut, CleanupStatsOut
from jobcleanup.services.repository import RepositoryError, get_repository

router = APIRouter()
logger = logging.getLogger(__name__)


@router.api_route("/cleanup", methods=["GET", "POST"], response_model=CleanupRunOut)
async def cleanup_jobs(
    principal: Principal = Depends(verify_cron_secret),
    settings: Settings = Depends(get_settings),
    repository=Depends(get_repository),
):
    logger.info("cleanup run triggered by %s", principal.subject)
    checker = partial(
        check_job_url,
        timeout_seconds=settings.url_check_timeout_seconds,
        user_agent=settings.url_check_user_agent,
    )

    try:
        async with repository.cleanup_run_lock() as acquired:
            if not acquired:
                logger.warning("cleanup run skipped: another run holds the lock")
                return JSONResponse(
                    status_code=status.HTTP_409_CONFLICT,
                    content={"error": "Cleanup run already in progress"},
                )
            result = await run_cleanup(
                repository,
                batch_size=settings.cleanup_batch_size,
                min_check_interval_hours=settings.cleanup_min_check_interval_hours,
                attempt_html_scan=settings.url_check_html_scan,
                checker=checker,
            )
    except RepositoryError as exc:
        logger.exception("cleanup run aborted while fetching jobs")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to fetch jobs", "details": str(exc)},
        )
    except Exception as exc:
        logger.exception("cleanup run failed")
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error", "details": str(exc) or type(exc).__name__},
        )

    return CleanupRunOut(
        message="Job cleanup completed",
        stats=CleanupStatsOut(**result.stats.as_payload()),
        timestamp=result.finished_at.astimezone(timezone.utc).isoformat().replace("+00:00", "Z"),
        duration=result.duration_ms,
    )
