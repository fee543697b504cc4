import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status

from jobcleanup.core.security import get_human_principal
from jobcleanup.schemas.postings import CheckLogOut, ReviewOut, ReviewPostingOut, ReviewRequest
from jobcleanup.services.repository import (
    RepositoryConflictError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
    get_repository,
)

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/jobs/review", response_model=list[ReviewPostingOut])
async def list_jobs_for_review(
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[ReviewPostingOut]:
    try:
        principal.require_scopes({"review:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        rows = await repository.list_postings_for_review(limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc

    return [ReviewPostingOut(**row) for row in rows]


@router.get("/jobs/{job_id}/check-logs", response_model=list[CheckLogOut])
async def list_job_check_logs(
    job_id: str,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> list[CheckLogOut]:
    try:
        principal.require_scopes({"review:read"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    try:
        await repository.get_posting(job_id)
        rows = await repository.list_check_logs(job_id=job_id, limit=limit, offset=offset)
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc

    return [CheckLogOut(**row) for row in rows]


@router.post("/jobs/{job_id}/review", response_model=ReviewOut)
async def review_job(
    job_id: str,
    payload: ReviewRequest,
    principal=Depends(get_human_principal),
    repository=Depends(get_repository),
) -> ReviewOut:
    try:
        principal.require_scopes({"review:write"})
    except PermissionError as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc)) from exc

    if not principal.actor_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid human principal")

    logger.info(
        "review action received job_id=%s action=%s admin=%s has_admin_notes=%s",
        job_id,
        payload.action,
        principal.actor_id,
        bool(payload.admin_notes),
    )
    try:
        row = await repository.review_posting(
            job_id=job_id,
            action=payload.action,
            admin_notes=payload.admin_notes,
        )
    except RepositoryValidationError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc
    except RepositoryUnavailableError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
    except RepositoryNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except RepositoryConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc

    logger.info("review applied job_id=%s new_status=%s", job_id, row["new_status"])
    return ReviewOut(job_id=row["job_id"], new_status=row["new_status"])
