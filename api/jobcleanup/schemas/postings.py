from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

PostingStatus = Literal["pending", "approved", "rejected", "expired", "needs_review"]
CheckMethod = Literal["http", "html_scan", "error"]
CheckDecision = Literal["keep_active", "mark_expired", "needs_review"]
ReviewAction = Literal["approve", "expire"]


class ReviewPostingOut(BaseModel):
    id: str
    title: str | None = None
    application_url: str | None = None
    status: PostingStatus
    employer_id: str | None = None
    last_checked_at: datetime | None = None
    check_count: int = 0
    check_method: CheckMethod | None = None
    expired_evidence: str | None = None
    check_failure_reason: str | None = None
    admin_notes: str | None = None
    reviewed_at: datetime | None = None
    updated_at: datetime | None = None


class CheckLogOut(BaseModel):
    id: str
    job_id: str
    check_method: CheckMethod
    status_code: int | None = None
    evidence_found: list[str] = Field(default_factory=list)
    decision: CheckDecision
    error_message: str | None = None
    response_time_ms: int | None = None
    created_at: datetime


class ReviewRequest(BaseModel):
    action: ReviewAction
    admin_notes: str | None = Field(default=None, max_length=2000)


class ReviewOut(BaseModel):
    success: bool = True
    job_id: str
    new_status: PostingStatus
