from pydantic import BaseModel, ConfigDict, Field


class CleanupStatsOut(BaseModel):
    checked: int = 0
    expired: int = 0
    needs_review: int = Field(default=0, alias="needsReview")
    kept_active: int = Field(default=0, alias="keptActive")
    errors: int = 0

    model_config = ConfigDict(populate_by_name=True)


class CleanupRunOut(BaseModel):
    message: str
    stats: CleanupStatsOut
    timestamp: str
    duration: int
