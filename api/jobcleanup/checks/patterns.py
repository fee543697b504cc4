from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

PatternConfidence = Literal["high", "medium", "low"]
DetectionConfidence = Literal["high", "medium", "low", "none"]
PatternCategory = Literal["expired", "filled", "closed", "removed"]


@dataclass(frozen=True, slots=True)
class ExpiredPattern:
    phrase: str
    confidence: PatternConfidence
    category: PatternCategory


EXPIRED_PATTERNS: tuple[ExpiredPattern, ...] = (
    # high: auto-expire
    ExpiredPattern("job expired", "high", "expired"),
    ExpiredPattern("position has been filled", "high", "filled"),
    ExpiredPattern("no longer accepting applications", "high", "closed"),
    ExpiredPattern("this job is no longer available", "high", "removed"),
    ExpiredPattern("posting has expired", "high", "expired"),
    ExpiredPattern("application deadline has passed", "high", "expired"),
    ExpiredPattern("this position is closed", "high", "closed"),
    ExpiredPattern("job has been removed", "high", "removed"),
    ExpiredPattern("this posting is no longer active", "high", "expired"),
    ExpiredPattern("applications are closed", "high", "closed"),
    # medium
    ExpiredPattern("position filled", "medium", "filled"),
    ExpiredPattern("applications closed", "medium", "closed"),
    ExpiredPattern("not currently hiring", "medium", "closed"),
    ExpiredPattern("no longer hiring", "medium", "closed"),
    ExpiredPattern("job posting closed", "medium", "closed"),
    # low: page chrome often contains these
    ExpiredPattern("temporarily unavailable", "low", "removed"),
    ExpiredPattern("check back later", "low", "removed"),
    ExpiredPattern("page not found", "low", "removed"),
)

HTTP_DEFINITELY_EXPIRED = frozenset({404, 410})
HTTP_PROBABLY_EXPIRED = frozenset({403, 500, 503})
HTTP_TEMPORARY_ISSUE = frozenset({429, 502, 504})


@dataclass(slots=True)
class ExpiredDetectionResult:
    found: list[ExpiredPattern] = field(default_factory=list)
    confidence: DetectionConfidence = "none"
    should_expire: bool = False
    should_review: bool = False


def detect_expired_indicators(
    text: str,
    patterns: tuple[ExpiredPattern, ...] = EXPIRED_PATTERNS,
) -> ExpiredDetectionResult:
    """Match page text against the expiry phrase table.

    Every matching pattern is kept in table order. The overall confidence is
    the highest confidence among the matches, and only a high-confidence match
    makes the posting eligible for automatic expiry.
    """
    normalized = (text or "").lower()
    found = [pattern for pattern in patterns if pattern.phrase.lower() in normalized]

    has_high = any(pattern.confidence == "high" for pattern in found)
    has_medium = any(pattern.confidence == "medium" for pattern in found)
    has_low = any(pattern.confidence == "low" for pattern in found)

    confidence: DetectionConfidence = "none"
    if has_high:
        confidence = "high"
    elif has_medium:
        confidence = "medium"
    elif has_low:
        confidence = "low"

    return ExpiredDetectionResult(
        found=found,
        confidence=confidence,
        should_expire=has_high,
        should_review=(has_medium or has_low) and not has_high,
    )
