from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Literal

import httpx
from bs4 import BeautifulSoup

from jobcleanup.checks.patterns import (
    HTTP_DEFINITELY_EXPIRED,
    HTTP_PROBABLY_EXPIRED,
    HTTP_TEMPORARY_ISSUE,
    detect_expired_indicators,
)

CheckMethod = Literal["http", "html_scan", "error"]
CheckDecision = Literal["keep_active", "mark_expired", "needs_review"]

USER_AGENT = "AI Jobs Australia Bot/1.0 (Job Validation)"
DEFAULT_TIMEOUT_SECONDS = 15.0
NON_CONTENT_TAGS = ["script", "style", "nav", "header", "footer", "iframe"]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CheckResult:
    method: CheckMethod
    decision: CheckDecision
    response_time_ms: int
    status_code: int | None = None
    evidence: list[str] | None = None
    error_message: str | None = None

    def to_log_dict(self, job_id: str) -> dict[str, Any]:
        return {
            "job_id": job_id,
            "check_method": self.method,
            "status_code": self.status_code,
            "evidence_found": list(self.evidence or []),
            "decision": self.decision,
            "error_message": self.error_message,
            "response_time_ms": self.response_time_ms,
        }


async def check_job_url(
    url: str,
    attempt_html_scan: bool = True,
    *,
    client: httpx.AsyncClient | None = None,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    user_agent: str = USER_AGENT,
) -> CheckResult:
    """Decide whether the application URL of a posting is still live.

    HTTP status codes that are definitive short-circuit the check. A healthy
    response is optionally scanned for expiry phrases. Failures of any kind
    resolve to ``needs_review``; this coroutine does not raise.
    """
    started_at = time.perf_counter()
    try:
        if client is not None:
            return await _check(
                client=client,
                url=url,
                attempt_html_scan=attempt_html_scan,
                timeout_seconds=timeout_seconds,
                user_agent=user_agent,
                started_at=started_at,
            )
        async with httpx.AsyncClient(timeout=timeout_seconds, follow_redirects=True) as temp_client:
            return await _check(
                client=temp_client,
                url=url,
                attempt_html_scan=attempt_html_scan,
                timeout_seconds=timeout_seconds,
                user_agent=user_agent,
                started_at=started_at,
            )
    except Exception as exc:
        message = _describe_error(exc, timeout_seconds=timeout_seconds)
        logger.info("url check failed url=%s error=%s", url, message)
        return CheckResult(
            method="error",
            decision="needs_review",
            error_message=message,
            response_time_ms=_elapsed_ms(started_at),
        )


async def _check(
    *,
    client: httpx.AsyncClient,
    url: str,
    attempt_html_scan: bool,
    timeout_seconds: float,
    user_agent: str,
    started_at: float,
) -> CheckResult:
    headers = {"User-Agent": user_agent}
    try:
        response = await _request(client, "HEAD", url, headers=headers, timeout_seconds=timeout_seconds)
    except (httpx.HTTPError, asyncio.TimeoutError) as exc:
        # Some servers reject HEAD outright.
        logger.debug("HEAD failed url=%s error=%r; retrying with GET", url, exc)
        response = await _request(client, "GET", url, headers=headers, timeout_seconds=timeout_seconds)

    response_time_ms = _elapsed_ms(started_at)
    status_code = int(response.status_code)

    if status_code in HTTP_DEFINITELY_EXPIRED:
        return CheckResult(
            method="http",
            decision="mark_expired",
            status_code=status_code,
            evidence=[f"HTTP {status_code}"],
            response_time_ms=response_time_ms,
        )
    if status_code in HTTP_PROBABLY_EXPIRED:
        return CheckResult(
            method="http",
            decision="needs_review",
            status_code=status_code,
            evidence=[f"HTTP {status_code} - uncertain"],
            response_time_ms=response_time_ms,
        )
    if status_code in HTTP_TEMPORARY_ISSUE:
        return CheckResult(
            method="http",
            decision="needs_review",
            status_code=status_code,
            evidence=[f"HTTP {status_code} - temporary issue"],
            response_time_ms=response_time_ms,
        )

    if attempt_html_scan and response.is_success:
        if response.request.method == "GET" and _is_html(response):
            html = response.text
        else:
            html_response = await _request(client, "GET", url, headers=headers, timeout_seconds=timeout_seconds)
            html = html_response.text

        detection = detect_expired_indicators(extract_page_text(html))
        if detection.should_expire:
            return CheckResult(
                method="html_scan",
                decision="mark_expired",
                status_code=status_code,
                evidence=[pattern.phrase for pattern in detection.found],
                response_time_ms=_elapsed_ms(started_at),
            )
        if detection.should_review:
            return CheckResult(
                method="html_scan",
                decision="needs_review",
                status_code=status_code,
                evidence=[f"{pattern.phrase} ({pattern.confidence} confidence)" for pattern in detection.found],
                response_time_ms=_elapsed_ms(started_at),
            )
        return CheckResult(
            method="html_scan",
            decision="keep_active",
            status_code=status_code,
            response_time_ms=_elapsed_ms(started_at),
        )

    return CheckResult(
        method="http",
        decision="keep_active",
        status_code=status_code,
        response_time_ms=response_time_ms,
    )


def extract_page_text(html: str) -> str:
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for element in soup.find_all(NON_CONTENT_TAGS):
        element.decompose()

    root = soup.body or soup
    return " ".join(root.get_text(separator=" ").split())


async def _request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    headers: dict[str, str],
    timeout_seconds: float,
) -> httpx.Response:
    # Hard wall-clock deadline per request; httpx timeouts apply per operation.
    return await asyncio.wait_for(
        client.request(method, url, headers=headers, follow_redirects=True),
        timeout=timeout_seconds,
    )


def _is_html(response: httpx.Response) -> bool:
    return "text/html" in response.headers.get("content-type", "").lower()


def _describe_error(exc: Exception, *, timeout_seconds: float) -> str:
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return f"request timed out after {timeout_seconds:g}s"
    message = str(exc).strip()
    return message or type(exc).__name__


def _elapsed_ms(started_at: float) -> int:
    return int((time.perf_counter() - started_at) * 1000)
