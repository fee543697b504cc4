"""In-process trigger for the cleanup endpoint.

Hosting platforms with a cron facility call ``/jobs/cleanup`` directly. This
loop covers deployments without one: run ``python -m jobcleanup.scheduler``
next to the API.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

from opentelemetry import trace

from jobcleanup.core.config import get_settings
from jobcleanup.core.telemetry import configure_logging, setup_tracing, shutdown_tracing
from jobcleanup.services.cron_client import CronClient

RETRY_BASE_SECONDS = 30.0

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


async def run_once(client: CronClient) -> dict[str, Any]:
    with tracer.start_as_current_span("scheduler.trigger_cleanup"):
        payload = await client.trigger_cleanup()
    logger.info(
        "cleanup triggered stats=%s duration_ms=%s",
        payload.get("stats"),
        payload.get("duration"),
    )
    return payload


async def run_scheduler() -> None:
    settings = get_settings()
    configure_logging()
    if not settings.cron_secret:
        raise RuntimeError("AIJA_CRON_SECRET is required to run the scheduler")

    telemetry_runtime = setup_tracing(settings)
    client = CronClient(
        base_url=settings.api_base_url,
        cron_secret=settings.cron_secret,
        timeout_seconds=settings.trigger_timeout_seconds,
    )

    backoff = RETRY_BASE_SECONDS
    try:
        while True:
            try:
                await run_once(client)
            except Exception as exc:  # pragma: no cover - scheduler robustness
                jitter = random.uniform(0.0, 0.5)
                sleep_for = min(backoff * (1.0 + jitter), settings.max_backoff_seconds)
                logger.exception("cleanup trigger failed: %s; retry in %.1fs", exc, sleep_for)
                await asyncio.sleep(sleep_for)
                backoff = min(backoff * 2.0, settings.max_backoff_seconds)
                continue

            backoff = RETRY_BASE_SECONDS
            await asyncio.sleep(settings.trigger_interval_seconds)
    finally:
        shutdown_tracing(telemetry_runtime)


def main() -> None:
    asyncio.run(run_scheduler())


if __name__ == "__main__":
    main()
