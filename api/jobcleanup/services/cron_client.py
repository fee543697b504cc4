from __future__ import annotations

from typing import Any

import httpx


class CronClient:
    def __init__(
        self,
        base_url: str,
        cron_secret: str,
        *,
        timeout_seconds: float = 900.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.headers = {"Authorization": f"Bearer {cron_secret}"}
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def trigger_cleanup(self) -> dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
            response = await client.post(f"{self.base_url}/jobs/cleanup", headers=self.headers)
            response.raise_for_status()
            return response.json()
