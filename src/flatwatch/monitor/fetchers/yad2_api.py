from __future__ import annotations

import json
import logging

import httpx

from flatwatch.common.types import FetchResult
from flatwatch.monitor.fetchers.base import BaseFetcher


logger = logging.getLogger("fetcher")

HEADERS = {
    "accept": "application/json, text/plain, */*",
    "accept-language": "he-IL,he;q=0.9,en-US;q=0.8,en;q=0.7",
    "cache-control": "no-cache",
    "pragma": "no-cache",
    "origin": "https://www.yad2.co.il",
    "referer": "https://www.yad2.co.il/",
    "sec-ch-ua": '"Chromium";v="140", "Not=A?Brand";v="24", "Google Chrome";v="140"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"Windows"',
    "sec-fetch-dest": "empty",
    "sec-fetch-mode": "cors",
    "sec-fetch-site": "same-site",
    "user-agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36",
}


class Yad2ApiFetcher(BaseFetcher):
    def __init__(
        self,
        timeout_sec: float = 10.0,
        concurrency: int = 1,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_sec = timeout_sec
        self.concurrency = max(1, concurrency)
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers=HEADERS,
            timeout=httpx.Timeout(timeout_sec),
            follow_redirects=True,
        )

    async def fetch(self, url: str) -> FetchResult:
        logger.info("Fetch start: url=%s", url)
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as exc:
            logger.warning("Fetch timeout: url=%s timeout=%ss", url, self.timeout_sec)
            return FetchResult.failure(url, f"timeout: {exc!r}")
        except httpx.HTTPError as exc:
            logger.warning("Fetch network error: url=%s error=%r", url, exc)
            return FetchResult.failure(url, f"network: {exc!r}")

        if not response.is_success:
            logger.warning("Fetch bad status: url=%s status=%s", url, response.status_code)
            return FetchResult.failure(url, f"status {response.status_code}")

        try:
            payload = response.json()
        except (json.JSONDecodeError, UnicodeDecodeError, ValueError):
            logger.warning("Fetch returned non-JSON body: url=%s", url)
            return FetchResult.failure(url, "invalid json")
        if not isinstance(payload, dict):
            logger.warning("Fetch returned unexpected JSON type: url=%s type=%s", url, type(payload).__name__)
            return FetchResult.failure(url, "unexpected json type")
        return FetchResult.success(url, payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
