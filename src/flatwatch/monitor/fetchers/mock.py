from __future__ import annotations

import json
from pathlib import Path

from flatwatch.common.types import FetchResult
from flatwatch.monitor.fetchers.base import BaseFetcher


class MockFetcher(BaseFetcher):
    """Serves payloads from a JSON file.

    The file holds either a single payload used for every url or an object
    with a ``payloads`` mapping of url to payload.
    """

    def __init__(self, data_path: str) -> None:
        self.data_path = Path(data_path)

    async def fetch(self, url: str) -> FetchResult:
        if not self.data_path.exists():
            return FetchResult.failure(url, f"mock data missing: {self.data_path}")
        raw = json.loads(self.data_path.read_text(encoding="utf-8"))
        if isinstance(raw, dict) and isinstance(raw.get("payloads"), dict):
            payload = raw["payloads"].get(url)
            if payload is None:
                return FetchResult.failure(url, "no mock payload for url")
            return FetchResult.success(url, payload)
        return FetchResult.success(url, raw)
