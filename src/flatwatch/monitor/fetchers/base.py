from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
import logging
from typing import Iterable

from flatwatch.common.types import FetchResult


logger = logging.getLogger("fetcher")


class BaseFetcher(ABC):
    concurrency: int = 1

    @abstractmethod
    async def fetch(self, url: str) -> FetchResult:
        raise NotImplementedError

    async def fetch_all(self, urls: Iterable[str]) -> list[FetchResult]:
        targets = list(urls)
        if self.concurrency <= 1:
            return [await self._fetch_guarded(url) for url in targets]
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _bounded(url: str) -> FetchResult:
            async with semaphore:
                return await self._fetch_guarded(url)

        return list(await asyncio.gather(*(_bounded(url) for url in targets)))

    async def _fetch_guarded(self, url: str) -> FetchResult:
        try:
            return await self.fetch(url)
        except Exception as exc:
            logger.warning("Fetch failed: url=%s error=%r", url, exc, exc_info=True)
            return FetchResult.failure(url, repr(exc))

    async def aclose(self) -> None:
        return None

    async def __aenter__(self) -> BaseFetcher:
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
