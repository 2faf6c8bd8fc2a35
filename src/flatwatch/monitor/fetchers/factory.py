from __future__ import annotations

from flatwatch.monitor.fetchers.base import BaseFetcher
from flatwatch.monitor.fetchers.mock import MockFetcher
from flatwatch.monitor.fetchers.yad2_api import Yad2ApiFetcher


def create_fetcher(app_settings) -> BaseFetcher:
    fetcher_name = app_settings.fetcher.lower()
    if fetcher_name == "mock":
        return MockFetcher(app_settings.mock_data_path)
    if fetcher_name == "yad2_api":
        return Yad2ApiFetcher(
            timeout_sec=app_settings.request_timeout_sec,
            concurrency=app_settings.fetch_concurrency,
        )
    raise RuntimeError(f"Unknown fetcher: {fetcher_name}")
