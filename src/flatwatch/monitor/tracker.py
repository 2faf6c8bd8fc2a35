from __future__ import annotations

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from flatwatch.common.formatting import format_listing_line
from flatwatch.common.matching import ExclusionPolicy, filter_listings
from flatwatch.common.types import Endpoint, Listing, RunReport
from flatwatch.db.errors import PersistenceUnavailableError, is_transient_disconnect
from flatwatch.db.gateway import BaseGateway
from flatwatch.monitor.dedup import partition, unique_by_id
from flatwatch.monitor.fetchers.base import BaseFetcher
from flatwatch.monitor.fetchers.factory import create_fetcher
from flatwatch.monitor.notifier import EmailNotifier
from flatwatch.monitor.parser import DEFAULT_BASE_URL, parse_payload


logger = logging.getLogger("tracker")

T = TypeVar("T")


class Tracker:
    """One tracking run: collect, normalize, filter, dedup, notify, commit."""

    def __init__(
        self,
        gateway: BaseGateway,
        fetcher: BaseFetcher,
        notifier: EmailNotifier,
        policy: ExclusionPolicy,
        strict: bool = False,
        base_url: str = DEFAULT_BASE_URL,
        currency_suffix: str = "₪",
        fallback_urls: list[str] | None = None,
    ) -> None:
        self.gateway = gateway
        self.fetcher = fetcher
        self.notifier = notifier
        self.policy = policy
        self.strict = strict
        self.base_url = base_url
        self.currency_suffix = currency_suffix
        self.fallback_urls = list(fallback_urls or [])
        self._local_seen: set[str] = set()
        self._last_endpoints: list[Endpoint] = []
        self._degraded = False

    @classmethod
    def from_settings(cls, gateway: BaseGateway, app_settings) -> Tracker:
        return cls(
            gateway=gateway,
            fetcher=create_fetcher(app_settings),
            notifier=EmailNotifier.from_settings(gateway, app_settings),
            policy=ExclusionPolicy.from_settings(app_settings),
            strict=app_settings.strict_database,
            base_url=app_settings.listing_base_url,
            currency_suffix=app_settings.currency_suffix,
            fallback_urls=app_settings.tracker_url_list,
        )

    async def run(self) -> RunReport:
        report = RunReport(durable=self.gateway.durable)
        logger.info("Tracking run start: durable=%s strict=%s", self.gateway.durable, self.strict)

        self._degraded = False
        seen_ids = await self._init_stage()

        endpoints = await self._load_endpoints()
        report.endpoints = len(endpoints)
        if not endpoints:
            logger.warning("No active endpoints configured, nothing to track")
            report.degraded = self._degraded
            return report
        urls = [endpoint.url for endpoint in endpoints]
        results = await self.fetcher.fetch_all(urls)

        collected: list[Listing] = []
        for result in results:
            if not result.ok:
                report.failed_endpoints.append(result.url)
                logger.warning("Endpoint skipped: url=%s stage=collect error=%s", result.url, result.error)
                continue
            listings = parse_payload(result.payload, base_url=self.base_url, currency_suffix=self.currency_suffix)
            logger.info("Endpoint parsed: url=%s listings=%s", result.url, len(listings))
            collected.extend(listings)
        report.fetched = len(collected)

        unique = unique_by_id(collected)
        filtered = filter_listings(unique, self.policy)
        report.filtered = len(filtered)
        logger.info(
            "Filtering done: fetched=%s unique=%s kept=%s",
            len(collected),
            len(unique),
            len(filtered),
        )

        dedup = partition(filtered, seen_ids)
        report.new = len(dedup.new)
        if dedup.new:
            logger.info("Found new listings: count=%s", len(dedup.new))
            for listing in dedup.new:
                logger.info("New listing: %s", format_listing_line(listing))
            report.notified = await self._notify(dedup.new)
        else:
            logger.info("No new listings found")

        recorded = await self._commit(filtered)
        report.committed = len(recorded)
        report.degraded = self._degraded
        self._local_seen.update(recorded)

        logger.info(
            "Tracking run done: endpoints=%s failed=%s kept=%s new=%s committed=%s notified=%s",
            report.endpoints,
            len(report.failed_endpoints),
            report.filtered,
            report.new,
            report.committed,
            report.notified,
        )
        return report

    async def aclose(self) -> None:
        await self.fetcher.aclose()

    async def _init_stage(self) -> set[str]:
        if self.strict and not self.gateway.durable:
            raise PersistenceUnavailableError("Durable store required but only local storage is configured")
        if self.gateway.durable and not await self.gateway.test_connection():
            if self.strict:
                raise PersistenceUnavailableError("Database connection test failed")
            logger.warning("Database unreachable: using in-process seen set, duplicates may be re-notified")
            self._degraded = True
            return set(self._local_seen)

        seen_ids = await self.gateway.load_seen_ids()
        if self.gateway.load_failed:
            if self.strict:
                raise PersistenceUnavailableError("Loading seen listings failed")
            logger.warning("Seen set unavailable: using in-process seen set, duplicates may be re-notified")
            self._degraded = True
            return set(self._local_seen)
        return seen_ids | self._local_seen

    async def _notify(self, listings: list[Listing]) -> bool:
        try:
            return await self.notifier.notify(listings)
        except Exception:
            logger.exception("Notifier failed, continuing run: listings=%s", len(listings))
            return False

    async def _load_endpoints(self) -> list[Endpoint]:
        if not self._degraded:
            try:
                endpoints = await self._store_call("collect", self.gateway.list_active_endpoints)
            except PersistenceUnavailableError:
                if self.strict:
                    raise
                self._degraded = True
            else:
                self._last_endpoints = list(endpoints)
                return endpoints
        if self._last_endpoints:
            logger.warning("Store unavailable: reusing last loaded endpoints count=%s", len(self._last_endpoints))
            return list(self._last_endpoints)
        logger.warning("Store unavailable: using configured TRACKER_URLS count=%s", len(self.fallback_urls))
        return [
            Endpoint(id=index, url=url, display_name=None, is_active=True)
            for index, url in enumerate(self.fallback_urls, start=1)
        ]

    async def _commit(self, listings: list[Listing]) -> list[str]:
        if self._degraded:
            logger.warning("Store unavailable: %s listings kept in-process only", len(listings))
            return [listing.id for listing in listings]
        try:
            return await self._store_call("commit", self.gateway.record_seen, listings)
        except PersistenceUnavailableError:
            if self.strict:
                raise
            logger.warning("Commit failed in permissive mode: listings kept in-process only")
            self._degraded = True
            return [listing.id for listing in listings]

    async def _store_call(self, stage: str, func: Callable[..., Awaitable[T]], *args) -> T:
        try:
            return await func(*args)
        except (SQLAlchemyError, OSError) as exc:
            if is_transient_disconnect(exc):
                logger.error("Store unavailable: stage=%s error=%s", stage, exc)
                raise PersistenceUnavailableError(f"Store unavailable during {stage}") from exc
            raise
