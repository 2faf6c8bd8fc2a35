"""Shared factories and stubs for the tracker test-suite."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Iterable

import pytest

from flatwatch.common.config import Settings
from flatwatch.common.types import Endpoint, FetchResult, Listing, NotificationSettings, SellerKind
from flatwatch.db.database import Database, build_strategies
from flatwatch.db.gateway import BaseGateway, SqlGateway
from flatwatch.monitor.fetchers.base import BaseFetcher
from flatwatch.monitor.notifier import EmailTransport, MailMessage


NOW = datetime(2026, 10, 19, 12, 0, 0)


def _marker(
    token: str | None,
    price: Any = 5200,
    ad_type: str = "private",
    rooms: Any = 3,
    square_meter: Any = 70,
    street: str | None = "הרצל",
    house: Any = 12,
    neighborhood: str | None = "פלורנטין",
    city: str | None = "תל אביב יפו",
    agency_name: str | None = None,
) -> dict:
    marker: dict = {
        "orderId": 1000,
        "price": price,
        "adType": ad_type,
        "additionalDetails": {
            "property": {"text": "דירה"},
            "roomsCount": rooms,
            "squareMeter": square_meter,
        },
        "address": {
            "street": {"text": street},
            "house": {"number": house},
            "neighborhood": {"text": neighborhood},
            "city": {"text": city},
        },
    }
    if token is not None:
        marker["token"] = token
    if agency_name:
        marker["customer"] = {"agencyName": agency_name}
    return marker


@pytest.fixture
def marker_factory() -> Callable[..., dict]:
    return _marker


@pytest.fixture
def payload_factory() -> Callable[..., dict]:
    def _payload(*markers: dict) -> dict:
        return {"data": {"markers": list(markers)}}

    return _payload


@pytest.fixture
def listing_factory() -> Callable[..., Listing]:
    def _listing(
        listing_id: str,
        title: str = "דירה 3 חדרים 70 מ\"ר",
        address: str = "הרצל 12, פלורנטין, תל אביב יפו",
        seller_kind: SellerKind = SellerKind.private,
        description: str | None = None,
        price: str = "5,200 ₪",
    ) -> Listing:
        return Listing(
            id=listing_id,
            title=title,
            price=price,
            address=address,
            seller_kind=seller_kind,
            link=f"https://www.yad2.co.il/item/{listing_id}",
            discovered_at=NOW,
            description=description,
        )

    return _listing


@pytest.fixture
def sqlite_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'flatwatch.db'}"


@pytest.fixture
def make_settings(tmp_path) -> Callable[..., Settings]:
    def _make(**overrides: Any) -> Settings:
        values: dict[str, Any] = {
            "app_env": "development",
            "database_url": None,
            "database_fallback_url": None,
            "require_database": False,
            "seen_ads_file": str(tmp_path / "seen_ads.json"),
            "tracker_urls": "",
            "fetcher": "mock",
            "mock_data_path": str(tmp_path / "mock_payload.json"),
            "send_emails": None,
            "email_recipients": None,
            "email_from": None,
            "smtp_user": None,
            "smtp_password": None,
            "schedule_cron": None,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return _make


@pytest.fixture
def sql_gateway(sqlite_url):
    gateway = SqlGateway(Database(build_strategies(sqlite_url)))

    async def _prepare() -> None:
        await gateway.ensure_schema()
        await gateway.close()

    asyncio.run(_prepare())
    yield gateway
    asyncio.run(gateway.close())


@pytest.fixture
def run_gateway():
    """Run a coroutine against a gateway and dispose its engine in the same loop."""

    def _run(gateway: BaseGateway, func: Callable[[], Any]) -> Any:
        async def _inner() -> Any:
            try:
                return await func()
            finally:
                await gateway.close()

        return asyncio.run(_inner())

    return _run


class StubFetcher(BaseFetcher):
    def __init__(self, responses: dict[str, Any] | None = None, concurrency: int = 1) -> None:
        self.responses = responses or {}
        self.concurrency = concurrency
        self.calls: list[str] = []
        self.closed = False

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        response = self.responses.get(url)
        if isinstance(response, BaseException):
            raise response
        if response is None:
            return FetchResult.failure(url, "no stub response")
        return FetchResult.success(url, response)

    async def aclose(self) -> None:
        self.closed = True


class RecordingTransport(EmailTransport):
    def __init__(self, configured: bool = True, error: BaseException | None = None) -> None:
        self._configured = configured
        self.error = error
        self.sent: list[MailMessage] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def send(self, message: MailMessage) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(message)


class MemoryGateway(BaseGateway):
    """In-memory durable store with switchable failures."""

    durable = True

    def __init__(
        self,
        urls: Iterable[str] = (),
        notification_settings: NotificationSettings | None = None,
        connection_ok: bool = True,
        fail_load: bool = False,
        record_error: BaseException | None = None,
    ) -> None:
        self.urls = list(urls)
        self.notification_settings = notification_settings or NotificationSettings()
        self.connection_ok = connection_ok
        self.fail_load = fail_load
        self.record_error = record_error
        self.load_failed = False
        self.seen: set[str] = set()
        self.record_calls: list[list[str]] = []

    async def test_connection(self) -> bool:
        return self.connection_ok

    async def load_seen_ids(self) -> set[str]:
        self._check_connection()
        self.load_failed = self.fail_load
        return set() if self.fail_load else set(self.seen)

    def _check_connection(self) -> None:
        if not self.connection_ok:
            raise ConnectionResetError("connection reset by peer")

    async def record_seen(self, listings) -> list[str]:
        ids = [listing.id for listing in listings]
        self.record_calls.append(ids)
        self._check_connection()
        if self.record_error is not None:
            raise self.record_error
        self.seen.update(ids)
        return ids

    async def list_active_endpoints(self) -> list[Endpoint]:
        self._check_connection()
        return [Endpoint(id=index, url=url, display_name=None, is_active=True) for index, url in enumerate(self.urls, 1)]

    async def get_notification_settings(self) -> NotificationSettings:
        self._check_connection()
        return self.notification_settings


@pytest.fixture
def stub_fetcher_cls():
    return StubFetcher


@pytest.fixture
def transport_cls():
    return RecordingTransport


@pytest.fixture
def memory_gateway_cls():
    return MemoryGateway
