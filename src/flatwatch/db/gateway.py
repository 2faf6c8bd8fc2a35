from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime, timedelta
import logging
from typing import Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from flatwatch.common.types import Endpoint, Listing, NotificationSettings, SeenRecord, SellerKind
from flatwatch.db import crud
from flatwatch.db.database import Database
from flatwatch.db.errors import (
    DuplicateEndpointError,
    EndpointNotFoundError,
    PersistenceUnavailableError,
    ReadOnlyStoreError,
    is_transient_disconnect,
    log_db_error,
)
from flatwatch.db.models import SeenAd, TrackedUrl


logger = logging.getLogger("db")

SEND_EMAILS_KEY = "send_emails"
EMAIL_RECIPIENTS_KEY = "email_recipients"


class BaseGateway(ABC):
    durable: bool = False
    load_failed: bool = False

    async def test_connection(self) -> bool:
        return True

    async def ensure_schema(self) -> None:
        return None

    @abstractmethod
    async def load_seen_ids(self) -> set[str]:
        raise NotImplementedError

    @abstractmethod
    async def record_seen(self, listings: Iterable[Listing]) -> list[str]:
        raise NotImplementedError

    @abstractmethod
    async def list_active_endpoints(self) -> list[Endpoint]:
        raise NotImplementedError

    @abstractmethod
    async def get_notification_settings(self) -> NotificationSettings:
        raise NotImplementedError

    async def list_endpoints(self) -> list[Endpoint]:
        return await self.list_active_endpoints()

    async def get_endpoint(self, endpoint_id: int) -> Endpoint | None:
        raise ReadOnlyStoreError("Endpoint lookup needs DATABASE_URL")

    async def add_endpoint(self, url: str, name: str | None = None) -> Endpoint:
        raise ReadOnlyStoreError("Managing endpoints needs DATABASE_URL")

    async def update_endpoint(
        self,
        endpoint_id: int,
        name: str | None = None,
        is_active: bool | None = None,
    ) -> Endpoint:
        raise ReadOnlyStoreError("Managing endpoints needs DATABASE_URL")

    async def set_endpoint_active(self, ref: int | str, active: bool) -> Endpoint:
        raise ReadOnlyStoreError("Managing endpoints needs DATABASE_URL")

    async def delete_endpoint(self, endpoint_id: int) -> bool:
        raise ReadOnlyStoreError("Managing endpoints needs DATABASE_URL")

    async def update_notification_settings(
        self,
        send_emails: bool | None = None,
        email_recipients: str | None = None,
    ) -> NotificationSettings:
        raise ReadOnlyStoreError("Settings are read from the environment without DATABASE_URL")

    async def list_seen(self, limit: int = 20, offset: int = 0, search: str | None = None) -> list[SeenRecord]:
        raise ReadOnlyStoreError("Listing history needs DATABASE_URL")

    async def count_seen(self, search: str | None = None) -> int:
        raise ReadOnlyStoreError("Listing history needs DATABASE_URL")

    async def get_stats(self) -> dict:
        raise ReadOnlyStoreError("Statistics need DATABASE_URL")

    async def cleanup_older_than(self, days: int) -> int:
        raise ReadOnlyStoreError("Cleanup needs DATABASE_URL")

    async def close(self) -> None:
        return None


class SqlGateway(BaseGateway):
    durable = True

    def __init__(self, database: Database) -> None:
        self.db = database
        self.load_failed = False

    async def test_connection(self) -> bool:
        return await self.db.test_connection()

    async def ensure_schema(self) -> None:
        await self.db.create_all()
        async with self.db.session() as session:
            stored = await crud.get_settings_map(session)
            if SEND_EMAILS_KEY not in stored:
                await crud.set_setting(session, SEND_EMAILS_KEY, "true")
            if EMAIL_RECIPIENTS_KEY not in stored:
                await crud.set_setting(session, EMAIL_RECIPIENTS_KEY, "")
        logger.info("Database schema ready")

    async def load_seen_ids(self) -> set[str]:
        try:
            async with self.db.session() as session:
                ids = await crud.list_seen_ids(session)
        except (SQLAlchemyError, OSError) as exc:
            self.load_failed = True
            log_db_error(logger, "Loading seen ids failed", exc)
            return set()
        self.load_failed = False
        logger.info("Loaded seen ids: count=%s", len(ids))
        return ids

    async def record_seen(self, listings: Iterable[Listing]) -> list[str]:
        batch = list(listings)
        if not batch:
            return []
        recorded: list[str] = []
        now = datetime.utcnow()
        async with self.db.session() as session:
            for listing in batch:
                try:
                    await crud.upsert_seen_ad(session, listing, now)
                except (SQLAlchemyError, OSError) as exc:
                    await _safe_rollback(session)
                    if is_transient_disconnect(exc):
                        logger.error(
                            "Store lost while recording: recorded=%s of %s",
                            len(recorded),
                            len(batch),
                        )
                        raise PersistenceUnavailableError("Database connection lost during commit") from exc
                    log_db_error(logger, f"Recording listing failed: id={listing.id}", exc)
                    continue
                recorded.append(listing.id)
        logger.info("Recorded listings: recorded=%s batch=%s", len(recorded), len(batch))
        return recorded

    async def list_active_endpoints(self) -> list[Endpoint]:
        async with self.db.session() as session:
            rows = await crud.list_urls(session, active_only=True)
        return [_to_endpoint(row) for row in rows]

    async def list_endpoints(self) -> list[Endpoint]:
        async with self.db.session() as session:
            rows = await crud.list_urls(session)
        return [_to_endpoint(row) for row in rows]

    async def get_endpoint(self, endpoint_id: int) -> Endpoint | None:
        async with self.db.session() as session:
            row = await crud.get_url(session, endpoint_id)
        return _to_endpoint(row) if row else None

    async def add_endpoint(self, url: str, name: str | None = None) -> Endpoint:
        url = url.strip()
        async with self.db.session() as session:
            if await crud.get_url_by_value(session, url):
                raise DuplicateEndpointError(url)
            try:
                row = await crud.create_url(session, url, name)
            except IntegrityError as exc:
                await session.rollback()
                raise DuplicateEndpointError(url) from exc
        logger.info("Endpoint added: id=%s url=%s", row.id, url)
        return _to_endpoint(row)

    async def update_endpoint(
        self,
        endpoint_id: int,
        name: str | None = None,
        is_active: bool | None = None,
    ) -> Endpoint:
        values: dict = {}
        if name is not None:
            values["name"] = name
        if is_active is not None:
            values["is_active"] = is_active
        async with self.db.session() as session:
            row = await crud.get_url(session, endpoint_id)
            if row is None:
                raise EndpointNotFoundError(endpoint_id)
            if values:
                await crud.update_url(session, endpoint_id, **values)
                await session.refresh(row)
        return _to_endpoint(row)

    async def set_endpoint_active(self, ref: int | str, active: bool) -> Endpoint:
        async with self.db.session() as session:
            if isinstance(ref, int):
                row = await crud.get_url(session, ref)
            else:
                row = await crud.get_url_by_value(session, ref.strip())
            if row is None:
                raise EndpointNotFoundError(ref)
            await crud.update_url(session, row.id, is_active=active)
            await session.refresh(row)
        logger.info("Endpoint %s: id=%s url=%s", "activated" if active else "deactivated", row.id, row.url)
        return _to_endpoint(row)

    async def delete_endpoint(self, endpoint_id: int) -> bool:
        async with self.db.session() as session:
            deleted = await crud.delete_url(session, endpoint_id)
        if deleted:
            logger.info("Endpoint deleted: id=%s", endpoint_id)
        return deleted

    async def get_notification_settings(self) -> NotificationSettings:
        async with self.db.session() as session:
            stored = await crud.get_settings_map(session)
        return NotificationSettings(
            send_emails=_parse_bool(stored.get(SEND_EMAILS_KEY), default=True),
            email_recipients=stored.get(EMAIL_RECIPIENTS_KEY, ""),
        )

    async def update_notification_settings(
        self,
        send_emails: bool | None = None,
        email_recipients: str | None = None,
    ) -> NotificationSettings:
        async with self.db.session() as session:
            if send_emails is not None:
                await crud.set_setting(session, SEND_EMAILS_KEY, "true" if send_emails else "false")
            if email_recipients is not None:
                await crud.set_setting(session, EMAIL_RECIPIENTS_KEY, email_recipients.strip())
        return await self.get_notification_settings()

    async def list_seen(self, limit: int = 20, offset: int = 0, search: str | None = None) -> list[SeenRecord]:
        async with self.db.session() as session:
            rows = await crud.list_seen_ads(session, limit=limit, offset=offset, search=search)
        return [_to_record(row) for row in rows]

    async def count_seen(self, search: str | None = None) -> int:
        async with self.db.session() as session:
            return await crud.count_seen_ads(session, search=search)

    async def get_stats(self) -> dict:
        async with self.db.session() as session:
            stats = await crud.seen_stats(session, datetime.utcnow())
            total_urls, active_urls = await crud.count_urls(session)
        stats.update(total_urls=total_urls, active_urls=active_urls)
        return stats

    async def cleanup_older_than(self, days: int) -> int:
        if days < 0:
            raise ValueError("days must be non-negative")
        cutoff = datetime.utcnow() - timedelta(days=days)
        async with self.db.session() as session:
            deleted = await crud.delete_seen_before(session, cutoff)
        logger.info("Cleanup done: days=%s deleted=%s", days, deleted)
        return deleted

    async def close(self) -> None:
        await self.db.close()


async def open_gateway(app_settings) -> BaseGateway:
    """Build the gateway for the configured strictness mode.

    Strict mode raises PersistenceUnavailableError when the durable store is
    missing or unreachable; permissive mode degrades to the file-backed set.
    """
    from flatwatch.db.file_store import FileGateway

    strict = app_settings.strict_database
    if not app_settings.database_url:
        if strict:
            raise PersistenceUnavailableError(
                "DATABASE_URL is required but not provided. Set REQUIRE_DATABASE=false to allow file storage."
            )
        logger.warning(
            "No DATABASE_URL provided: using file storage %s, dedup state is local only",
            app_settings.seen_ads_file,
        )
        return FileGateway.from_settings(app_settings)

    gateway = SqlGateway(Database.from_settings(app_settings))
    if not await gateway.test_connection():
        await gateway.close()
        if strict:
            raise PersistenceUnavailableError("Database connection test failed")
        logger.warning(
            "Database unavailable: falling back to file storage %s, already-seen listings may be re-notified",
            app_settings.seen_ads_file,
        )
        return FileGateway.from_settings(app_settings)

    try:
        await gateway.ensure_schema()
    except (SQLAlchemyError, OSError) as exc:
        await gateway.close()
        log_db_error(logger, "Schema initialization failed", exc)
        if strict:
            raise PersistenceUnavailableError("Database schema initialization failed") from exc
        return FileGateway.from_settings(app_settings)
    return gateway


async def _safe_rollback(session) -> None:
    try:
        await session.rollback()
    except (SQLAlchemyError, OSError) as exc:
        log_db_error(logger, "Rollback failed", exc)


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_endpoint(row: TrackedUrl) -> Endpoint:
    return Endpoint(
        id=row.id,
        url=row.url,
        display_name=row.name,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _to_record(row: SeenAd) -> SeenRecord:
    try:
        kind = SellerKind(row.seller_kind)
    except ValueError:
        kind = SellerKind.unknown
    return SeenRecord(
        id=row.id,
        title=row.title,
        price=row.price,
        address=row.address,
        seller_kind=kind,
        link=row.link,
        description=row.description,
        created_at=row.created_at,
        last_seen_at=row.last_seen_at,
    )
