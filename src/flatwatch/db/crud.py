from __future__ import annotations

from datetime import datetime, timedelta

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from flatwatch.common.types import Listing
from flatwatch.db.models import SeenAd, SettingEntry, TrackedUrl


def _dialect_insert(session: AsyncSession, table):
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    return None


async def upsert_seen_ad(session: AsyncSession, listing: Listing, now: datetime) -> None:
    values = {
        "id": listing.id,
        "title": listing.title,
        "link": listing.link,
        "price": listing.price,
        "address": listing.address,
        "seller_kind": listing.seller_kind.value,
        "description": listing.description,
        "discovered_at": listing.discovered_at,
        "created_at": now,
        "last_seen_at": now,
    }
    stmt = _dialect_insert(session, SeenAd)
    if stmt is not None:
        stmt = stmt.values(**values).on_conflict_do_update(
            index_elements=[SeenAd.id],
            set_={"last_seen_at": now},
        )
        await session.execute(stmt)
    else:
        existing = await session.get(SeenAd, listing.id)
        if existing:
            existing.last_seen_at = now
        else:
            session.add(SeenAd(**values))
    await session.commit()


async def list_seen_ids(session: AsyncSession) -> set[str]:
    result = await session.execute(select(SeenAd.id))
    return set(result.scalars())


def _search_clause(search: str | None):
    if not search:
        return None
    pattern = f"%{search.strip().lower()}%"
    return or_(func.lower(SeenAd.title).like(pattern), func.lower(SeenAd.address).like(pattern))


async def list_seen_ads(
    session: AsyncSession,
    limit: int = 20,
    offset: int = 0,
    search: str | None = None,
) -> list[SeenAd]:
    stmt = select(SeenAd)
    clause = _search_clause(search)
    if clause is not None:
        stmt = stmt.where(clause)
    stmt = stmt.order_by(SeenAd.created_at.desc(), SeenAd.id).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars())


async def count_seen_ads(session: AsyncSession, search: str | None = None) -> int:
    stmt = select(func.count(SeenAd.id))
    clause = _search_clause(search)
    if clause is not None:
        stmt = stmt.where(clause)
    result = await session.execute(stmt)
    return int(result.scalar() or 0)


async def delete_seen_before(session: AsyncSession, cutoff: datetime) -> int:
    result = await session.execute(delete(SeenAd).where(SeenAd.created_at < cutoff))
    await session.commit()
    return int(result.rowcount or 0)


async def seen_stats(session: AsyncSession, now: datetime) -> dict[str, int | datetime | None]:
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = start_of_day - timedelta(days=7)
    total = await session.execute(select(func.count(SeenAd.id)))
    today = await session.execute(select(func.count(SeenAd.id)).where(SeenAd.created_at >= start_of_day))
    week = await session.execute(select(func.count(SeenAd.id)).where(SeenAd.created_at >= week_ago))
    latest = await session.execute(select(func.max(SeenAd.created_at)))
    return {
        "total_ads": int(total.scalar() or 0),
        "ads_today": int(today.scalar() or 0),
        "ads_this_week": int(week.scalar() or 0),
        "latest_ad": latest.scalar(),
    }


async def list_urls(session: AsyncSession, active_only: bool = False) -> list[TrackedUrl]:
    stmt = select(TrackedUrl)
    if active_only:
        stmt = stmt.where(TrackedUrl.is_active.is_(True))
    result = await session.execute(stmt.order_by(TrackedUrl.id))
    return list(result.scalars())


async def get_url(session: AsyncSession, url_id: int) -> TrackedUrl | None:
    return await session.get(TrackedUrl, url_id)


async def get_url_by_value(session: AsyncSession, url: str) -> TrackedUrl | None:
    result = await session.execute(select(TrackedUrl).where(TrackedUrl.url == url))
    return result.scalars().first()


async def create_url(session: AsyncSession, url: str, name: str | None) -> TrackedUrl:
    tracked = TrackedUrl(url=url, name=name, is_active=True)
    session.add(tracked)
    await session.commit()
    await session.refresh(tracked)
    return tracked


async def update_url(session: AsyncSession, url_id: int, **kwargs) -> None:
    kwargs["updated_at"] = datetime.utcnow()
    await session.execute(update(TrackedUrl).where(TrackedUrl.id == url_id).values(**kwargs))
    await session.commit()


async def delete_url(session: AsyncSession, url_id: int) -> bool:
    result = await session.execute(delete(TrackedUrl).where(TrackedUrl.id == url_id))
    await session.commit()
    return bool(result.rowcount)


async def count_urls(session: AsyncSession) -> tuple[int, int]:
    total = await session.execute(select(func.count(TrackedUrl.id)))
    active = await session.execute(select(func.count(TrackedUrl.id)).where(TrackedUrl.is_active.is_(True)))
    return int(total.scalar() or 0), int(active.scalar() or 0)


async def get_settings_map(session: AsyncSession) -> dict[str, str]:
    result = await session.execute(select(SettingEntry))
    return {entry.key: entry.value for entry in result.scalars()}


async def set_setting(session: AsyncSession, key: str, value: str) -> None:
    entry = await session.get(SettingEntry, key)
    if entry:
        entry.value = value
        entry.updated_at = datetime.utcnow()
    else:
        session.add(SettingEntry(key=key, value=value))
    await session.commit()
