from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import NullPool

from flatwatch.db.errors import is_transient_disconnect, log_db_error


logger = logging.getLogger("db")


class Base(DeclarativeBase):
    pass


@dataclass(slots=True, frozen=True)
class ConnectionStrategy:
    name: str
    url: str
    pooled: bool = True


def build_strategies(database_url: str, fallback_url: str | None = None) -> list[ConnectionStrategy]:
    return [
        ConnectionStrategy(name="pooled", url=database_url, pooled=True),
        ConnectionStrategy(name="unpooled", url=fallback_url or database_url, pooled=False),
    ]


class Database:
    """Owns the async engine and hands out scoped sessions.

    Strategies are tried in order: when a connection test fails with a
    transient network error the engine is rebuilt with the next strategy.
    """

    def __init__(
        self,
        strategies: list[ConnectionStrategy],
        pool_size: int = 5,
        max_overflow: int = 5,
        connect_timeout_sec: int = 30,
        pool_recycle_sec: int = 300,
    ) -> None:
        if not strategies:
            raise ValueError("At least one connection strategy is required")
        self.strategies = strategies
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.connect_timeout_sec = connect_timeout_sec
        self.pool_recycle_sec = pool_recycle_sec
        self._index = 0
        self._engine: AsyncEngine | None = None
        self._sessionmaker: async_sessionmaker[AsyncSession] | None = None

    @classmethod
    def from_settings(cls, app_settings) -> Database:
        if not app_settings.database_url:
            raise ValueError("DATABASE_URL is not configured")
        return cls(
            build_strategies(app_settings.database_url, app_settings.database_fallback_url),
            pool_size=app_settings.db_pool_size,
            max_overflow=app_settings.db_max_overflow,
            connect_timeout_sec=app_settings.db_connect_timeout_sec,
            pool_recycle_sec=app_settings.db_pool_recycle_sec,
        )

    @property
    def strategy(self) -> ConnectionStrategy:
        return self.strategies[self._index]

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self.open()
        if self._engine is None:
            raise RuntimeError("Database engine not initialized")
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def open(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(self.strategy.url, **self._engine_kwargs(self.strategy))
            self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)
            logger.debug("Engine created: strategy=%s", self.strategy.name)
        return self._engine

    async def close(self) -> None:
        if self._engine is None:
            return
        try:
            await self._engine.dispose()
            logger.debug("Engine disposed: strategy=%s", self.strategy.name)
        except Exception as exc:
            log_db_error(logger, "Engine dispose failed", exc)
        finally:
            self._engine = None
            self._sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        self.open()
        if self._sessionmaker is None:
            raise RuntimeError("Database engine not initialized")
        async with self._sessionmaker() as session:
            yield session

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def test_connection(self) -> bool:
        while True:
            try:
                async with self.session() as session:
                    await session.execute(text("SELECT 1"))
                logger.info("Database connection test ok: strategy=%s", self.strategy.name)
                return True
            except Exception as exc:
                if is_transient_disconnect(exc) and self._index + 1 < len(self.strategies):
                    logger.warning(
                        "Database connection failed with strategy=%s, trying %s: %s",
                        self.strategy.name,
                        self.strategies[self._index + 1].name,
                        exc,
                    )
                    await self.close()
                    self._index += 1
                    continue
                log_db_error(logger, "Database connection test failed", exc)
                return False

    def _engine_kwargs(self, strategy: ConnectionStrategy) -> dict:
        url = make_url(strategy.url)
        kwargs: dict = {"future": True, "echo": False}
        if url.get_backend_name() == "sqlite":
            return kwargs
        connect_args: dict = {"timeout": self.connect_timeout_sec}
        if strategy.pooled:
            kwargs.update(
                pool_size=self.pool_size,
                max_overflow=self.max_overflow,
                pool_pre_ping=True,
                pool_recycle=self.pool_recycle_sec,
                pool_timeout=self.connect_timeout_sec,
            )
        else:
            kwargs["poolclass"] = NullPool
            if url.get_driver_name() == "asyncpg":
                # transaction-mode poolers reject server-side prepared statements
                connect_args["statement_cache_size"] = 0
        kwargs["connect_args"] = connect_args
        return kwargs
