from __future__ import annotations

import asyncio
import errno
import logging
import socket

from sqlalchemy.exc import DBAPIError


_TRANSIENT_ERRNOS = {
    errno.ECONNRESET,
    errno.ECONNREFUSED,
    errno.ECONNABORTED,
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.EPIPE,
    errno.ETIMEDOUT,
}

_TRANSIENT_MARKERS = (
    "connection reset",
    "connection refused",
    "connection was closed",
    "connection is closed",
    "server closed the connection",
    "terminating connection",
    "termination",
    "shutdown",
    "name or service not known",
    "nodename nor servname",
    "network is unreachable",
    "timeout expired",
)


class PersistenceUnavailableError(RuntimeError):
    """The durable store is required but missing or unreachable."""


class DuplicateEndpointError(ValueError):
    def __init__(self, url: str) -> None:
        super().__init__(f"Endpoint already exists: {url}")
        self.url = url


class EndpointNotFoundError(LookupError):
    def __init__(self, ref: int | str) -> None:
        super().__init__(f"Endpoint not found: {ref}")
        self.ref = ref


class ReadOnlyStoreError(RuntimeError):
    """Raised by the file fallback for operations that need the durable store."""


def _iter_chain(exc: BaseException):
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        orig = getattr(current, "orig", None)
        if isinstance(orig, BaseException) and id(orig) not in seen:
            yield orig
            seen.add(id(orig))
        current = current.__cause__ or current.__context__


def is_transient_disconnect(exc: BaseException) -> bool:
    for item in _iter_chain(exc):
        if isinstance(item, DBAPIError) and item.connection_invalidated:
            return True
        if isinstance(item, socket.gaierror):
            return True
        if isinstance(item, (ConnectionError, asyncio.TimeoutError, TimeoutError)):
            return True
        if isinstance(item, OSError) and item.errno in _TRANSIENT_ERRNOS:
            return True
        message = str(item).lower()
        if any(marker in message for marker in _TRANSIENT_MARKERS):
            return True
    return False


def log_db_error(logger: logging.Logger, message: str, exc: BaseException) -> None:
    if is_transient_disconnect(exc):
        logger.debug("%s (transient): %s", message, exc)
    else:
        logger.error("%s: %s", message, exc, exc_info=exc)
