from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
import enum
from typing import Any


class SellerKind(str, enum.Enum):
    private = "private"
    agency = "agency"
    unknown = "unknown"


@dataclass(slots=True, frozen=True)
class Listing:
    id: str
    title: str
    price: str
    address: str
    seller_kind: SellerKind
    link: str
    discovered_at: datetime
    description: str | None = None


@dataclass(slots=True, frozen=True)
class Endpoint:
    id: int | None
    url: str
    display_name: str | None
    is_active: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(slots=True)
class NotificationSettings:
    send_emails: bool = True
    email_recipients: str = ""

    @property
    def recipients(self) -> list[str]:
        return [item.strip() for item in self.email_recipients.split(",") if item.strip()]


@dataclass(slots=True)
class FetchResult:
    url: str
    ok: bool
    payload: Any = None
    error: str | None = None

    @classmethod
    def success(cls, url: str, payload: Any) -> FetchResult:
        return cls(url=url, ok=True, payload=payload)

    @classmethod
    def failure(cls, url: str, error: str) -> FetchResult:
        return cls(url=url, ok=False, error=error)


@dataclass(slots=True)
class RunReport:
    endpoints: int = 0
    fetched: int = 0
    failed_endpoints: list[str] = field(default_factory=list)
    filtered: int = 0
    new: int = 0
    committed: int = 0
    notified: bool = False
    durable: bool = True
    degraded: bool = False


@dataclass(slots=True, frozen=True)
class SeenRecord:
    id: str
    title: str
    price: str
    address: str
    seller_kind: SellerKind
    link: str
    description: str | None
    created_at: datetime | None
    last_seen_at: datetime | None
