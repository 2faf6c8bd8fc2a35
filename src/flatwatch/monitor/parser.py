from __future__ import annotations

from datetime import datetime
import logging
from typing import Any

from flatwatch.common.formatting import format_price
from flatwatch.common.types import Listing, SellerKind


logger = logging.getLogger("parser")

DEFAULT_BASE_URL = "https://www.yad2.co.il/item"

_PRIVATE_AD_TYPES = {"private"}
_AGENCY_AD_TYPES = {"agency", "broker", "brokerage", "commercial", "business", "project"}


def parse_payload(
    payload: Any,
    base_url: str = DEFAULT_BASE_URL,
    currency_suffix: str = "₪",
    now: datetime | None = None,
) -> list[Listing]:
    markers = _deep_get(payload, ["data", "markers"])
    if not isinstance(markers, list):
        logger.debug("Payload without data.markers, treating as empty")
        return []
    discovered_at = now or datetime.utcnow()
    listings: list[Listing] = []
    for marker in markers:
        if not isinstance(marker, dict):
            continue
        listing = parse_marker(marker, discovered_at, base_url=base_url, currency_suffix=currency_suffix)
        if listing is not None:
            listings.append(listing)
    return listings


def parse_marker(
    marker: dict,
    discovered_at: datetime,
    base_url: str = DEFAULT_BASE_URL,
    currency_suffix: str = "₪",
) -> Listing | None:
    token = marker.get("token")
    if token is None or not str(token).strip():
        logger.debug("Marker without token skipped: orderId=%s", marker.get("orderId"))
        return None
    token = str(token).strip()
    return Listing(
        id=token,
        title=build_title(marker.get("additionalDetails")),
        price=format_price(_to_int(marker.get("price")), currency_suffix),
        address=build_address(marker.get("address")),
        seller_kind=seller_kind_for(marker.get("adType")),
        link=f"{base_url.rstrip('/')}/{token}",
        discovered_at=discovered_at,
        description=_deep_get(marker, ["customer", "agencyName"]) or None,
    )


def build_title(details: Any) -> str:
    if not isinstance(details, dict):
        return "דירה"
    parts: list[str] = []
    property_text = _deep_get(details, ["property", "text"])
    if property_text:
        parts.append(str(property_text).strip())
    rooms = _to_number(details.get("roomsCount"))
    if rooms:
        parts.append(f"{_format_number(rooms)} חדרים")
    square_meter = _to_number(details.get("squareMeter"))
    if square_meter:
        parts.append(f"{_format_number(square_meter)} מ\"ר")
    return " ".join(part for part in parts if part) or "דירה"


def build_address(address: Any) -> str:
    if not isinstance(address, dict):
        return ""
    street = _text(_deep_get(address, ["street", "text"]))
    house_number = _deep_get(address, ["house", "number"])
    if street and house_number not in (None, ""):
        street = f"{street} {house_number}"
    parts = [
        street,
        _text(_deep_get(address, ["neighborhood", "text"])),
        _text(_deep_get(address, ["area", "text"])),
        _text(_deep_get(address, ["city", "text"])),
    ]
    return ", ".join(part for part in parts if part)


def seller_kind_for(ad_type: Any) -> SellerKind:
    value = str(ad_type or "").strip().lower()
    if value in _PRIVATE_AD_TYPES:
        return SellerKind.private
    if value in _AGENCY_AD_TYPES:
        return SellerKind.agency
    return SellerKind.unknown


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _to_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _to_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _format_number(value: float) -> str:
    return str(int(value)) if value == int(value) else f"{value:g}"


def _deep_get(obj: Any, keys: list[str]) -> Any:
    current: Any = obj
    for key in keys:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current
