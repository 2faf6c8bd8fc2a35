from __future__ import annotations

from datetime import datetime

from flatwatch.common.types import SellerKind
from flatwatch.monitor.parser import build_address, build_title, parse_payload, seller_kind_for


NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_parse_payload_normalizes_marker(marker_factory, payload_factory) -> None:
    payload = payload_factory(marker_factory("abc123"))

    listings = parse_payload(payload, now=NOW)

    assert len(listings) == 1
    listing = listings[0]
    assert listing.id == "abc123"
    assert listing.title == 'דירה 3 חדרים 70 מ"ר'
    assert listing.price == "5,200 ₪"
    assert listing.address == "הרצל 12, פלורנטין, תל אביב יפו"
    assert listing.seller_kind is SellerKind.private
    assert listing.link == "https://www.yad2.co.il/item/abc123"
    assert listing.discovered_at == NOW
    assert listing.description is None


def test_parse_payload_skips_markers_without_token(marker_factory, payload_factory) -> None:
    payload = payload_factory(marker_factory(None), marker_factory("  "), marker_factory("ok"), "not-a-dict")

    listings = parse_payload(payload, now=NOW)

    assert [listing.id for listing in listings] == ["ok"]


def test_parse_payload_without_markers_is_empty() -> None:
    assert parse_payload({}) == []
    assert parse_payload({"data": {"markers": None}}) == []
    assert parse_payload({"data": []}) == []
    assert parse_payload(None) == []


def test_parse_payload_respects_base_url_and_currency(marker_factory, payload_factory) -> None:
    payload = payload_factory(marker_factory("t1", price=None))

    listing = parse_payload(payload, base_url="https://example.test/ad/", currency_suffix="EUR", now=NOW)[0]

    assert listing.link == "https://example.test/ad/t1"
    assert listing.price == "—"


def test_agency_name_becomes_description(marker_factory, payload_factory) -> None:
    payload = payload_factory(marker_factory("t2", ad_type="agency", agency_name="רימקס"))

    listing = parse_payload(payload, now=NOW)[0]

    assert listing.seller_kind is SellerKind.agency
    assert listing.description == "רימקס"


def test_build_title_falls_back_to_generic() -> None:
    assert build_title(None) == "דירה"
    assert build_title({}) == "דירה"
    assert build_title({"roomsCount": 2.5}) == "2.5 חדרים"


def test_build_address_skips_missing_parts() -> None:
    assert build_address(None) == ""
    assert build_address({"city": {"text": "חיפה"}}) == "חיפה"
    assert build_address({"street": {"text": "הנביאים"}, "area": {"text": "מרכז"}}) == "הנביאים, מרכז"


def test_seller_kind_mapping() -> None:
    assert seller_kind_for("Private") is SellerKind.private
    assert seller_kind_for("broker") is SellerKind.agency
    assert seller_kind_for("project") is SellerKind.agency
    assert seller_kind_for(None) is SellerKind.unknown
    assert seller_kind_for("something-else") is SellerKind.unknown


def _comparable(listing) -> tuple:
    return (
        listing.id,
        listing.title,
        listing.price,
        listing.address,
        listing.seller_kind,
        listing.link,
        listing.description,
    )


def test_parsing_is_deterministic(marker_factory, payload_factory) -> None:
    markers = [
        marker_factory("t1"),
        marker_factory("t2", ad_type="agency", agency_name="רימקס", price=7300),
        marker_factory("t3", rooms=None, street=None),
    ]

    first = parse_payload(payload_factory(*markers), now=NOW)
    again = parse_payload(payload_factory(*markers))
    reversed_order = parse_payload(payload_factory(*reversed(markers)))

    by_token = {listing.id: _comparable(listing) for listing in first}
    assert {listing.id for listing in again} == set(by_token) == {"t1", "t2", "t3"}
    assert {listing.id: _comparable(listing) for listing in again} == by_token
    assert {listing.id: _comparable(listing) for listing in reversed_order} == by_token
