from __future__ import annotations

from html import escape
from typing import Sequence

from flatwatch.common.types import Listing, SellerKind


_SELLER_LABELS = {
    SellerKind.private: "פרטי",
    SellerKind.agency: "תיווך",
    SellerKind.unknown: "לא ידוע",
}


def format_price(value: int | None, currency_suffix: str = "₪") -> str:
    if value is None:
        return "—"
    return f"{value:,} {currency_suffix}".strip()


def format_listing_line(listing: Listing) -> str:
    return f"{listing.title} ({listing.price}) - {listing.address or '—'} - {listing.link}"


def digest_subject(count: int) -> str:
    return f"🏠 {count} דירות חדשות נמצאו ביד2!"


def render_digest_html(listings: Sequence[Listing]) -> str:
    lines = [
        "<h2>דירות חדשות נמצאו</h2>",
        f"<p>נמצאו {len(listings)} דירות חדשות התואמות לקריטריונים שלך:</p>",
        "<ul>",
    ]
    for listing in listings:
        seller = escape(listing.description) if listing.description else _SELLER_LABELS[listing.seller_kind]
        lines.extend(
            [
                "<li>",
                f'<strong><a href="{escape(listing.link, quote=True)}">{escape(listing.title)}</a></strong><br>',
                f"<strong>מחיר:</strong> {escape(listing.price)}<br>",
                f"<strong>כתובת:</strong> {escape(listing.address or '—')}<br>",
                f"<strong>מפרסם:</strong> {seller}<br>",
                "<hr>",
                "</li>",
            ]
        )
    lines.append("</ul>")
    return "\n".join(lines)


def render_digest_text(listings: Sequence[Listing]) -> str:
    return "\n".join(format_listing_line(listing) for listing in listings)
