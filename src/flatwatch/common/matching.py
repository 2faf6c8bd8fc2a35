from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from flatwatch.common.types import Listing, SellerKind


@dataclass(slots=True, frozen=True)
class ExclusionPolicy:
    blocked_words: tuple[str, ...] = ()
    excluded_kinds: frozenset[SellerKind] = frozenset({SellerKind.agency})

    @classmethod
    def from_settings(cls, app_settings) -> ExclusionPolicy:
        kinds = {SellerKind.agency} if app_settings.exclude_agency else set()
        return cls(
            blocked_words=tuple(app_settings.filter_word_list),
            excluded_kinds=frozenset(kinds),
        )


def _normalize(text: str) -> str:
    return text.lower().strip()


def contains_blocked_words(text: str, words: Iterable[str]) -> bool:
    haystack = _normalize(text)
    return any(_normalize(word) in haystack for word in words if word.strip())


def is_excluded(listing: Listing, policy: ExclusionPolicy) -> bool:
    if listing.seller_kind in policy.excluded_kinds:
        return True
    text = f"{listing.title or ''} {listing.address or ''}"
    return contains_blocked_words(text, policy.blocked_words)


def filter_listings(listings: Iterable[Listing], policy: ExclusionPolicy) -> list[Listing]:
    return [listing for listing in listings if not is_excluded(listing, policy)]
