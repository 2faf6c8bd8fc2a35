from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from flatwatch.common.types import Listing


@dataclass(slots=True)
class DedupResult:
    new: list[Listing] = field(default_factory=list)
    seen: list[Listing] = field(default_factory=list)


def unique_by_id(listings: Iterable[Listing]) -> list[Listing]:
    """Drop repeated identifiers, keeping the first occurrence in order."""
    unique: dict[str, Listing] = {}
    for listing in listings:
        unique.setdefault(listing.id, listing)
    return list(unique.values())


def partition(batch: Iterable[Listing], seen_ids: set[str]) -> DedupResult:
    result = DedupResult()
    for listing in batch:
        if listing.id in seen_ids:
            result.seen.append(listing)
        else:
            result.new.append(listing)
    return result
