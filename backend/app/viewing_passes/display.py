"""Masked and real labels for listing cards."""
from __future__ import annotations

from typing import Optional

from .models import ItemType, Listing


def _clean(value: Optional[str]) -> str:
    return (value or "").strip()


def masked_name(listing: Listing, item_type: ItemType) -> str:
    """Build a location-based placeholder from the most specific fields available."""

    location = _clean(listing.location)
    city = _clean(listing.city)
    dong = _clean(listing.dong)
    type_label = item_type.label

    if location and city and dong:
        return f"{location} {city} {dong} {type_label}"
    if location:
        return f"{location} 지역 {type_label}"
    return type_label


def resolve_display_name(
    listing: Listing,
    item_type: ItemType,
    actor_is_privileged: bool,
    has_view_record: bool,
) -> str:
    """Return the real company name once unlocked, otherwise a masked label."""

    if actor_is_privileged or has_view_record:
        return listing.company_name or ""
    return masked_name(listing, item_type)


__all__ = ["masked_name", "resolve_display_name"]
