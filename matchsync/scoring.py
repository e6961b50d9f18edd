# matchsync/scoring.py
"""Rule-based buyer/listing compatibility.

`calc_match_score` is lenient: a field the listing doesn't fill in counts as
compatible, so incomplete listings still surface. `is_strict_match` is the
confidence flag shown next to each match and treats a missing field as a
failure.
"""
from typing import Optional

from .normalize import (
    LISTING_CLOSED_KEYWORDS,
    BuyerView,
    ListingType,
    ListingView,
    normalize_listing_type,
)


def listing_is_active(listing: ListingView) -> bool:
    status = (listing.status or "").lower()
    return not any(k in status for k in LISTING_CLOSED_KEYWORDS)


def resolve_listing_price(listing_type: ListingType, listing: ListingView) -> Optional[float]:
    """Pick the amount compared against the buyer's budget for this type."""
    if listing_type is ListingType.SALE:
        return listing.price
    if listing_type is ListingType.JEONSE:
        return _first_present(listing.deposit, listing.price)
    if listing_type is ListingType.WOLSE:
        return _first_present(listing.monthly, listing.deposit, listing.price)
    return None


def _first_present(*values):
    for v in values:
        if v is not None:
            return v
    return None


def buyer_prefers_type(buyer: BuyerView, listing_type: ListingType) -> bool:
    if listing_type is ListingType.UNKNOWN:
        return False
    return any(normalize_listing_type(pref) is listing_type for pref in buyer.type_prefs)


def buyer_allows_type(buyer: BuyerView, listing_type: ListingType) -> bool:
    if not buyer.type_prefs:
        return True
    return buyer_prefers_type(buyer, listing_type)


def _within_bounds(value: float, low: Optional[float], high: Optional[float]) -> bool:
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def _near_preferred_area(buyer: BuyerView, area: float) -> bool:
    if not buyer.area_prefs_py:
        return True
    return any(abs(preferred - area) <= 1 for preferred in buyer.area_prefs_py)


def buyer_allows_area(buyer: BuyerView, area: Optional[float]) -> bool:
    if area is None:
        return True
    if not _within_bounds(area, buyer.area_min_py, buyer.area_max_py):
        return False
    return _near_preferred_area(buyer, area)


def _monthly_ok(buyer: BuyerView, listing: ListingView, listing_type: ListingType, price: float) -> bool:
    if listing_type is not ListingType.JEONSE or buyer.monthly_max is None:
        return True
    monthly = listing.monthly if listing.monthly is not None else price
    return monthly <= buyer.monthly_max


def buyer_allows_budget(buyer: BuyerView, listing: ListingView, listing_type: ListingType,
                        price: Optional[float]) -> bool:
    if price is None:
        return True
    if not _within_bounds(price, buyer.budget_min, buyer.budget_max):
        return False
    return _monthly_ok(buyer, listing, listing_type, price)


def passes_basic_match(buyer: BuyerView, listing: ListingView) -> bool:
    if not listing_is_active(listing):
        return False
    listing_type = listing.listing_type
    if not buyer_allows_type(buyer, listing_type):
        return False
    if not buyer_allows_area(buyer, listing.area_py):
        return False
    price = resolve_listing_price(listing_type, listing)
    return buyer_allows_budget(buyer, listing, listing_type, price)


def calc_match_score(buyer: BuyerView, listing: ListingView) -> int:
    """0 for no match, otherwise 1..3: one point per known type, area and price."""
    if not passes_basic_match(buyer, listing):
        return 0
    listing_type = listing.listing_type
    score = 0
    if listing_type is not ListingType.UNKNOWN:
        score += 1
    if listing.area_py is not None:
        score += 1
    if resolve_listing_price(listing_type, listing) is not None:
        score += 1
    return score or 1


def is_strict_match(buyer: BuyerView, listing: ListingView) -> bool:
    if not listing_is_active(listing):
        return False
    listing_type = listing.listing_type
    if not buyer.type_prefs or not buyer_prefers_type(buyer, listing_type):
        return False
    price = resolve_listing_price(listing_type, listing)
    if price is None:
        return False
    if not _within_bounds(price, buyer.budget_min, buyer.budget_max):
        return False
    if not _monthly_ok(buyer, listing, listing_type, price):
        return False
    area = listing.area_py
    if area is None:
        return False
    if not _within_bounds(area, buyer.area_min_py, buyer.area_max_py):
        return False
    return _near_preferred_area(buyer, area)
