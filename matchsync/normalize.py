# matchsync/normalize.py
"""Canonical views of raw listing and buyer documents.

Raw documents are written by the admin UI and importers, so every field is
coerced leniently here: numbers may arrive as strings with thousands
separators, arrays may hold junk, and free-text `type`/`status` fields are
mapped onto `ListingType` through the keyword tables below. Nothing in this
module raises on bad data; entities are only excluded via the tombstone and
buyer-status rules.
"""
import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ListingType(str, Enum):
    SALE = "SALE"
    JEONSE = "JEONSE"
    WOLSE = "WOLSE"
    UNKNOWN = "UNKNOWN"


# checked in order against the lowercased text; first hit wins.
# each type also matches its own enum value ("WOLSE" -> wolse)
LISTING_TYPE_KEYWORDS = (
    (ListingType.SALE, ("sale", "매매")),
    (ListingType.JEONSE, ("jeonse", "전세")),
    (ListingType.WOLSE, ("wolse", "rent", "월세")),
)

# buyers whose status contains one of these never take part in matching
BUYER_ARCHIVE_KEYWORDS = ("archived", "inactive", "완료", "종료")

# listings whose status contains one of these score 0
LISTING_CLOSED_KEYWORDS = ("완료", "마감", "종료")

# fields whose change requires a buyer reindex
BUYER_MATCH_FIELDS = (
    "typePrefs",
    "budgetMin",
    "budgetMax",
    "monthlyMax",
    "areaMinPy",
    "areaMaxPy",
    "areaPrefsPy",
    "status",
    "deletedAt",
)

_SEPARATORS = re.compile(r"[\s,]")


def to_optional_number(value: Any) -> Optional[float]:
    """Parse a number leniently; None for anything that isn't finite."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        n = value
    else:
        text = _SEPARATORS.sub("", str(value))
        if not text:
            return None
        try:
            n = float(text)
        except ValueError:
            return None
    if not math.isfinite(n):
        return None
    if isinstance(n, float) and n.is_integer():
        return int(n)
    return n


def to_number(value: Any) -> float:
    n = to_optional_number(value)
    return n if n is not None else 0


def to_millis(value: Any) -> Optional[int]:
    if not value:
        return None
    if isinstance(value, datetime):
        return int(value.timestamp() * 1000)
    n = to_optional_number(value)
    return int(n) if n is not None else None


def sanitize(data: Dict[str, Any]) -> Dict[str, Any]:
    """Drop keys whose value is None."""
    return {k: v for k, v in data.items() if v is not None}


def extract_id_array(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None and str(v)]


def _string_list(value: Any) -> Optional[List[str]]:
    if not isinstance(value, list):
        return None
    return [str(v) for v in value]


def _number_list(value: Any) -> Optional[List[float]]:
    if not isinstance(value, list):
        return None
    out = []
    for v in value:
        n = to_optional_number(v)
        if n is not None:
            out.append(n)
    return out


def _text(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def normalize_listing_type(value: Any) -> ListingType:
    text = str(value or "").lower()
    for listing_type, keywords in LISTING_TYPE_KEYWORDS:
        if any(k in text for k in keywords):
            return listing_type
    return ListingType.UNKNOWN


def is_tombstoned(data: Optional[Dict[str, Any]]) -> bool:
    deleted = to_optional_number((data or {}).get("deletedAt"))
    return deleted is not None and deleted > 0


def buyer_status_archived(status: Any) -> bool:
    text = _SEPARATORS.sub("", str(status or "")).lower()
    return any(k in text for k in BUYER_ARCHIVE_KEYWORDS)


@dataclass
class ListingView:
    id: str
    type: Optional[str] = None
    area_py: Optional[float] = None
    price: Optional[float] = None
    deposit: Optional[float] = None
    monthly: Optional[float] = None
    status: Optional[str] = None
    closed_by_us: bool = False
    deleted_at: Optional[int] = None
    updated_at: Optional[int] = None
    ownership_type: str = "our"

    @property
    def listing_type(self) -> ListingType:
        return normalize_listing_type(self.type)


@dataclass
class BuyerView:
    id: str
    type_prefs: List[str] = field(default_factory=list)
    budget_min: Optional[float] = None
    budget_max: Optional[float] = None
    monthly_max: Optional[float] = None
    area_min_py: Optional[float] = None
    area_max_py: Optional[float] = None
    area_prefs_py: List[float] = field(default_factory=list)
    status: Optional[str] = None
    deleted_at: Optional[int] = None


def normalize_listing(listing_id: str, data: Optional[Dict[str, Any]]) -> Optional[ListingView]:
    if data is None or is_tombstoned(data):
        return None
    return ListingView(
        id=listing_id,
        type=_text(data.get("type")),
        area_py=to_optional_number(data.get("area_py")),
        price=to_optional_number(data.get("price")),
        deposit=to_optional_number(data.get("deposit")),
        monthly=to_optional_number(data.get("monthly")),
        status=_text(data.get("status")),
        closed_by_us=bool(data.get("closedByUs")),
        deleted_at=to_millis(data.get("deletedAt")),
        updated_at=to_millis(data.get("updatedAt")),
        ownership_type="partner" if data.get("ownershipType") == "partner" else "our",
    )


def normalize_buyer(buyer_id: str, data: Optional[Dict[str, Any]]) -> Optional[BuyerView]:
    if data is None or is_tombstoned(data):
        return None
    if buyer_status_archived(data.get("status")):
        return None
    area_min = data.get("areaMinPy") if data.get("areaMinPy") is not None else data.get("areaMin")
    area_max = data.get("areaMaxPy") if data.get("areaMaxPy") is not None else data.get("areaMax")
    return BuyerView(
        id=buyer_id,
        type_prefs=_string_list(data.get("typePrefs")) or [],
        budget_min=to_optional_number(data.get("budgetMin")),
        budget_max=to_optional_number(data.get("budgetMax")),
        monthly_max=to_optional_number(data.get("monthlyMax")),
        area_min_py=to_optional_number(area_min),
        area_max_py=to_optional_number(area_max),
        area_prefs_py=_number_list(data.get("areaPrefsPy")) or [],
        status=_text(data.get("status")),
        deleted_at=to_millis(data.get("deletedAt")),
    )


def should_index_listing(data: Optional[Dict[str, Any]]) -> bool:
    return data is not None and not is_tombstoned(data)


def build_match_listing_payload(source: Dict[str, Any], now: int) -> Dict[str, Any]:
    """Project a raw listing onto the fields the scorer reads.

    Zero and unparseable numbers are dropped so they read as "unknown".
    """
    return sanitize({
        "type": _text(source.get("type")),
        "area_py": to_number(source.get("area_py")) or None,
        "price": to_number(source.get("price")) or None,
        "deposit": to_number(source.get("deposit")) or None,
        "monthly": to_number(source.get("monthly")) or None,
        "status": _text(source.get("status")),
        "closedByUs": bool(source.get("closedByUs")),
        "deletedAt": to_millis(source.get("deletedAt")),
        "updatedAt": to_millis(source.get("updatedAt")) or now,
        "ownershipType": "partner" if source.get("ownershipType") == "partner" else "our",
    })


def pick_buyer_relevant_fields(source: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if source is None:
        return None
    snapshot = {}
    for key in BUYER_MATCH_FIELDS:
        raw = source.get(key)
        if raw is None:
            continue
        if key == "typePrefs":
            snapshot[key] = _string_list(raw)
        elif key == "areaPrefsPy":
            snapshot[key] = _number_list(raw)
        elif key == "status":
            snapshot[key] = _text(raw)
        else:
            snapshot[key] = to_optional_number(raw)
    return snapshot
