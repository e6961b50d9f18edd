# matchsync/snapshots.py
"""The two denormalized match collections.

`match_listings/{listingId}` holds the listing's match-visible projection
plus `matchedBuyerIds`, `matchedBuyers` and `matchesUpdatedAt`.
`match_buyers/{buyerId}` holds `buyerId`, `listingIds`, `matches` and
`updatedAt`. Match writes merge into the existing document; projection
writes replace the projection fields.

Deletes are best-effort: a missing snapshot is rebuilt by the next write, so
a failed delete is logged and swallowed. Writes are not; a failed write
would leave the two sides silently inconsistent, so it propagates.
"""
from typing import Callable, Dict, List, Optional, Sequence

from .normalize import BuyerView, ListingView, extract_id_array, normalize_buyer, normalize_listing
from .ranking import MatchEntry
from .store import DocumentStore
from .utils import logger, now_ms

LISTINGS = "listings"
BUYERS = "buyers"
MATCH_LISTINGS = "match_listings"
MATCH_BUYERS = "match_buyers"

LISTING_MATCH_FIELDS = ("matchedBuyerIds", "matchedBuyers", "matchesUpdatedAt")


class SnapshotStore:
    def __init__(self, store: DocumentStore, clock: Optional[Callable[[], int]] = None):
        self.store = store
        self.clock = clock or now_ms

    def now(self) -> int:
        return self.clock()

    # listing side

    def get_listing_snapshot(self, listing_id: str) -> Optional[Dict]:
        return self.store.get(MATCH_LISTINGS, listing_id)

    def previous_buyer_ids(self, listing_id: str) -> List[str]:
        snap = self.get_listing_snapshot(listing_id) or {}
        return extract_id_array(snap.get("matchedBuyerIds"))

    def put_listing_projection(self, listing_id: str, payload: Dict, keep_matches: bool = True):
        """Replace the projection fields; fields absent from `payload` are removed.

        With `keep_matches` the current match fields survive the rewrite.
        """
        doc = dict(payload)
        if keep_matches:
            existing = self.get_listing_snapshot(listing_id) or {}
            doc.update({k: existing[k] for k in LISTING_MATCH_FIELDS if k in existing})
        self.store.set(MATCH_LISTINGS, listing_id, doc, merge=False)

    def set_listing_snapshot(self, listing_id: str, matches: Sequence[MatchEntry]):
        self.store.set(MATCH_LISTINGS, listing_id, {
            "matchedBuyerIds": [m.id for m in matches],
            "matchedBuyers": [m.to_dict() for m in matches],
            "matchesUpdatedAt": self.now(),
        })

    def delete_listing_snapshot(self, listing_id: str) -> bool:
        return self._delete_quietly(MATCH_LISTINGS, listing_id)

    def clear_listing_snapshots(self) -> int:
        ids = self.store.list_ids(MATCH_LISTINGS)
        return self.store.delete_many(MATCH_LISTINGS, ids) if ids else 0

    def load_match_listings(self) -> List[ListingView]:
        out = []
        for doc_id, data in self.store.stream(MATCH_LISTINGS):
            listing = normalize_listing(doc_id, data)
            if listing:
                out.append(listing)
        return out

    # buyer side

    def get_buyer_snapshot(self, buyer_id: str) -> Optional[Dict]:
        return self.store.get(MATCH_BUYERS, buyer_id)

    def previous_listing_ids(self, buyer_id: str) -> List[str]:
        snap = self.get_buyer_snapshot(buyer_id) or {}
        return extract_id_array(snap.get("listingIds"))

    def set_buyer_snapshot(self, buyer_id: str, matches: Sequence[MatchEntry]):
        self.store.set(MATCH_BUYERS, buyer_id, {
            "buyerId": buyer_id,
            "listingIds": [m.id for m in matches],
            "matches": [m.to_dict() for m in matches],
            "updatedAt": self.now(),
        })

    def delete_buyer_snapshot(self, buyer_id: str) -> bool:
        return self._delete_quietly(MATCH_BUYERS, buyer_id)

    def buyer_snapshot_ids(self) -> List[str]:
        return self.store.list_ids(MATCH_BUYERS)

    def load_active_buyers(self) -> List[BuyerView]:
        out = []
        for doc_id, data in self.store.stream(BUYERS):
            buyer = normalize_buyer(doc_id, data)
            if buyer:
                out.append(buyer)
        return out

    def _delete_quietly(self, collection: str, doc_id: str) -> bool:
        try:
            return self.store.delete(collection, doc_id)
        except Exception:
            logger.warning("Snapshot delete failed for %s/%s", collection, doc_id, exc_info=True)
            return False
