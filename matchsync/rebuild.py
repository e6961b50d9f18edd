# matchsync/rebuild.py
"""Full rebuild of both match collections.

Listing snapshots are cleared first, so an interrupted run can simply be
started again. Listings are paged by id with a cursor; every listing
snapshot is recomputed against one buyer load, then each touched buyer is
recomputed once at the end.
"""
from dataclasses import dataclass
from typing import Callable, List, Optional, Set

from . import config
from .normalize import ListingView, build_match_listing_payload, normalize_listing, should_index_listing
from .reindex import ReindexExecutor, ReindexOutcome
from .snapshots import LISTINGS, SnapshotStore
from .store import DocumentStore
from .utils import logger


@dataclass
class RebuildResult:
    total: int = 0
    skipped: int = 0

    def to_dict(self):
        return {"ok": True, "total": self.total, "skipped": self.skipped}


def rebuild_all(store: DocumentStore, clock: Optional[Callable[[], int]] = None,
                page_size: int = config.REBUILD_PAGE_SIZE,
                max_workers: int = config.MATCH_FANOUT_WORKERS) -> RebuildResult:
    snapshots = SnapshotStore(store, clock=clock)
    executor = ReindexExecutor(snapshots, max_workers=max_workers)
    result = RebuildResult()

    cleared = snapshots.clear_listing_snapshots()
    logger.info("Cleared %d listing snapshots", cleared)

    normalized: List[ListingView] = []
    cursor = None
    while True:
        page = store.page(LISTINGS, page_size, start_after=cursor)
        if not page:
            break
        for listing_id, data in page:
            if not should_index_listing(data):
                result.skipped += 1
                continue
            payload = build_match_listing_payload(data, snapshots.now())
            snapshots.put_listing_projection(listing_id, payload, keep_matches=False)
            listing = normalize_listing(listing_id, payload)
            if listing:
                normalized.append(listing)
            result.total += 1
        cursor = page[-1][0]
        logger.info("Rebuild page done: cursor=%s total=%d skipped=%d", cursor, result.total, result.skipped)

    buyers = snapshots.load_active_buyers()
    impacted: Set[str] = set()
    for listing in normalized:
        impacted |= executor.recompute_listing_snapshot(listing.id, listing, buyers)

    # existing buyer snapshots may reference listings that no longer match
    impacted.update(snapshots.buyer_snapshot_ids())
    outcome = ReindexOutcome()
    executor.propagate_to_buyers(impacted, buyers, normalized, outcome)
    logger.info(
        "Rebuild finished: total=%d skipped=%d buyers=%d writes=%d",
        result.total, result.skipped, len(impacted), outcome.writes,
    )
    return result
