# matchsync/reindex.py
"""Incremental reindexing of the match snapshots.

A write to `listings/{id}` or `buyers/{id}` is turned into a list of effects
by `on_entity_written`, which never touches the store. `ReindexExecutor`
applies the effects: it recomputes the written entity's own snapshot,
diffs the previous and new counterpart sets, and recomputes every
counterpart in the union from scratch against the current opposite
collection.

Counterpart recomputations are independent read-then-write operations and
run on a bounded thread pool. Two triggers for the same entity are
serialized inside one process by `Reindexer`; triggers in different
processes may still interleave, and the next write (or a rebuild) converges
the snapshots again.
"""
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set, Union

from . import config
from .normalize import (
    BuyerView,
    ListingView,
    build_match_listing_payload,
    normalize_listing,
    pick_buyer_relevant_fields,
    should_index_listing,
)
from .ranking import match_buyers_for_listing, match_listings_for_buyer
from .snapshots import SnapshotStore
from .store import DocumentStore
from .utils import logger


class EntityKind(str, Enum):
    LISTING = "listing"
    BUYER = "buyer"


class UnknownEntityKind(ValueError):
    pass


@dataclass(frozen=True)
class UpsertListingProjection:
    listing_id: str
    payload: Dict


@dataclass(frozen=True)
class ReindexListing:
    listing_id: str
    listing: ListingView


@dataclass(frozen=True)
class DeindexListing:
    listing_id: str


@dataclass(frozen=True)
class ReindexBuyer:
    buyer_id: str


Effect = Union[UpsertListingProjection, ReindexListing, DeindexListing, ReindexBuyer]


def plan_listing_write(listing_id: str, after: Optional[Dict], now: int) -> List[Effect]:
    if not should_index_listing(after):
        return [DeindexListing(listing_id)]
    payload = build_match_listing_payload(after, now)
    effects: List[Effect] = [UpsertListingProjection(listing_id, payload)]
    listing = normalize_listing(listing_id, payload)
    if listing is not None:
        effects.append(ReindexListing(listing_id, listing))
    return effects


def plan_buyer_write(buyer_id: str, before: Optional[Dict], after: Optional[Dict]) -> List[Effect]:
    if before is None and after is None:
        return []
    if before is not None and after is not None:
        if pick_buyer_relevant_fields(before) == pick_buyer_relevant_fields(after):
            return []
    return [ReindexBuyer(buyer_id)]


def on_entity_written(kind, entity_id: str, before: Optional[Dict], after: Optional[Dict],
                      now: int) -> List[Effect]:
    """Describe the snapshot work a single document write requires.

    `before` absent means create, `after` absent means hard delete.
    """
    try:
        kind = EntityKind(kind)
    except ValueError:
        raise UnknownEntityKind(f"unknown entity kind: {kind!r}") from None
    if kind is EntityKind.LISTING:
        return plan_listing_write(entity_id, after, now)
    return plan_buyer_write(entity_id, before, after)


@dataclass
class ReindexOutcome:
    writes: int = 0
    deletes: int = 0
    propagated: Set[str] = field(default_factory=set)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def record_write(self):
        with self._lock:
            self.writes += 1

    def record_delete(self):
        with self._lock:
            self.deletes += 1


class ReindexExecutor:
    def __init__(self, snapshots: SnapshotStore, max_workers: int = config.MATCH_FANOUT_WORKERS):
        self.snapshots = snapshots
        self.max_workers = max(1, max_workers)

    def apply(self, effects: Iterable[Effect]) -> ReindexOutcome:
        outcome = ReindexOutcome()
        for effect in effects:
            if isinstance(effect, UpsertListingProjection):
                self.snapshots.put_listing_projection(effect.listing_id, effect.payload)
                outcome.record_write()
            elif isinstance(effect, ReindexListing):
                self._reindex_listing(effect.listing_id, effect.listing, outcome)
            elif isinstance(effect, DeindexListing):
                self._deindex_listing(effect.listing_id, outcome)
            elif isinstance(effect, ReindexBuyer):
                self._reindex_buyer(effect.buyer_id, outcome)
            else:
                raise TypeError(f"unsupported effect: {effect!r}")
        return outcome

    # single-entity recomputation

    def recompute_buyer_snapshot(self, buyer_id: str, buyers: Sequence[BuyerView],
                                 listings: Sequence[ListingView],
                                 outcome: Optional[ReindexOutcome] = None) -> List[str]:
        """Rewrite one buyer's snapshot; returns the new matched listing ids."""
        outcome = outcome or ReindexOutcome()
        buyer = next((b for b in buyers if b.id == buyer_id), None)
        if buyer is None:
            if self.snapshots.delete_buyer_snapshot(buyer_id):
                outcome.record_delete()
            return []
        matches = match_listings_for_buyer(buyer, listings, config.MATCH_LIMIT)
        self.snapshots.set_buyer_snapshot(buyer_id, matches)
        outcome.record_write()
        return [m.id for m in matches]

    def recompute_listing_snapshot(self, listing_id: str, listing: Optional[ListingView],
                                   buyers: Sequence[BuyerView],
                                   outcome: Optional[ReindexOutcome] = None) -> Set[str]:
        """Rewrite one listing's snapshot; returns previous | new matched buyer ids."""
        outcome = outcome or ReindexOutcome()
        previous = set(self.snapshots.previous_buyer_ids(listing_id))
        if listing is None:
            if self.snapshots.delete_listing_snapshot(listing_id):
                outcome.record_delete()
            return previous
        matches = match_buyers_for_listing(listing, buyers, config.MATCH_LIMIT)
        self.snapshots.set_listing_snapshot(listing_id, matches)
        outcome.record_write()
        return previous | {m.id for m in matches}

    # flows

    def _reindex_listing(self, listing_id: str, listing: ListingView, outcome: ReindexOutcome):
        buyers = self.snapshots.load_active_buyers()
        impacted = self.recompute_listing_snapshot(listing_id, listing, buyers, outcome)
        if not impacted:
            return
        listings = self.snapshots.load_match_listings()
        self.propagate_to_buyers(impacted, buyers, listings, outcome)

    def _deindex_listing(self, listing_id: str, outcome: ReindexOutcome):
        previous = self.snapshots.previous_buyer_ids(listing_id)
        if self.snapshots.delete_listing_snapshot(listing_id):
            outcome.record_delete()
        if not previous:
            return
        buyers = self.snapshots.load_active_buyers()
        listings = self.snapshots.load_match_listings()
        self.propagate_to_buyers(previous, buyers, listings, outcome)

    def _reindex_buyer(self, buyer_id: str, outcome: ReindexOutcome):
        buyers = self.snapshots.load_active_buyers()
        listings = self.snapshots.load_match_listings()
        previous = self.snapshots.previous_listing_ids(buyer_id)
        current = self.recompute_buyer_snapshot(buyer_id, buyers, listings, outcome)
        impacted = set(previous) | set(current)
        if not impacted:
            return
        by_id = {listing.id: listing for listing in listings}
        self._fan_out(
            lambda listing_id: self.recompute_listing_snapshot(listing_id, by_id.get(listing_id), buyers, outcome),
            impacted,
        )
        outcome.propagated.update(impacted)

    def propagate_to_buyers(self, buyer_ids: Iterable[str], buyers: Sequence[BuyerView],
                            listings: Sequence[ListingView], outcome: ReindexOutcome):
        ids = set(buyer_ids)
        self._fan_out(
            lambda buyer_id: self.recompute_buyer_snapshot(buyer_id, buyers, listings, outcome),
            ids,
        )
        outcome.propagated.update(ids)

    def _fan_out(self, fn: Callable[[str], object], ids: Set[str]):
        if not ids:
            return
        with ThreadPoolExecutor(max_workers=min(len(ids), self.max_workers)) as executor:
            futures = {executor.submit(fn, entity_id): entity_id for entity_id in sorted(ids)}
            errors = []
            for future in as_completed(futures):
                try:
                    future.result()
                except Exception as e:
                    logger.error("Recompute failed for %s: %s", futures[future], e)
                    errors.append(e)
        if errors:
            raise errors[0]


class KeyedLocks:
    """One lock per key; a key's lock is dropped once nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[object, threading.Lock] = {}
        self._users: Dict[object, int] = {}

    @contextmanager
    def hold(self, key):
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
            self._users[key] = self._users.get(key, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]

    def __len__(self):
        return len(self._locks)


_entity_locks = KeyedLocks()


class Reindexer:
    """Entry point for document-write triggers."""

    def __init__(self, store: DocumentStore, clock: Optional[Callable[[], int]] = None,
                 max_workers: int = config.MATCH_FANOUT_WORKERS, locks: Optional[KeyedLocks] = None):
        self.snapshots = SnapshotStore(store, clock=clock)
        self.executor = ReindexExecutor(self.snapshots, max_workers=max_workers)
        self.locks = locks if locks is not None else _entity_locks

    def handle(self, kind, entity_id: str, before: Optional[Dict], after: Optional[Dict]) -> ReindexOutcome:
        entity_id = str(entity_id)
        with self.locks.hold((str(getattr(kind, "value", kind)), entity_id)):
            effects = on_entity_written(kind, entity_id, before, after, self.snapshots.now())
            if not effects:
                logger.debug("No match-relevant change for %s %s", kind, entity_id)
                return ReindexOutcome()
            outcome = self.executor.apply(effects)
        logger.info(
            "Reindexed %s %s: %d writes, %d deletes, %d propagated",
            getattr(kind, "value", kind), entity_id, outcome.writes, outcome.deletes, len(outcome.propagated),
        )
        return outcome
