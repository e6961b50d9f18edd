# tests/test_reindex.py
import threading

import pytest

from matchsync.normalize import normalize_buyer, normalize_listing
from matchsync.reindex import (
    DeindexListing,
    EntityKind,
    KeyedLocks,
    ReindexBuyer,
    Reindexer,
    ReindexListing,
    UnknownEntityKind,
    UpsertListingProjection,
    on_entity_written,
)
from matchsync.scoring import calc_match_score
from matchsync.services import soft_delete_entity, write_entity
from matchsync.snapshots import BUYERS, LISTINGS, MATCH_BUYERS, MATCH_LISTINGS
from matchsync.store import MemoryDocumentStore


@pytest.fixture
def reindexer(store, clock):
    return Reindexer(store, clock=clock, max_workers=4)


def put_listing(store, reindexer, listing_id, data, merge=True):
    return write_entity(store, reindexer, EntityKind.LISTING, listing_id, data, merge=merge)


def put_buyer(store, reindexer, buyer_id, data, merge=True):
    return write_entity(store, reindexer, EntityKind.BUYER, buyer_id, data, merge=merge)


def listing_matches(store, listing_id):
    return (store.get(MATCH_LISTINGS, listing_id) or {}).get("matchedBuyerIds")


def buyer_matches(store, buyer_id):
    return (store.get(MATCH_BUYERS, buyer_id) or {}).get("listingIds")


def assert_mutually_consistent(store):
    buyers = [b for b in (normalize_buyer(i, d) for i, d in store.stream(BUYERS)) if b]
    listings = [l for l in (normalize_listing(i, d) for i, d in store.stream(LISTINGS)) if l]
    for buyer in buyers:
        for listing in listings:
            if calc_match_score(buyer, listing) < 1:
                continue
            in_buyer = listing.id in (buyer_matches(store, buyer.id) or [])
            in_listing = buyer.id in (listing_matches(store, listing.id) or [])
            assert in_buyer == in_listing, (buyer.id, listing.id)
            assert in_buyer, (buyer.id, listing.id)


@pytest.fixture
def two_buyers(store, reindexer):
    put_buyer(store, reindexer, "b1", {"typePrefs": ["전세"], "areaMaxPy": 30})
    put_buyer(store, reindexer, "b2", {"typePrefs": ["전세"], "areaMaxPy": 50})


def test_plan_listing_write():
    effects = on_entity_written("listing", "l1", None, {"type": "전세", "area_py": 25}, now=7)
    assert isinstance(effects[0], UpsertListingProjection)
    assert effects[0].payload["updatedAt"] == 7
    assert isinstance(effects[1], ReindexListing)
    assert effects[1].listing.area_py == 25
    assert on_entity_written("listing", "l1", {"type": "전세"}, None, now=7) == [DeindexListing("l1")]
    assert on_entity_written("listing", "l1", None, {"deletedAt": 99}, now=7) == [DeindexListing("l1")]


def test_plan_buyer_write():
    before = {"name": "a", "budgetMax": 100}
    assert on_entity_written(EntityKind.BUYER, "b1", before, {"name": "b", "budgetMax": "100"}, now=1) == []
    assert on_entity_written("buyer", "b1", before, {"budgetMax": 200}, now=1) == [ReindexBuyer("b1")]
    assert on_entity_written("buyer", "b1", None, before, now=1) == [ReindexBuyer("b1")]
    assert on_entity_written("buyer", "b1", before, None, now=1) == [ReindexBuyer("b1")]
    assert on_entity_written("buyer", "b1", None, None, now=1) == []


def test_unknown_kind():
    with pytest.raises(UnknownEntityKind):
        on_entity_written("agent", "a1", None, {}, now=1)


def test_listing_create_indexes_both_sides(store, reindexer, two_buyers, clock):
    outcome = put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25, "title": "반포 자이"})
    snap = store.get(MATCH_LISTINGS, "l1")
    assert snap["matchedBuyerIds"] == ["b1", "b2"]
    assert snap["matchedBuyers"][0] == {"id": "b1", "score": 2, "strict": False}
    assert snap["matchesUpdatedAt"] == clock.value
    assert "title" not in snap
    assert buyer_matches(store, "b1") == ["l1"]
    assert buyer_matches(store, "b2") == ["l1"]
    assert outcome.propagated == {"b1", "b2"}
    assert_mutually_consistent(store)


def test_listing_update_drops_buyer(store, reindexer, two_buyers):
    put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25})
    put_listing(store, reindexer, "l1", {"area_py": 40})
    assert listing_matches(store, "l1") == ["b2"]
    assert buyer_matches(store, "b1") == []
    assert buyer_matches(store, "b2") == ["l1"]
    assert_mutually_consistent(store)


def test_soft_deleted_listing_is_removed_everywhere(store, reindexer, two_buyers):
    put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25})
    put_listing(store, reindexer, "l2", {"type": "전세", "area_py": 20})
    soft_delete_entity(store, reindexer, EntityKind.LISTING, "l1")
    assert store.get(MATCH_LISTINGS, "l1") is None
    assert buyer_matches(store, "b1") == ["l2"]
    assert buyer_matches(store, "b2") == ["l2"]
    assert_mutually_consistent(store)


def test_hard_delete_trigger(store, reindexer, two_buyers):
    put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25})
    before = store.get(LISTINGS, "l1")
    store.delete(LISTINGS, "l1")
    reindexer.handle("listing", "l1", before, None)
    assert store.get(MATCH_LISTINGS, "l1") is None
    assert buyer_matches(store, "b1") == []


def test_display_only_buyer_change_writes_nothing(store, reindexer, two_buyers):
    put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25})
    snapshots_before = {k: v for k, v in store.dump().items() if k.startswith("match_")}
    outcome = put_buyer(store, reindexer, "b1", {"name": "새 이름", "memo": "전화 요망"})
    snapshots_after = {k: v for k, v in store.dump().items() if k.startswith("match_")}
    assert outcome.writes == 0 and outcome.deletes == 0
    assert snapshots_after == snapshots_before


def test_buyer_budget_change_propagates(store, reindexer):
    put_listing(store, reindexer, "l1", {"type": "매매", "price": 8000, "area_py": 30})
    put_listing(store, reindexer, "l2", {"type": "매매", "price": 12000, "area_py": 30})
    put_buyer(store, reindexer, "b1", {"typePrefs": ["매매"], "budgetMax": 15000})
    assert sorted(buyer_matches(store, "b1")) == ["l1", "l2"]
    outcome = put_buyer(store, reindexer, "b1", {"budgetMax": 10000})
    assert buyer_matches(store, "b1") == ["l1"]
    assert listing_matches(store, "l2") == []
    assert listing_matches(store, "l1") == ["b1"]
    assert outcome.propagated == {"l1", "l2"}
    assert_mutually_consistent(store)


def test_archived_buyer_is_deindexed(store, reindexer):
    put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25})
    put_buyer(store, reindexer, "b1", {"typePrefs": ["전세"]})
    assert listing_matches(store, "l1") == ["b1"]
    put_buyer(store, reindexer, "b1", {"status": "계약완료"})
    assert store.get(MATCH_BUYERS, "b1") is None
    assert listing_matches(store, "l1") == []


def test_closed_listing_keeps_snapshot_without_matches(store, reindexer, two_buyers):
    put_listing(store, reindexer, "l1", {"type": "전세", "area_py": 25})
    put_listing(store, reindexer, "l1", {"status": "거래완료"})
    snap = store.get(MATCH_LISTINGS, "l1")
    assert snap["status"] == "거래완료"
    assert snap["matchedBuyerIds"] == []
    assert buyer_matches(store, "b1") == []


def test_interleaved_writes_converge(store, reindexer):
    for i in range(6):
        put_buyer(store, reindexer, f"b{i}", {"typePrefs": ["매매"], "budgetMax": 1000 * (i + 1)})
    for i in range(8):
        put_listing(store, reindexer, f"l{i}", {"type": "매매", "price": 700 * (i + 1)})
    put_buyer(store, reindexer, "b3", {"budgetMax": 100})
    put_listing(store, reindexer, "l2", {"price": 50})
    put_buyer(store, reindexer, "b5", {"status": "inactive"})
    soft_delete_entity(store, reindexer, EntityKind.LISTING, "l0")
    assert_mutually_consistent(store)
    assert buyer_matches(store, "b3") == ["l2"]


def test_cleared_listing_field_is_dropped_from_projection(store, reindexer):
    put_buyer(store, reindexer, "b1", {"typePrefs": ["매매"], "budgetMax": 5000})
    put_listing(store, reindexer, "l1", {"type": "매매", "price": 8000})
    assert listing_matches(store, "l1") == []
    put_listing(store, reindexer, "l1", {"price": None})
    assert "price" not in store.get(MATCH_LISTINGS, "l1")
    assert listing_matches(store, "l1") == ["b1"]
    assert buyer_matches(store, "b1") == ["l1"]
    assert_mutually_consistent(store)


def test_empty_documents_take_part_in_matching(store, reindexer):
    put_buyer(store, reindexer, "b1", {})
    put_listing(store, reindexer, "l1", {})
    assert store.get(MATCH_LISTINGS, "l1")["matchedBuyerIds"] == ["b1"]
    assert buyer_matches(store, "b1") == ["l1"]


def test_entity_locks_are_released(store, clock):
    locks = KeyedLocks()
    reindexer = Reindexer(store, clock=clock, locks=locks)
    put_buyer(store, reindexer, "b1", {"typePrefs": ["전세"]})
    put_listing(store, reindexer, "l1", {"type": "전세"})
    assert len(locks) == 0

    entered = []
    with locks.hold(("listing", "l1")):
        worker = threading.Thread(target=lambda: _hold_once(locks, ("listing", "l1"), entered))
        worker.start()
        worker.join(timeout=0.05)
        assert entered == []
        assert len(locks) == 1
    worker.join()
    assert entered == [1]
    assert len(locks) == 0


def _hold_once(locks, key, entered):
    with locks.hold(key):
        entered.append(1)


class FailingStore(MemoryDocumentStore):
    def __init__(self, fail_set=(), fail_delete=()):
        super().__init__()
        self.fail_set = set(fail_set)
        self.fail_delete = set(fail_delete)

    def set(self, collection, doc_id, data, merge=True):
        if collection in self.fail_set:
            raise ConnectionError(f"set {collection}/{doc_id} unavailable")
        super().set(collection, doc_id, data, merge=merge)

    def delete(self, collection, doc_id):
        if collection in self.fail_delete:
            raise ConnectionError(f"delete {collection}/{doc_id} unavailable")
        return super().delete(collection, doc_id)


def test_snapshot_write_failure_propagates(clock):
    store = FailingStore(fail_set={MATCH_BUYERS})
    reindexer = Reindexer(store, clock=clock)
    store.set(BUYERS, "b1", {"typePrefs": ["전세"]})
    store.set(LISTINGS, "l1", {"type": "전세"})
    with pytest.raises(ConnectionError):
        reindexer.handle("listing", "l1", None, store.get(LISTINGS, "l1"))


def test_snapshot_delete_failure_is_swallowed(clock):
    store = FailingStore(fail_delete={MATCH_LISTINGS})
    reindexer = Reindexer(store, clock=clock)
    store.set(LISTINGS, "l1", {"type": "전세", "deletedAt": 5})
    outcome = reindexer.handle("listing", "l1", None, store.get(LISTINGS, "l1"))
    assert outcome.deletes == 0
