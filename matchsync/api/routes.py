# matchsync/api/routes.py
import secrets
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header, HTTPException, Query

from .. import config, schemas
from ..aggregators import prune_viewer_scenarios
from ..rebuild import rebuild_all
from ..reindex import EntityKind, Reindexer, ReindexOutcome
from ..services import get_store, soft_delete_entity, write_entity, write_session_log
from ..snapshots import SnapshotStore
from ..store import DocumentStore
from ..utils import logger

router = APIRouter()


def get_reindexer(store: DocumentStore = Depends(get_store)) -> Reindexer:
    return Reindexer(store)


def require_admin_key(key: Optional[str] = Query(None), x_admin_key: Optional[str] = Header(None)):
    required = config.MATCH_REBUILD_KEY
    provided = key or x_admin_key or ""
    if required and not secrets.compare_digest(provided.encode(), required.encode()):
        raise HTTPException(status_code=401, detail="unauthorized")


def _outcome(outcome: Optional[ReindexOutcome]) -> schemas.ReindexOut:
    if outcome is None:
        return schemas.ReindexOut()
    return schemas.ReindexOut(writes=outcome.writes, deletes=outcome.deletes,
                              propagated=sorted(outcome.propagated))


@router.get("/health")
def health():
    return {"status": "ok"}


@router.get("/matches/listings/{listing_id}", response_model=schemas.ListingSnapshotOut)
def listing_matches(listing_id: str, store: DocumentStore = Depends(get_store)):
    snap = SnapshotStore(store).get_listing_snapshot(listing_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return schemas.ListingSnapshotOut(listing_id=listing_id, **{
        k: snap[k] for k in ("matchedBuyerIds", "matchedBuyers", "matchesUpdatedAt") if k in snap
    })


@router.get("/matches/buyers/{buyer_id}", response_model=schemas.BuyerSnapshotOut)
def buyer_matches(buyer_id: str, store: DocumentStore = Depends(get_store)):
    snap = SnapshotStore(store).get_buyer_snapshot(buyer_id)
    if snap is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return schemas.BuyerSnapshotOut(
        buyerId=buyer_id,
        listingIds=snap.get("listingIds") or [],
        matches=snap.get("matches") or [],
        updatedAt=snap.get("updatedAt"),
    )


@router.put("/listings/{listing_id}", response_model=schemas.ReindexOut)
def put_listing(listing_id: str, payload: Dict[str, Any] = Body(...),
                store: DocumentStore = Depends(get_store), reindexer: Reindexer = Depends(get_reindexer)):
    return _outcome(write_entity(store, reindexer, EntityKind.LISTING, listing_id, payload))


@router.delete("/listings/{listing_id}", response_model=schemas.ReindexOut)
def delete_listing(listing_id: str, store: DocumentStore = Depends(get_store),
                   reindexer: Reindexer = Depends(get_reindexer)):
    outcome = soft_delete_entity(store, reindexer, EntityKind.LISTING, listing_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Listing not found")
    return _outcome(outcome)


@router.put("/buyers/{buyer_id}", response_model=schemas.ReindexOut)
def put_buyer(buyer_id: str, payload: Dict[str, Any] = Body(...),
              store: DocumentStore = Depends(get_store), reindexer: Reindexer = Depends(get_reindexer)):
    return _outcome(write_entity(store, reindexer, EntityKind.BUYER, buyer_id, payload))


@router.delete("/buyers/{buyer_id}", response_model=schemas.ReindexOut)
def delete_buyer(buyer_id: str, store: DocumentStore = Depends(get_store),
                 reindexer: Reindexer = Depends(get_reindexer)):
    outcome = soft_delete_entity(store, reindexer, EntityKind.BUYER, buyer_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Buyer not found")
    return _outcome(outcome)


@router.post("/triggers/{kind}/{entity_id}", response_model=schemas.ReindexOut)
def trigger(kind: EntityKind, entity_id: str, event: schemas.TriggerEvent,
            reindexer: Reindexer = Depends(get_reindexer)):
    """Replay a document-written notification; the store must already hold `after`."""
    return _outcome(reindexer.handle(kind, entity_id, event.before, event.after))


@router.api_route("/admin/rebuild-matches", methods=["GET", "POST"], response_model=schemas.RebuildOut,
                  dependencies=[Depends(require_admin_key)])
def rebuild_matches(store: DocumentStore = Depends(get_store)):
    try:
        result = rebuild_all(store)
    except Exception as e:
        logger.exception("Match rebuild failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e) or "rebuild failed")
    return result.to_dict()


@router.post("/admin/prune-viewer-scenarios", response_model=schemas.PruneOut,
             dependencies=[Depends(require_admin_key)])
def prune_scenarios(store: DocumentStore = Depends(get_store)):
    return schemas.PruneOut(deleted=prune_viewer_scenarios(store))


@router.post("/viewer-sessions/{uid}/logs/{session_id}", response_model=schemas.SessionStatsOut)
def post_session_log(uid: str, session_id: str, payload: Dict[str, Any] = Body(...),
                     store: DocumentStore = Depends(get_store)):
    return schemas.SessionStatsOut(counted=write_session_log(store, uid, session_id, payload))
