# matchsync/services.py
"""Document writes that fire the same handlers a store trigger would.

The HTTP layer goes through these helpers so every write to `listings`,
`buyers` or a session log is followed by its reindex / stats step with the
before and after states.
"""
from typing import Dict, Optional

from .aggregators import session_logs_collection, sync_viewer_session_stats
from .db import SessionLocal
from .reindex import EntityKind, Reindexer, ReindexOutcome
from .snapshots import BUYERS, LISTINGS
from .store import DocumentStore, SqlDocumentStore
from .utils import logger, now_ms

COLLECTIONS = {EntityKind.LISTING: LISTINGS, EntityKind.BUYER: BUYERS}


def get_store() -> DocumentStore:
    return SqlDocumentStore(SessionLocal)


def write_entity(store: DocumentStore, reindexer: Reindexer, kind: EntityKind, entity_id: str,
                 data: Dict, merge: bool = True) -> ReindexOutcome:
    collection = COLLECTIONS[kind]
    before = store.get(collection, entity_id)
    store.set(collection, entity_id, data, merge=merge)
    after = store.get(collection, entity_id)
    logger.info("Wrote %s %s", kind.value, entity_id)
    return reindexer.handle(kind, entity_id, before, after)


def soft_delete_entity(store: DocumentStore, reindexer: Reindexer, kind: EntityKind,
                       entity_id: str) -> Optional[ReindexOutcome]:
    if store.get(COLLECTIONS[kind], entity_id) is None:
        return None
    return write_entity(store, reindexer, kind, entity_id, {"deletedAt": now_ms()})


def write_session_log(store: DocumentStore, uid: str, session_id: str, data: Dict) -> bool:
    collection = session_logs_collection(uid)
    before = store.get(collection, session_id)
    store.set(collection, session_id, data, merge=True)
    after = store.get(collection, session_id)
    return sync_viewer_session_stats(store, uid, before, after)
