# matchsync/aggregators.py
"""Scheduled and triggered bookkeeping jobs for the viewer portal.

`prune_viewer_scenarios` keeps only the newest scenarios per user.
`sync_viewer_session_stats` folds a session-log write into per-user and
global counters inside one store transaction.
"""
from typing import Any, Callable, Dict, List, Optional

from . import config
from .normalize import sanitize, to_millis, to_optional_number
from .store import DocumentStore
from .utils import logger, now_ms

VIEWER_SCENARIOS = "viewerScenarios"
VIEWER_USER_STATS = "viewerUserStats"
VIEWER_STATS_TOTALS = "viewerStatsTotals"
USERS = "users"

STAFF_ROLES = ("owner", "admin", "staff")


def session_logs_collection(uid: str) -> str:
    return f"viewerSessions/{uid}/logs"


def prune_viewer_scenarios(store: DocumentStore, keep: int = config.SCENARIO_KEEP_PER_USER,
                           batch_size: int = config.PRUNE_BATCH_SIZE) -> int:
    docs = store.stream(VIEWER_SCENARIOS)
    # newest first within each user
    docs.sort(key=lambda row: to_millis(row[1].get("updatedAt")) or 0, reverse=True)
    docs.sort(key=lambda row: str(row[1].get("userId") or "__unknown__"))

    to_delete: List[str] = []
    current_user = None
    count = 0
    for doc_id, data in docs:
        user_id = str(data.get("userId") or "__unknown__")
        if user_id != current_user:
            current_user = user_id
            count = 0
        count += 1
        if count > keep:
            to_delete.append(doc_id)

    deleted = 0
    for start in range(0, len(to_delete), batch_size):
        deleted += store.delete_many(VIEWER_SCENARIOS, to_delete[start:start + batch_size])
    logger.info("Pruned %d viewer scenarios", deleted)
    return deleted


def is_staff_role(role: Any) -> bool:
    return str(role or "").lower() in STAFF_ROLES


def normalize_totals_bucket(raw: Any) -> Dict[str, float]:
    raw = raw if isinstance(raw, dict) else {}
    return {
        key: to_optional_number(raw.get(key)) or 0
        for key in ("totalSessions", "uniqueUsers", "repeatUsers", "totalDurationMs")
    }


def _first(*values):
    for v in values:
        if v is not None:
            return v
    return None


def sync_viewer_session_stats(store: DocumentStore, uid: str, before: Optional[Dict], after: Optional[Dict],
                              clock: Optional[Callable[[], int]] = None) -> bool:
    """Apply a session-log write to the stats documents.

    Only a newly created log or a log closed for the first time counts.
    Returns True when counters were updated.
    """
    uid = str(uid or "")
    if not uid or after is None:
        return False
    is_create = before is None
    closed_at = to_millis(after.get("closedAt"))
    prev_closed_at = to_millis((before or {}).get("closedAt"))
    is_closed_now = bool(closed_at and not prev_closed_at)
    if not is_create and not is_closed_now:
        return False

    started_at = to_millis(after.get("startedAt"))
    end_at = _first(closed_at, to_millis(after.get("endedAt")), to_millis(after.get("lastPingAt")))
    duration_ms = max(0, end_at - started_at) if is_closed_now and started_at and end_at else 0
    now = (clock or now_ms)()

    with store.transaction() as tx:
        user_data = tx.get(VIEWER_USER_STATS, uid) or {}
        totals_data = tx.get(VIEWER_STATS_TOTALS, "global") or {}
        role_data = tx.get(USERS, uid) or {}

        role = str(role_data.get("role") or "")
        staff = is_staff_role(role)
        viewer_totals = normalize_totals_bucket(totals_data.get("viewer"))
        staff_totals = normalize_totals_bucket(totals_data.get("staff"))
        bucket = staff_totals if staff else viewer_totals

        prev_sessions = to_optional_number(user_data.get("sessionCount")) or 0
        next_sessions = prev_sessions
        if is_create:
            bucket["totalSessions"] += 1
            if prev_sessions <= 0:
                bucket["uniqueUsers"] += 1
            if prev_sessions == 1:
                bucket["repeatUsers"] += 1
            next_sessions = prev_sessions + 1

        total_duration = to_optional_number(user_data.get("totalDurationMs")) or 0
        if is_closed_now and duration_ms:
            bucket["totalDurationMs"] += duration_ms
            total_duration += duration_ms

        last_seen_at = _first(closed_at, end_at, started_at, now)
        first_seen_at = _first(to_optional_number(user_data.get("firstSeenAt")), started_at, last_seen_at)

        tx.set(VIEWER_USER_STATS, uid, sanitize({
            "uid": uid,
            "sessionCount": next_sessions,
            "totalDurationMs": total_duration,
            "lastSeenAt": last_seen_at,
            "firstSeenAt": first_seen_at,
            "isStaff": staff,
            "role": role or None,
            "updatedAt": now,
        }))
        tx.set(VIEWER_STATS_TOTALS, "global", {
            "viewer": viewer_totals,
            "staff": staff_totals,
            "updatedAt": now,
        })

    logger.info("Session stats updated for %s (create=%s, closed=%s)", uid, is_create, is_closed_now)
    return True
