from catalogsync.db.catalog import (
    SwapCounts,
    atomic_swap,
    clear_shadow,
    count_rows,
    get_live_set,
    get_live_sets,
    set_sync_status,
    upsert_live,
    write_shadow,
)
from catalogsync.db.database import get_session, get_session_factory, init_db
from catalogsync.db.queue import (
    ClaimedEntry,
    claim_batch,
    enqueue,
    mark_done,
    mark_error,
    queue_stats,
    queued_count,
    requeue_stale,
)

__all__ = [
    "ClaimedEntry",
    "SwapCounts",
    "atomic_swap",
    "claim_batch",
    "clear_shadow",
    "count_rows",
    "enqueue",
    "get_live_set",
    "get_live_sets",
    "get_session",
    "get_session_factory",
    "init_db",
    "mark_done",
    "mark_error",
    "queue_stats",
    "queued_count",
    "requeue_stale",
    "set_sync_status",
    "upsert_live",
    "write_shadow",
]
