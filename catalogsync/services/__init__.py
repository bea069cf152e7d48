"""
catalogsync services.

Rebuild pipeline, incremental set sync, queue draining and job tracking.
"""

from catalogsync.services.guardrails import (
    GuardrailSummary,
    ValidationResult,
    fix_bad_writes,
    validate_no_null_provider_ids,
)
from catalogsync.services.queue_worker import DrainResult, QueueDrainWorker
from catalogsync.services.rebuild import CatalogRebuilder
from catalogsync.services.set_sync import SetSyncResult, sync_set
from catalogsync.services.sync_jobs import DuplicateCheck, SyncJobTracker

__all__ = [
    "CatalogRebuilder",
    "DrainResult",
    "DuplicateCheck",
    "GuardrailSummary",
    "QueueDrainWorker",
    "SetSyncResult",
    "SyncJobTracker",
    "ValidationResult",
    "fix_bad_writes",
    "sync_set",
    "validate_no_null_provider_ids",
]
