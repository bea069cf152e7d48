from catalogsync.api.health import router as health_router
from catalogsync.api.jobs import router as jobs_router
from catalogsync.api.queue import router as queue_router
from catalogsync.api.rebuild import router as rebuild_router

__all__ = [
    "health_router",
    "jobs_router",
    "queue_router",
    "rebuild_router",
]
