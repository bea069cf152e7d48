import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from importlib.metadata import version as pkg_version

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from catalogsync.api import health_router, jobs_router, queue_router, rebuild_router
from catalogsync.config import settings
from catalogsync.db.database import init_db
from catalogsync.models.failure import KnownError
from catalogsync.services.background import supervisor

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    await init_db()
    yield
    # Drains are bounded and resumable, so cancelling them loses no state
    await supervisor.shutdown()


app = FastAPI(
    title=settings.app_name,
    version=pkg_version("catalogsync"),
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(jobs_router)
app.include_router(queue_router)
app.include_router(rebuild_router)


@app.exception_handler(KnownError)
async def known_error_handler(_request: Request, exc: KnownError) -> JSONResponse:
    """Known failures that escape a route become their declared status code."""
    logger.warning("Request failed: %s (%s)", exc.message, exc.kind.value)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.to_dict()})
