from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from dupecache.api.routes.duplicates import router as duplicates_router
from dupecache.api.routes.health import router as health_router
from dupecache.api.routes.maintenance import router as maintenance_router
from dupecache.api.routes.scans import router as scans_router
from dupecache.api.routes.trash import router as trash_router
from dupecache.core.config import get_settings
from dupecache.core.logging import configure_logging
from dupecache.db.init_db import initialize_database
from dupecache.db.session import get_session_factory
from dupecache.worker.pipeline import ScanWorker


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    initialize_database()
    app.state.scan_worker = ScanWorker(settings, get_session_factory())
    try:
        yield
    finally:
        app.state.scan_worker.shutdown(wait=True)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.include_router(health_router, prefix="/api/v1")
    app.include_router(scans_router, prefix="/api/v1")
    app.include_router(duplicates_router, prefix="/api/v1")
    app.include_router(trash_router, prefix="/api/v1")
    app.include_router(maintenance_router, prefix="/api/v1")
    return app
