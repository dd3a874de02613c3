"""FastAPI app entry point."""

import threading
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .app_logging import setup_logging
from .cache import SnapshotCache
from .config import APP_LOG_PATH, LOG_LEVEL, REFRESH_ON_STARTUP
from .logstore import LogStore, close_store, get_store
from .models import format_ts
from .refresh import Refresher, start_refresh_thread
from .source import LaundryConnectSource, MachineSource

_started = time.monotonic()


def create_app(store: LogStore | None = None, source: MachineSource | None = None,
               refresh_on_startup: bool = REFRESH_ON_STARTUP) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup: logging, store, cache and the hourly refresh
        setup_logging(LOG_LEVEL, Path(APP_LOG_PATH) if APP_LOG_PATH else None)
        app.state.store = store or get_store()
        app.state.source = source or LaundryConnectSource()
        app.state.cache = SnapshotCache()
        app.state.refresher = Refresher(app.state.store, app.state.cache, app.state.source)
        shutdown = threading.Event()
        if refresh_on_startup:
            start_refresh_thread(app.state.refresher, shutdown)
        yield
        # Shutdown
        shutdown.set()
        close_store()

    app = FastAPI(title="Laundrylog", lifespan=lifespan)

    from .api import router as api_router

    app.include_router(api_router)

    @app.get("/health")
    async def health():
        return {
            "ok": True,
            "uptime": round(time.monotonic() - _started, 3),
            "timestamp": format_ts(datetime.now(timezone.utc)),
        }

    @app.get("/health/external")
    def health_external(request: Request):
        result = request.app.state.source.check()
        return JSONResponse(
            status_code=200 if result.ok else 503,
            content=result.model_dump(exclude_none=True),
        )

    return app


app = create_app()
