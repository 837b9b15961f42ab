import asyncio
import logging
from datetime import datetime, timezone
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from screensync import config
from screensync.db import Base, engine, ensure_sqlite_schema
from screensync.api import publish, reconcile, screen
from screensync.models import ad_asset, placement, reconcile_trace  # noqa: F401  register tables
from screensync.services.reconciler import run_sweep
from screensync.services.realtime import hub

Base.metadata.create_all(bind=engine)
ensure_sqlite_schema()

logger = logging.getLogger(__name__)
_sweep_task: asyncio.Task | None = None

if config.QUIET_ACCESS_LOG:
    # Keep warning/error lines, suppress normal access noise (200/201 etc).
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

if config.QUIET_WEBSOCKET_LOG:
    # Dashboards drop and reconnect often; the transport layer logs each one.
    logging.getLogger("websockets").setLevel(logging.CRITICAL)
    logging.getLogger("uvicorn.protocols.websockets").setLevel(logging.CRITICAL)


async def _reconciliation_sweeper() -> None:
    while True:
        await asyncio.sleep(config.SWEEP_INTERVAL_SEC)
        try:
            result = await asyncio.to_thread(run_sweep)
        except Exception:
            logger.exception("reconciliation sweep failed")
            continue
        await hub.sweep_completed(result)


app = FastAPI(title="screensync")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
def root():
    return {
        "ok": True,
        "service": "screensync",
        "time_utc": datetime.now(timezone.utc).isoformat(),
        "docs": "/docs",
    }


@app.get("/healthz")
def healthz():
    return {
        "ok": True,
        "control_plane_configured": bool(config.CONTROL_PLANE_TOKEN),
        "sweep_running": _sweep_task is not None and not _sweep_task.done(),
        "realtime_clients": hub.client_count,
        "revision": hub.revision,
    }


@app.websocket("/ws/updates")
async def ws_updates(websocket: WebSocket):
    await hub.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(websocket)
    except Exception:
        await hub.disconnect(websocket)


@app.on_event("startup")
async def startup_events() -> None:
    global _sweep_task
    if not config.SWEEP_ENABLED:
        return
    if not config.CONTROL_PLANE_TOKEN:
        logger.warning("reconciliation sweep disabled: control-plane token is not configured")
        return
    if _sweep_task is None or _sweep_task.done():
        _sweep_task = asyncio.create_task(_reconciliation_sweeper())


@app.on_event("shutdown")
async def shutdown_events() -> None:
    global _sweep_task
    if _sweep_task is not None:
        _sweep_task.cancel()
        try:
            await _sweep_task
        except asyncio.CancelledError:
            pass
        _sweep_task = None


app.include_router(screen.router)
app.include_router(publish.router)
app.include_router(reconcile.router)
