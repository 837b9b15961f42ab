from typing import Callable

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
from screensync.db import SessionLocal
from screensync.schemas.content import InventoryResult
from screensync.schemas.trace import SweepResult
from screensync.services import content_resolver, reconciler, traces
from screensync.services.control_plane import ControlPlaneClient, ControlPlaneError, get_control_plane
from screensync.services.realtime import hub

router = APIRouter(tags=["reconcile"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> Callable[[], Session]:
    return SessionLocal


@router.post("/reconcile/sweep", response_model=SweepResult)
def run_sweep(
    background_tasks: BackgroundTasks,
    session_factory: Callable[[], Session] = Depends(get_session_factory),
    client: ControlPlaneClient = Depends(get_control_plane),
):
    result = reconciler.run_sweep(session_factory, client)
    background_tasks.add_task(hub.sweep_completed, result)
    return result


@router.get("/inventory", response_model=InventoryResult)
def inventory(
    workspace_id: int | None = None,
    client: ControlPlaneClient = Depends(get_control_plane),
):
    try:
        return content_resolver.build_inventory(client, workspace_id=workspace_id)
    except ControlPlaneError as exc:
        raise HTTPException(status_code=502, detail=f"Control plane unavailable: {exc}") from exc


@router.get("/traces/{correlation_id}")
def get_trace(correlation_id: str, db: Session = Depends(get_db)):
    trace = traces.load_trace(db, correlation_id)
    if trace is None:
        raise HTTPException(status_code=404, detail="Trace not found")
    return trace
