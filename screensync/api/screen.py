from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session
from screensync.db import SessionLocal
from screensync.models.screen import Screen
from screensync.schemas.screen import (
    EnsurePlaylistResult,
    ReconcileResult,
    ScreenContentSummary,
    ScreenOut,
)
from screensync.services import reconciler
from screensync.services.control_plane import ControlPlaneClient, get_control_plane
from screensync.services.realtime import hub

router = APIRouter(prefix="/screens", tags=["screens"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _require_screen(db: Session, screen_id: str) -> Screen:
    screen = db.get(Screen, screen_id)
    if not screen:
        raise HTTPException(status_code=404, detail="Screen not found")
    return screen


@router.get("", response_model=list[ScreenOut])
def list_screens(active_only: bool = False, db: Session = Depends(get_db)):
    query = db.query(Screen)
    if active_only:
        query = query.filter(Screen.is_active.is_(True))
    return query.order_by(Screen.created_at.asc()).all()


@router.get("/{screen_id}", response_model=ScreenOut)
def get_screen(screen_id: str, db: Session = Depends(get_db)):
    return _require_screen(db, screen_id)


@router.post("/{screen_id}/ensure-playlist", response_model=EnsurePlaylistResult)
def ensure_playlist(
    screen_id: str,
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane),
):
    _require_screen(db, screen_id)
    return reconciler.ensure_screen_playlist(db, client, screen_id)


@router.post("/{screen_id}/reconcile", response_model=ReconcileResult)
def reconcile(
    screen_id: str,
    background_tasks: BackgroundTasks,
    seed_empty: bool = True,
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane),
):
    _require_screen(db, screen_id)
    result = reconciler.reconcile_screen(db, client, screen_id, seed_empty=seed_empty)
    background_tasks.add_task(hub.reconcile_completed, result)
    return result


@router.get("/{screen_id}/content", response_model=ScreenContentSummary)
def screen_content(
    screen_id: str,
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane),
):
    _require_screen(db, screen_id)
    return reconciler.describe_screen(db, client, screen_id)
