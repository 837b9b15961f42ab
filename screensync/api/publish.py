from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel
from sqlalchemy.orm import Session
from screensync.db import SessionLocal
from screensync.schemas.trace import PublishTrace
from screensync.services import publish
from screensync.services.control_plane import ControlPlaneClient, get_control_plane
from screensync.services.realtime import hub

router = APIRouter(prefix="/advertisers", tags=["publish"])


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


class PublishRequest(BaseModel):
    targets: list[str] | None = None


def _targets(body: PublishRequest | None) -> list[str] | None:
    if body is None or not body.targets:
        return None
    cleaned = [target.strip() for target in body.targets if target and target.strip()]
    return cleaned or None


# Pipeline failures are reported in the trace body, not as HTTP errors.
@router.post("/{advertiser_id}/publish", response_model=PublishTrace)
def publish_now(
    advertiser_id: str,
    background_tasks: BackgroundTasks,
    body: PublishRequest | None = None,
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane),
):
    trace = publish.publish_now(db, client, advertiser_id, _targets(body))
    background_tasks.add_task(hub.publish_completed, trace)
    return trace


@router.post("/{advertiser_id}/publish/dry-run", response_model=PublishTrace)
def publish_dry_run(
    advertiser_id: str,
    body: PublishRequest | None = None,
    db: Session = Depends(get_db),
    client: ControlPlaneClient = Depends(get_control_plane),
):
    return publish.publish_dry_run(db, client, advertiser_id, _targets(body))
