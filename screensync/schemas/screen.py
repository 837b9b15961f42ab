from datetime import datetime

from pydantic import BaseModel, Field

from screensync.schemas.content import ScreenSource
from screensync.schemas.trace import Failure, TraceStep


class ScreenOut(BaseModel):
    id: str
    name: str
    device_id: int | None = None
    playlist_id: int | None = None
    mode: str | None = None
    is_active: bool
    last_push_at: datetime | None = None
    last_push_result: str | None = None
    last_verify_at: datetime | None = None
    last_verify_result: str | None = None
    last_reconcile_state: str | None = None

    class Config:
        from_attributes = True


class EnsurePlaylistResult(BaseModel):
    ok: bool
    screen_id: str
    playlist_id: int | None = None
    playlist_name: str | None = None
    created: bool = False
    adopted: bool = False
    item_count: int = 0
    failure: Failure | None = None


class ReconcileResult(BaseModel):
    ok: bool
    screen_id: str
    correlation_id: str
    state: str
    in_sync: bool = False
    drifted: bool = False
    repaired: bool = False
    adopted: bool = False
    healthy: bool = False
    expected_playlist_id: int | None = None
    actual_source: ScreenSource | None = None
    media_count: int = 0
    warnings: list[str] = Field(default_factory=list)
    failure: Failure | None = None
    steps: list[TraceStep] = Field(default_factory=list)


class ScreenContentSummary(BaseModel):
    screen_id: str
    device_id: int | None = None
    expected_playlist_id: int | None = None
    actual_source: ScreenSource | None = None
    in_sync: bool = False
    media_ids: list[int] = Field(default_factory=list)
    widget_count: int = 0
    total_items: int = 0
    failure: Failure | None = None
