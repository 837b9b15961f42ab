from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class Outcome(str, Enum):
    SUCCESS = "SUCCESS"
    PARTIAL = "PARTIAL"
    FAILED = "FAILED"
    NO_TARGETS = "NO_TARGETS"


class NextAction(str, Enum):
    WAIT = "wait"
    UPLOAD = "upload"
    NORMALIZE = "normalize"
    RETRY = "retry"
    MANUAL_REVIEW = "manual-review"


class FailureCode(str, Enum):
    NO_ASSET_FOUND = "NO_ASSET_FOUND"
    MEDIA_NOT_READY = "MEDIA_NOT_READY"
    MISSING_REMOTE_MEDIA_ID = "MISSING_REMOTE_MEDIA_ID"
    REMOTE_MEDIA_NOT_FOUND = "REMOTE_MEDIA_NOT_FOUND"
    REMOTE_MEDIA_NOT_READY = "REMOTE_MEDIA_NOT_READY"
    REMOTE_MEDIA_EMPTY = "REMOTE_MEDIA_EMPTY"
    SCREEN_NOT_FOUND = "SCREEN_NOT_FOUND"
    SCREEN_NOT_LINKED = "SCREEN_NOT_LINKED"
    PROVISIONING_FAILED = "PROVISIONING_FAILED"
    REPAIR_FAILED = "REPAIR_FAILED"
    PLAYLIST_FETCH_FAILED = "PLAYLIST_FETCH_FAILED"
    UNKNOWN_ITEM_FORMAT = "UNKNOWN_ITEM_FORMAT"
    PLAYLIST_UPDATE_FAILED = "PLAYLIST_UPDATE_FAILED"
    PUSH_FAILED = "PUSH_FAILED"
    VERIFY_FAILED = "VERIFY_FAILED"
    TRANSPORT_ERROR = "TRANSPORT_ERROR"
    CONTROL_PLANE_REJECTED = "CONTROL_PLANE_REJECTED"
    NOT_CONFIGURED = "NOT_CONFIGURED"


DEFAULT_ACTIONS: dict[FailureCode, NextAction] = {
    FailureCode.NO_ASSET_FOUND: NextAction.UPLOAD,
    FailureCode.MEDIA_NOT_READY: NextAction.WAIT,
    FailureCode.MISSING_REMOTE_MEDIA_ID: NextAction.UPLOAD,
    FailureCode.REMOTE_MEDIA_NOT_FOUND: NextAction.UPLOAD,
    FailureCode.REMOTE_MEDIA_NOT_READY: NextAction.WAIT,
    FailureCode.REMOTE_MEDIA_EMPTY: NextAction.UPLOAD,
    FailureCode.SCREEN_NOT_FOUND: NextAction.MANUAL_REVIEW,
    FailureCode.SCREEN_NOT_LINKED: NextAction.MANUAL_REVIEW,
    FailureCode.PROVISIONING_FAILED: NextAction.RETRY,
    FailureCode.REPAIR_FAILED: NextAction.RETRY,
    FailureCode.PLAYLIST_FETCH_FAILED: NextAction.RETRY,
    FailureCode.UNKNOWN_ITEM_FORMAT: NextAction.MANUAL_REVIEW,
    FailureCode.PLAYLIST_UPDATE_FAILED: NextAction.RETRY,
    FailureCode.PUSH_FAILED: NextAction.RETRY,
    FailureCode.VERIFY_FAILED: NextAction.RETRY,
    FailureCode.TRANSPORT_ERROR: NextAction.RETRY,
    FailureCode.CONTROL_PLANE_REJECTED: NextAction.MANUAL_REVIEW,
    FailureCode.NOT_CONFIGURED: NextAction.MANUAL_REVIEW,
}


class Failure(BaseModel):
    code: FailureCode
    message: str
    next_action: NextAction
    recommendation: str | None = None


def make_failure(
    code: FailureCode,
    message: str,
    next_action: NextAction | None = None,
    recommendation: str | None = None,
) -> Failure:
    return Failure(
        code=code,
        message=message,
        next_action=next_action or DEFAULT_ACTIONS[code],
        recommendation=recommendation,
    )


class TraceStep(BaseModel):
    step: str
    status: str  # success | failed | skipped | warning
    duration_ms: int = 0
    screen_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    error_code: FailureCode | None = None
    next_action: NextAction | None = None


class ScreenPublishResult(BaseModel):
    screen_id: str
    device_id: int | None = None
    ok: bool
    playlist_id: int | None = None
    auto_healed: bool = False
    item_count: int = 0
    failure: Failure | None = None


class PublishSummary(BaseModel):
    targets_resolved: int = 0
    success_count: int = 0
    failed_count: int = 0


class PublishTrace(BaseModel):
    correlation_id: str
    timestamp: datetime
    advertiser_id: str
    dry_run: bool = False
    outcome: Outcome
    asset_id: str | None = None
    remote_media_id: int | None = None
    steps: list[TraceStep] = Field(default_factory=list)
    screens: list[ScreenPublishResult] = Field(default_factory=list)
    summary: PublishSummary = Field(default_factory=PublishSummary)
    failure: Failure | None = None
    logs: list[str] = Field(default_factory=list)


class SweepResult(BaseModel):
    processed: int = 0
    ok: int = 0
    failed: int = 0
    errors: list[str] = Field(default_factory=list)
