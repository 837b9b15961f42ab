"""
Publish pipeline: take an approved asset from "ready" to "visibly playing".

    RESOLVE_ASSET -> CHECK_REMOTE_MEDIA -> RESOLVE_TARGETS -> per screen:
        RECONCILE -> UPDATE_PLAYLIST -> PUSH -> VERIFY (-> PUSH_RETRY -> VERIFY_RETRY)

Every stage ends in a trace step. Failures become typed results; one
screen failing never stops the others.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

from screensync import config
from screensync.models.ad_asset import AdAsset
from screensync.models.placement import Contract, Placement
from screensync.models.screen import Screen
from screensync.schemas.trace import (
    Failure,
    FailureCode,
    NextAction,
    Outcome,
    PublishSummary,
    PublishTrace,
    ScreenPublishResult,
    make_failure,
)
from screensync.services import ledger, playlist_items, playlist_mutator
from screensync.services.content_resolver import screen_source
from screensync.services.control_plane import ControlPlaneClient, ControlPlaneError
from screensync.services.reconciler import (
    control_plane_failure,
    is_playlist_source,
    reconcile_screen,
)
from screensync.services.traces import TraceRecorder, new_correlation_id, save_trace

logger = logging.getLogger(__name__)

READY_FOR_REMOTE = "READY_FOR_REMOTE"
READY_MEDIA_STATUSES = frozenset(
    {"live", "ready", "available", "active", "finished", "done", "encoded", "ok", "completed"}
)

_NEXT_ACTION_BY_ASSET_STATUS = {
    "PENDING": NextAction.UPLOAD,
    "VALIDATING": NextAction.WAIT,
    "NEEDS_NORMALIZATION": NextAction.NORMALIZE,
    "NORMALIZING": NextAction.WAIT,
    "FAILED": NextAction.RETRY,
}


def resolve_playable_asset(db: Session, advertiser_id: str) -> tuple[AdAsset | None, Failure | None]:
    assets = (
        db.query(AdAsset)
        .filter(AdAsset.advertiser_id == advertiser_id, AdAsset.is_superseded.is_(False))
        .all()
    )
    if not assets:
        return None, make_failure(
            FailureCode.NO_ASSET_FOUND,
            f"advertiser {advertiser_id} has no current asset",
            recommendation="Upload a video for this advertiser",
        )

    ready = [asset for asset in assets if asset.readiness_status == READY_FOR_REMOTE]
    if ready:
        best = max(ready, key=lambda a: (a.size_bytes or 0, a.created_at or datetime.min))
        if not best.remote_media_id:
            return best, make_failure(
                FailureCode.MISSING_REMOTE_MEDIA_ID,
                f"asset {best.id} is {READY_FOR_REMOTE} but has no remote media id",
                recommendation="Upload the asset to the control plane",
            )
        return best, None

    latest = max(assets, key=lambda a: a.created_at or datetime.min)
    status = latest.readiness_status or "PENDING"
    return latest, make_failure(
        FailureCode.MEDIA_NOT_READY,
        f"asset {latest.id} status is {status}, must be {READY_FOR_REMOTE}",
        next_action=_NEXT_ACTION_BY_ASSET_STATUS.get(status, NextAction.WAIT),
    )


def check_remote_media(client: ControlPlaneClient, media_id: int) -> tuple[dict, Failure | None]:
    try:
        media = client.get_media(media_id)
    except ControlPlaneError as exc:
        if exc.not_found:
            return {}, make_failure(
                FailureCode.REMOTE_MEDIA_NOT_FOUND,
                f"media {media_id} not found on the control plane",
                recommendation="Re-upload the media",
            )
        return {}, control_plane_failure(exc, f"read media {media_id}")

    status = str(media.get("status") or media.get("state") or "unknown")
    file_size = media.get("file_size") or media.get("filesize") or 0
    details = {"media_id": media_id, "status": status, "file_size": file_size}
    if status.strip().lower() not in READY_MEDIA_STATUSES:
        return details, make_failure(
            FailureCode.REMOTE_MEDIA_NOT_READY,
            f"media {media_id} status is {status!r}",
            recommendation=f'Media status is "{status}", wait for processing to complete',
        )
    if not file_size:
        return details, make_failure(
            FailureCode.REMOTE_MEDIA_EMPTY,
            f"media {media_id} has no file",
            recommendation="Media has file size 0, re-upload it",
        )
    return details, None


def resolve_target_screens(
    db: Session, advertiser_id: str, targets: list[str] | None = None
) -> tuple[list[str], list[str]]:
    """
    Target screen ids plus the placed screens skipped for having no linked device.

    Explicit targets are taken as given; an unlinked one fails in its own step group.
    """
    if targets:
        return list(dict.fromkeys(targets)), []
    rows = (
        db.query(Placement.screen_id, Screen.device_id)
        .join(Contract, Placement.contract_id == Contract.id)
        .join(Screen, Placement.screen_id == Screen.id)
        .filter(
            Contract.advertiser_id == advertiser_id,
            Placement.is_active.is_(True),
            Screen.is_active.is_(True),
        )
        .order_by(Screen.created_at.asc(), Screen.id.asc())
        .all()
    )
    linked = [screen_id for screen_id, device_id in rows if device_id is not None]
    unlinked = [screen_id for screen_id, device_id in rows if device_id is None]
    return list(dict.fromkeys(linked)), list(dict.fromkeys(unlinked))


def _verify(client: ControlPlaneClient, device_id: int, playlist_id: int, media_id: int) -> tuple[bool, dict]:
    """Re-read what the screen plays and check the ad is in it."""
    snapshot: dict = {"playlist_id": playlist_id, "media_id": media_id}
    try:
        source = screen_source(client.get_screen(device_id))
        snapshot["source"] = source.model_dump()
        if not is_playlist_source(source, playlist_id):
            snapshot["error"] = f"screen plays {source.source_type}:{source.source_id}"
            return False, snapshot
        entries = playlist_mutator.read_entries(client, playlist_id)
    except ControlPlaneError as exc:
        snapshot["error"] = str(exc)
        return False, snapshot

    snapshot["item_count"] = len(entries)
    snapshot["contains_media"] = playlist_items.contains_media(entries, media_id)
    if not entries:
        snapshot["error"] = "playlist reads back empty"
        return False, snapshot
    if not snapshot["contains_media"]:
        snapshot["error"] = f"media {media_id} not in playlist"
        return False, snapshot
    return True, snapshot


def _push(client: ControlPlaneClient, device_id: int) -> str | None:
    try:
        client.push_screen(device_id)
    except ControlPlaneError as exc:
        return str(exc)
    return None


def _publish_to_screen(
    db: Session,
    client: ControlPlaneClient,
    screen_id: str,
    media_id: int,
    recorder: TraceRecorder,
    sleep: Callable[[float], None],
) -> ScreenPublishResult:
    started = time.monotonic()
    reconciled = reconcile_screen(
        db, client, screen_id, seed_empty=False, persist=False, correlation_id=recorder.correlation_id
    )
    recorder.extend(reconciled.steps)
    result = ScreenPublishResult(
        screen_id=screen_id,
        ok=False,
        playlist_id=reconciled.expected_playlist_id,
        auto_healed=reconciled.repaired,
    )
    if not reconciled.ok:
        result.failure = reconciled.failure or make_failure(
            FailureCode.REPAIR_FAILED, f"screen {screen_id} ended reconciliation in {reconciled.state}"
        )
        recorder.record(
            "RECONCILE", started, details={"state": reconciled.state}, failure=result.failure, screen_id=screen_id
        )
        return result
    recorder.record(
        "RECONCILE",
        started,
        details={"state": reconciled.state, "repaired": reconciled.repaired, "adopted": reconciled.adopted},
        screen_id=screen_id,
    )

    screen = ledger.get_screen(db, screen_id)
    result.device_id = screen.device_id
    playlist_id = reconciled.expected_playlist_id

    started = time.monotonic()
    mutation = playlist_mutator.append_media(client, playlist_id, media_id, config.DEFAULT_ITEM_DURATION_SEC)
    recorder.record(
        "UPDATE_PLAYLIST",
        started,
        details=mutation.model_dump(exclude={"failure"}),
        failure=mutation.failure,
        screen_id=screen_id,
    )
    if not mutation.ok:
        result.failure = mutation.failure
        return result

    for attempt in ("", "_RETRY"):
        started = time.monotonic()
        push_error = _push(client, screen.device_id)
        ledger.record_push(db, screen, f"failed: {push_error}" if push_error else "ok")
        if push_error:
            failure = make_failure(FailureCode.PUSH_FAILED, f"push to screen {screen.device_id}: {push_error}")
            recorder.record(f"PUSH{attempt}", started, failure=failure, screen_id=screen_id)
            result.failure = failure
            continue
        recorder.record(f"PUSH{attempt}", started, screen_id=screen_id)

        sleep(config.PUSH_SETTLE_SEC)
        started = time.monotonic()
        verified, snapshot = _verify(client, screen.device_id, playlist_id, media_id)
        ledger.record_verify(db, screen, "ok" if verified else f"failed: {snapshot.get('error')}")
        if verified:
            result.ok = True
            result.item_count = snapshot["item_count"]
            result.failure = None
            recorder.record(f"VERIFY{attempt}", started, details=snapshot, screen_id=screen_id)
            return result
        result.failure = make_failure(
            FailureCode.VERIFY_FAILED,
            f"screen {screen.device_id}: {snapshot.get('error')}",
            recommendation="Check the screen on the control plane; the next publish retries",
        )
        recorder.record(
            f"VERIFY{attempt}",
            started,
            status="warning" if not attempt else "failed",
            details=snapshot,
            failure=result.failure,
            screen_id=screen_id,
        )
    return result


def _aggregate(screens: list[ScreenPublishResult]) -> Outcome:
    succeeded = sum(1 for screen in screens if screen.ok)
    if not screens:
        return Outcome.NO_TARGETS
    if succeeded == len(screens):
        return Outcome.SUCCESS
    if succeeded:
        return Outcome.PARTIAL
    return Outcome.FAILED


def _gate(
    db: Session,
    client: ControlPlaneClient,
    advertiser_id: str,
    targets: list[str] | None,
    trace: PublishTrace,
    recorder: TraceRecorder,
) -> list[str] | None:
    """Stages shared by publish and dry-run. Returns target screen ids, or None when the run ends here."""
    started = time.monotonic()
    asset, failure = resolve_playable_asset(db, advertiser_id)
    if asset is not None:
        trace.asset_id = asset.id
        trace.remote_media_id = asset.remote_media_id
    details = {
        "asset_id": asset.id if asset else None,
        "status": asset.readiness_status if asset else None,
        "size_bytes": asset.size_bytes if asset else None,
    }
    recorder.record("RESOLVE_ASSET", started, details=details, failure=failure)
    if failure:
        trace.failure = failure
        trace.outcome = Outcome.FAILED
        return None

    started = time.monotonic()
    media_details, failure = check_remote_media(client, asset.remote_media_id)
    recorder.record("CHECK_REMOTE_MEDIA", started, details=media_details, failure=failure)
    if failure:
        trace.failure = failure
        trace.outcome = Outcome.FAILED
        return None

    started = time.monotonic()
    screen_ids, unlinked = resolve_target_screens(db, advertiser_id, targets)
    trace.summary.targets_resolved = len(screen_ids)
    recorder.record(
        "RESOLVE_TARGETS",
        started,
        status="success" if screen_ids else "skipped",
        details={
            "count": len(screen_ids),
            "screens": screen_ids,
            "explicit": bool(targets),
            "skipped_unlinked": unlinked,
        },
    )
    if unlinked:
        recorder.log("RESOLVE_TARGETS", f"skipped {len(unlinked)} placed screens without a linked device")
    if not screen_ids:
        recorder.log("RESOLVE_TARGETS", "no target screens")
        trace.outcome = Outcome.NO_TARGETS
        return None
    return screen_ids


def _finish(trace: PublishTrace, recorder: TraceRecorder) -> PublishTrace:
    trace.steps = recorder.steps
    trace.logs = recorder.logs
    return trace


def publish_now(
    db: Session,
    client: ControlPlaneClient,
    advertiser_id: str,
    targets: list[str] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PublishTrace:
    correlation_id = new_correlation_id("pub")
    recorder = TraceRecorder(correlation_id)
    trace = PublishTrace(
        correlation_id=correlation_id,
        timestamp=datetime.now(timezone.utc),
        advertiser_id=advertiser_id,
        outcome=Outcome.FAILED,
    )
    recorder.log("START", f"publishing for advertiser {advertiser_id}")

    screen_ids = _gate(db, client, advertiser_id, targets, trace, recorder)
    if screen_ids is not None:
        for screen_id in screen_ids:
            recorder.log("SCREEN", f"processing screen {screen_id}")
            try:
                outcome = _publish_to_screen(db, client, screen_id, trace.remote_media_id, recorder, sleep)
            except Exception as exc:
                db.rollback()
                logger.exception("publish %s: screen %s crashed", correlation_id, screen_id)
                outcome = ScreenPublishResult(
                    screen_id=screen_id,
                    ok=False,
                    failure=make_failure(FailureCode.TRANSPORT_ERROR, f"unexpected error: {exc}", NextAction.MANUAL_REVIEW),
                )
            trace.screens.append(outcome)
            recorder.log("SCREEN_DONE", f"{'SUCCESS' if outcome.ok else 'FAILED'} for {screen_id}")

        trace.summary = PublishSummary(
            targets_resolved=len(screen_ids),
            success_count=sum(1 for s in trace.screens if s.ok),
            failed_count=sum(1 for s in trace.screens if not s.ok),
        )
        trace.outcome = _aggregate(trace.screens)
        if trace.outcome == Outcome.FAILED:
            trace.failure = next((s.failure for s in trace.screens if s.failure), None)

    recorder.log("COMPLETE", f"outcome={trace.outcome.value}")
    _finish(trace, recorder)
    save_trace(
        db,
        correlation_id,
        "publish",
        advertiser_id,
        trace.outcome.value,
        trace.model_dump(mode="json"),
        trace.logs,
    )
    return trace


def _mapping_health(
    db: Session,
    client: ControlPlaneClient,
    screen_id: str,
    media_id: int,
) -> tuple[ScreenPublishResult, dict]:
    screen = ledger.get_screen(db, screen_id)
    result = ScreenPublishResult(screen_id=screen_id, ok=False)
    if screen is None:
        result.failure = make_failure(FailureCode.SCREEN_NOT_FOUND, f"screen {screen_id} does not exist")
        return result, {}
    result.device_id = screen.device_id
    result.playlist_id = screen.playlist_id
    if screen.device_id is None:
        result.failure = make_failure(FailureCode.SCREEN_NOT_LINKED, f"screen {screen_id} is not linked")
        return result, {}

    details: dict = {"expected_playlist_id": screen.playlist_id}
    try:
        actual = screen_source(client.get_screen(screen.device_id))
    except ControlPlaneError as exc:
        result.failure = control_plane_failure(exc, f"read screen {screen.device_id}")
        return result, details
    details["actual"] = actual.model_dump()
    details["in_sync"] = is_playlist_source(actual, screen.playlist_id)
    details["needs_repair"] = not details["in_sync"]

    playlist_id = screen.playlist_id or (actual.source_id if actual.source_type == playlist_items.PLAYLIST else None)
    details["needs_provisioning"] = playlist_id is None
    if playlist_id:
        try:
            entries = playlist_mutator.read_entries(client, playlist_id)
        except ControlPlaneError as exc:
            result.failure = control_plane_failure(exc, f"read playlist {playlist_id}")
            return result, details
        result.item_count = len(entries)
        details["item_count"] = len(entries)
        details["already_contains_media"] = playlist_items.contains_media(entries, media_id)
    result.ok = True
    return result, details


def publish_dry_run(
    db: Session,
    client: ControlPlaneClient,
    advertiser_id: str,
    targets: list[str] | None = None,
) -> PublishTrace:
    """Predict a publish without writing anything to the control plane or the ledger."""
    correlation_id = new_correlation_id("dry")
    recorder = TraceRecorder(correlation_id)
    trace = PublishTrace(
        correlation_id=correlation_id,
        timestamp=datetime.now(timezone.utc),
        advertiser_id=advertiser_id,
        dry_run=True,
        outcome=Outcome.FAILED,
    )

    screen_ids = _gate(db, client, advertiser_id, targets, trace, recorder)
    if screen_ids is not None:
        for screen_id in screen_ids:
            started = time.monotonic()
            predicted, details = _mapping_health(db, client, screen_id, trace.remote_media_id)
            recorder.record("MAPPING_HEALTH", started, details=details, failure=predicted.failure, screen_id=screen_id)
            trace.screens.append(predicted)
        trace.summary = PublishSummary(
            targets_resolved=len(screen_ids),
            success_count=sum(1 for s in trace.screens if s.ok),
            failed_count=sum(1 for s in trace.screens if not s.ok),
        )
        trace.outcome = _aggregate(trace.screens)

    return _finish(trace, recorder)
