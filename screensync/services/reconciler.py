"""
Per-screen reconciliation between the ledger and the control plane.

    NO_DESIRED_STATE -> PROVISIONING -> IN_SYNC <-> DRIFTED -> REPAIRING -> IN_SYNC | REPAIR_FAILED

Only playlist mode is supported. A screen found on a layout or schedule is
drifted and gets pointed back at its playlist.
"""

import logging
import time
from enum import Enum
from typing import Callable

from sqlalchemy.orm import Session

from screensync import config
from screensync.db import SessionLocal
from screensync.models.screen import Screen
from screensync.schemas.content import ScreenSource
from screensync.schemas.screen import EnsurePlaylistResult, ReconcileResult, ScreenContentSummary
from screensync.schemas.trace import Failure, FailureCode, SweepResult, make_failure
from screensync.services import ledger, playlist_mutator
from screensync.services.content_resolver import ContentResolver, screen_source
from screensync.services.control_plane import (
    ControlPlaneClient,
    ControlPlaneClientError,
    ControlPlaneError,
    ControlPlaneNotConfigured,
    get_control_plane,
)
from screensync.services.playlist_items import PLAYLIST
from screensync.services.traces import TraceRecorder, new_correlation_id, save_trace

logger = logging.getLogger(__name__)


class ReconcileState(str, Enum):
    NO_DESIRED_STATE = "NO_DESIRED_STATE"
    PROVISIONING = "PROVISIONING"
    IN_SYNC = "IN_SYNC"
    DRIFTED = "DRIFTED"
    REPAIRING = "REPAIRING"
    REPAIR_FAILED = "REPAIR_FAILED"


EMPTY_PLAYLIST = "EMPTY_PLAYLIST"
CONTENT_UNRESOLVED = "CONTENT_UNRESOLVED"
FILLER_SEEDED = "FILLER_SEEDED"
FILLER_SEED_FAILED = "FILLER_SEED_FAILED"
NO_FILLER_CONFIGURED = "NO_FILLER_CONFIGURED"
PUSH_FAILED = "PUSH_FAILED"


def canonical_playlist_name(device_id: int) -> str:
    return f"{config.PLAYLIST_NAME_PREFIX} {device_id}".strip()


def control_plane_failure(exc: ControlPlaneError, what: str) -> Failure:
    if isinstance(exc, ControlPlaneNotConfigured):
        return make_failure(FailureCode.NOT_CONFIGURED, str(exc), recommendation="Configure the control-plane token")
    if isinstance(exc, ControlPlaneClientError):
        if exc.not_found:
            return make_failure(FailureCode.SCREEN_NOT_FOUND, f"{what}: not found on the control plane")
        return make_failure(FailureCode.CONTROL_PLANE_REJECTED, f"{what}: {exc}")
    return make_failure(FailureCode.TRANSPORT_ERROR, f"{what}: {exc}", recommendation="Retry once the control plane recovers")


def is_playlist_source(source: ScreenSource, playlist_id: int | None) -> bool:
    return source.source_type == PLAYLIST and playlist_id is not None and source.source_id == playlist_id


def _live_screen(client: ControlPlaneClient, device_id: int) -> tuple[dict | None, Failure | None]:
    try:
        return client.get_screen(device_id), None
    except ControlPlaneError as exc:
        return None, control_plane_failure(exc, f"read screen {device_id}")


def _item_count(client: ControlPlaneClient, playlist_id: int) -> int:
    try:
        return len(client.get_playlist(playlist_id).get("items") or [])
    except ControlPlaneError as exc:
        logger.warning("could not count items of playlist %s: %s", playlist_id, exc)
        return 0


def _lookup_screen(db: Session, screen_id: str) -> tuple[Screen | None, Failure | None]:
    screen = ledger.get_screen(db, screen_id)
    if screen is None:
        return None, make_failure(FailureCode.SCREEN_NOT_FOUND, f"screen {screen_id} does not exist")
    if screen.device_id is None:
        return screen, make_failure(
            FailureCode.SCREEN_NOT_LINKED,
            f"screen {screen_id} is not linked to a control-plane device",
            recommendation="Link the screen to its device before publishing",
        )
    return screen, None


def ensure_screen_playlist(db: Session, client: ControlPlaneClient, screen_id: str) -> EnsurePlaylistResult:
    """
    Guarantee the screen has exactly one authoritative playlist.

    Order of preference: the ledger value if it still exists, the playlist
    the screen is already playing, a playlist carrying the canonical name,
    and only then a fresh clone of the template. Calling it again returns
    the same playlist with `created=False`.
    """
    screen, failure = _lookup_screen(db, screen_id)
    if failure:
        return EnsurePlaylistResult(ok=False, screen_id=screen_id, failure=failure)

    name = canonical_playlist_name(screen.device_id)
    expected = ledger.get_expected(db, screen_id)
    if expected:
        try:
            playlist = client.get_playlist(expected)
        except ControlPlaneClientError as exc:
            if not exc.not_found:
                return EnsurePlaylistResult(
                    ok=False, screen_id=screen_id, playlist_id=expected,
                    failure=control_plane_failure(exc, f"read playlist {expected}"),
                )
            logger.warning("screen %s ledger playlist %s no longer exists", screen_id, expected)
        except ControlPlaneError as exc:
            return EnsurePlaylistResult(
                ok=False, screen_id=screen_id, playlist_id=expected,
                failure=control_plane_failure(exc, f"read playlist {expected}"),
            )
        else:
            return EnsurePlaylistResult(
                ok=True,
                screen_id=screen_id,
                playlist_id=expected,
                playlist_name=playlist.get("name"),
                item_count=len(playlist.get("items") or []),
            )

    live, failure = _live_screen(client, screen.device_id)
    if failure:
        return EnsurePlaylistResult(ok=False, screen_id=screen_id, failure=failure)
    actual = screen_source(live)
    if actual.source_type == PLAYLIST and actual.source_id:
        ledger.set_expected(db, screen, actual.source_id, "adopted live assignment")
        return EnsurePlaylistResult(
            ok=True,
            screen_id=screen_id,
            playlist_id=actual.source_id,
            playlist_name=actual.source_name,
            adopted=True,
            item_count=_item_count(client, actual.source_id),
        )

    try:
        matches = [p for p in client.search_playlists(name) if (p.get("name") or "").strip() == name]
    except ControlPlaneError as exc:
        return EnsurePlaylistResult(
            ok=False, screen_id=screen_id, failure=control_plane_failure(exc, f"search playlist {name!r}")
        )
    if matches:
        playlist_id = min(int(p["id"]) for p in matches)
        ledger.set_expected(db, screen, playlist_id, "adopted canonical playlist")
        return EnsurePlaylistResult(
            ok=True,
            screen_id=screen_id,
            playlist_id=playlist_id,
            playlist_name=name,
            adopted=True,
            item_count=_item_count(client, playlist_id),
        )

    workspace = (live or {}).get("workspace") or {}
    workspace_id = workspace.get("id") if isinstance(workspace, dict) else None
    if config.TEMPLATE_PLAYLIST_ID:
        clone = playlist_mutator.clone_playlist(client, config.TEMPLATE_PLAYLIST_ID, name, workspace_id=workspace_id)
        if clone.playlist_id:
            # Record even a partial clone so the next cycle finds it instead of cloning again.
            ledger.set_expected(db, screen, clone.playlist_id, "provisioned from template")
        if not clone.ok:
            return EnsurePlaylistResult(
                ok=False,
                screen_id=screen_id,
                playlist_id=clone.playlist_id,
                playlist_name=name,
                created=clone.playlist_id is not None,
                failure=make_failure(
                    FailureCode.PROVISIONING_FAILED,
                    clone.failure.message if clone.failure else "template clone failed",
                ),
            )
        return EnsurePlaylistResult(
            ok=True,
            screen_id=screen_id,
            playlist_id=clone.playlist_id,
            playlist_name=name,
            created=True,
            item_count=clone.item_count,
        )

    try:
        created = client.create_playlist(name, workspace_id=workspace_id)
    except ControlPlaneError as exc:
        return EnsurePlaylistResult(
            ok=False,
            screen_id=screen_id,
            failure=make_failure(FailureCode.PROVISIONING_FAILED, f"create playlist {name!r}: {exc}"),
        )
    if not created.get("id"):
        return EnsurePlaylistResult(
            ok=False,
            screen_id=screen_id,
            failure=make_failure(FailureCode.PROVISIONING_FAILED, f"control plane returned no id for {name!r}"),
        )
    playlist_id = int(created["id"])
    ledger.set_expected(db, screen, playlist_id, "provisioned empty playlist")
    return EnsurePlaylistResult(ok=True, screen_id=screen_id, playlist_id=playlist_id, playlist_name=name, created=True)


def _repair(
    db: Session,
    client: ControlPlaneClient,
    screen: Screen,
    expected: int,
    result: ReconcileResult,
    recorder: TraceRecorder,
) -> None:
    started = time.monotonic()
    result.state = ReconcileState.REPAIRING.value
    ledger.record_state(db, screen, result.state)
    try:
        client.set_screen_source(screen.device_id, PLAYLIST, expected)
        reread = screen_source(client.get_screen(screen.device_id))
    except ControlPlaneError as exc:
        result.state = ReconcileState.REPAIR_FAILED.value
        result.failure = control_plane_failure(exc, f"repair screen {screen.device_id}")
        recorder.record("REPAIR", started, failure=result.failure, screen_id=screen.id)
        return

    details = {"expected_playlist_id": expected, "after": reread.model_dump()}
    if not is_playlist_source(reread, expected):
        result.state = ReconcileState.REPAIR_FAILED.value
        result.actual_source = reread
        result.failure = make_failure(
            FailureCode.REPAIR_FAILED,
            f"screen {screen.device_id} still reports {reread.source_type}:{reread.source_id} "
            f"after switching to playlist {expected}",
            recommendation="Check the screen on the control plane; the next cycle retries the repair",
        )
        recorder.record("REPAIR", started, details=details, failure=result.failure, screen_id=screen.id)
        return

    result.state = ReconcileState.IN_SYNC.value
    result.in_sync = True
    result.repaired = True
    result.actual_source = reread
    ledger.record_mode(db, screen, reread.source_type)
    recorder.record("REPAIR", started, details=details, screen_id=screen.id)

    started = time.monotonic()
    try:
        client.push_screen(screen.device_id)
        ledger.record_push(db, screen, "ok: repaired source")
        recorder.record("PUSH", started, screen_id=screen.id)
    except ControlPlaneError as exc:
        ledger.record_push(db, screen, f"failed: {exc}")
        result.warnings.append(PUSH_FAILED)
        recorder.record("PUSH", started, status="warning", details={"error": str(exc)}, screen_id=screen.id)


def _check_content(
    client: ControlPlaneClient,
    screen: Screen,
    expected: int,
    seed_empty: bool,
    result: ReconcileResult,
    recorder: TraceRecorder,
) -> None:
    started = time.monotonic()
    resolver = ContentResolver(client)
    content = resolver.resolve_playlist(expected)
    result.media_count = len(content.unique_media_ids)
    details = {
        "media_count": result.media_count,
        "widget_count": content.widget_count,
        "total_items": content.total_items,
    }
    if result.media_count:
        result.healthy = True
        recorder.record("CONTENT_CHECK", started, details=details, screen_id=screen.id)
        return

    if resolver.errors:
        result.warnings.append(CONTENT_UNRESOLVED)
        details["errors"] = resolver.errors
        recorder.record("CONTENT_CHECK", started, status="warning", details=details, screen_id=screen.id)
        return

    # Assigned correctly but nothing to play: in sync, not healthy.
    result.warnings.append(EMPTY_PLAYLIST)
    recorder.record("CONTENT_CHECK", started, status="warning", details=details, screen_id=screen.id)
    if not seed_empty:
        return
    if not config.FILLER_MEDIA_ID:
        result.warnings.append(NO_FILLER_CONFIGURED)
        return

    started = time.monotonic()
    seeded = playlist_mutator.append_media(client, expected, config.FILLER_MEDIA_ID, config.FILLER_DURATION_SEC)
    if seeded.ok:
        result.warnings.append(FILLER_SEEDED)
        recorder.record("SEED_FILLER", started, details=seeded.model_dump(exclude={"failure"}), screen_id=screen.id)
    else:
        result.warnings.append(FILLER_SEED_FAILED)
        recorder.record("SEED_FILLER", started, status="warning", failure=seeded.failure, screen_id=screen.id)


def _run_cycle(
    db: Session,
    client: ControlPlaneClient,
    screen_id: str,
    seed_empty: bool,
    result: ReconcileResult,
    recorder: TraceRecorder,
) -> None:
    started = time.monotonic()
    screen, failure = _lookup_screen(db, screen_id)
    if failure:
        result.failure = failure
        recorder.record("LOAD_SCREEN", started, failure=failure, screen_id=screen_id)
        return
    recorder.record("LOAD_SCREEN", started, details={"device_id": screen.device_id}, screen_id=screen_id)

    started = time.monotonic()
    live, failure = _live_screen(client, screen.device_id)
    if failure:
        result.state = screen.last_reconcile_state or ReconcileState.NO_DESIRED_STATE.value
        result.failure = failure
        recorder.record("READ_ACTUAL", started, failure=failure, screen_id=screen_id)
        return
    actual = screen_source(live)
    result.actual_source = actual
    ledger.record_mode(db, screen, actual.source_type)
    recorder.record("READ_ACTUAL", started, details=actual.model_dump(), screen_id=screen_id)

    started = time.monotonic()
    expected = ledger.get_expected(db, screen_id)
    if not expected and actual.source_type == PLAYLIST and actual.source_id:
        expected = actual.source_id
        result.adopted = True
        ledger.set_expected(db, screen, expected, "adopted live assignment")
        logger.info("screen %s had no desired state, adopted live playlist %s", screen_id, expected)
        recorder.record("ADOPT", started, details={"playlist_id": expected}, screen_id=screen_id)
    elif not expected:
        result.state = ReconcileState.PROVISIONING.value
        ledger.record_state(db, screen, result.state)
        ensured = ensure_screen_playlist(db, client, screen_id)
        if not ensured.ok:
            result.state = ReconcileState.NO_DESIRED_STATE.value
            result.failure = make_failure(
                FailureCode.PROVISIONING_FAILED,
                ensured.failure.message if ensured.failure else "provisioning failed",
            )
            ledger.record_state(db, screen, result.state)
            recorder.record("PROVISION", started, failure=result.failure, screen_id=screen_id)
            return
        expected = ensured.playlist_id
        result.adopted = ensured.adopted
        recorder.record("PROVISION", started, details=ensured.model_dump(exclude={"failure"}), screen_id=screen_id)
    result.expected_playlist_id = expected

    started = time.monotonic()
    result.in_sync = is_playlist_source(actual, expected)
    result.drifted = not result.in_sync
    if result.in_sync:
        result.state = ReconcileState.IN_SYNC.value
        recorder.record("COMPARE", started, details={"in_sync": True, "expected_playlist_id": expected}, screen_id=screen_id)
    else:
        result.state = ReconcileState.DRIFTED.value
        reason = "mode" if actual.source_type != PLAYLIST else "playlist_id"
        logger.info(
            "screen %s drifted (%s): expected playlist %s, actual %s:%s",
            screen_id, reason, expected, actual.source_type, actual.source_id,
        )
        recorder.record(
            "COMPARE",
            started,
            status="warning",
            details={"in_sync": False, "reason": reason, "expected_playlist_id": expected},
            screen_id=screen_id,
        )
        _repair(db, client, screen, expected, result, recorder)

    if result.in_sync:
        _check_content(client, screen, expected, seed_empty, result, recorder)
        result.ok = True

    ledger.record_state(db, screen, result.state)


def reconcile_screen(
    db: Session,
    client: ControlPlaneClient,
    screen_id: str,
    seed_empty: bool = True,
    persist: bool = True,
    correlation_id: str | None = None,
) -> ReconcileResult:
    """Run one reconciliation cycle for one screen. Never raises for control-plane trouble."""
    correlation_id = correlation_id or new_correlation_id("rec")
    recorder = TraceRecorder(correlation_id)
    result = ReconcileResult(
        ok=False,
        screen_id=screen_id,
        correlation_id=correlation_id,
        state=ReconcileState.NO_DESIRED_STATE.value,
    )
    _run_cycle(db, client, screen_id, seed_empty, result, recorder)
    result.steps = recorder.steps
    if persist:
        save_trace(
            db,
            correlation_id,
            "reconcile",
            screen_id,
            result.state,
            result.model_dump(mode="json"),
            recorder.logs,
        )
    return result


def describe_screen(db: Session, client: ControlPlaneClient, screen_id: str) -> ScreenContentSummary:
    """Read-only view of what a screen should play and what it plays."""
    screen, failure = _lookup_screen(db, screen_id)
    summary = ScreenContentSummary(
        screen_id=screen_id,
        device_id=screen.device_id if screen else None,
        expected_playlist_id=screen.playlist_id if screen else None,
    )
    if failure:
        summary.failure = failure
        return summary

    live, failure = _live_screen(client, screen.device_id)
    if failure:
        summary.failure = failure
        return summary
    actual = screen_source(live)
    summary.actual_source = actual
    summary.in_sync = is_playlist_source(actual, screen.playlist_id)

    content = ContentResolver(client).resolve(actual.source_type, actual.source_id)
    summary.media_ids = content.unique_media_ids
    summary.widget_count = content.widget_count
    summary.total_items = content.total_items
    return summary


def run_sweep(
    session_factory: Callable[[], Session] = SessionLocal,
    client: ControlPlaneClient | None = None,
) -> SweepResult:
    """One reconciliation cycle for every active, device-linked screen."""
    client = client or get_control_plane()
    result = SweepResult()
    db = session_factory()
    try:
        screens = [(screen.id, screen.name) for screen in ledger.active_linked_screens(db)]
        for screen_id, name in screens:
            result.processed += 1
            try:
                outcome = reconcile_screen(db, client, screen_id)
            except Exception as exc:
                db.rollback()
                logger.exception("sweep: screen %s crashed", screen_id)
                result.failed += 1
                result.errors.append(f"{name} ({screen_id}): {exc}")
                continue
            if outcome.ok:
                result.ok += 1
            else:
                result.failed += 1
                message = outcome.failure.message if outcome.failure else outcome.state
                code = outcome.failure.code.value if outcome.failure else outcome.state
                result.errors.append(f"{name} ({screen_id}): {code} {message}")
    finally:
        db.close()
    logger.info("sweep done: processed=%s ok=%s failed=%s", result.processed, result.ok, result.failed)
    return result
