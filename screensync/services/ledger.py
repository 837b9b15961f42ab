"""Desired-state ledger: which playlist each screen must show."""

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from screensync.models.screen import Screen

logger = logging.getLogger(__name__)

KNOWN_MODES = {"playlist", "layout", "schedule"}


def get_screen(db: Session, screen_id: str) -> Screen | None:
    return db.get(Screen, screen_id)


def get_expected(db: Session, screen_id: str) -> int | None:
    screen = get_screen(db, screen_id)
    if screen is None:
        return None
    return screen.playlist_id or None


def set_expected(db: Session, screen: Screen, playlist_id: int, reason: str) -> None:
    previous = screen.playlist_id
    screen.playlist_id = playlist_id
    db.commit()
    if previous != playlist_id:
        logger.info("screen %s expected playlist %s -> %s (%s)", screen.id, previous, playlist_id, reason)


def record_mode(db: Session, screen: Screen, source_type: str | None) -> None:
    screen.mode = source_type if source_type in KNOWN_MODES else "unknown"
    db.commit()


def record_state(db: Session, screen: Screen, state: str) -> None:
    screen.last_reconcile_state = state
    db.commit()


def record_push(db: Session, screen: Screen, result: str) -> None:
    screen.last_push_at = datetime.utcnow()
    screen.last_push_result = result[:255]
    db.commit()


def record_verify(db: Session, screen: Screen, result: str) -> None:
    screen.last_verify_at = datetime.utcnow()
    screen.last_verify_result = result[:255]
    db.commit()


def active_linked_screens(db: Session) -> list[Screen]:
    return (
        db.query(Screen)
        .filter(Screen.is_active.is_(True), Screen.device_id.isnot(None))
        .order_by(Screen.created_at.asc(), Screen.id.asc())
        .all()
    )
