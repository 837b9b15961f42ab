import json
import logging
import time
import uuid
from typing import Any

from sqlalchemy.orm import Session

from screensync.models.reconcile_trace import ReconcileTraceRecord
from screensync.schemas.trace import Failure, TraceStep

logger = logging.getLogger(__name__)


def new_correlation_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class TraceRecorder:
    """Collects ordered steps and log lines for one publish or reconcile run."""

    def __init__(self, correlation_id: str) -> None:
        self.correlation_id = correlation_id
        self.steps: list[TraceStep] = []
        self.logs: list[str] = []

    def log(self, step: str, message: str) -> None:
        line = f"[{self.correlation_id}] STEP={step} {message}"
        logger.info(line)
        self.logs.append(line)

    def record(
        self,
        step: str,
        started: float,
        status: str = "success",
        details: dict[str, Any] | None = None,
        failure: Failure | None = None,
        screen_id: str | None = None,
    ) -> TraceStep:
        entry = TraceStep(
            step=step,
            status="failed" if failure and status == "success" else status,
            duration_ms=int((time.monotonic() - started) * 1000),
            screen_id=screen_id,
            details=details or {},
        )
        if failure:
            entry.error = failure.message
            entry.error_code = failure.code
            entry.next_action = failure.next_action
        self.steps.append(entry)
        self.log(step, f"{entry.status} {failure.code.value if failure else ''}".rstrip())
        return entry

    def extend(self, steps: list[TraceStep]) -> None:
        self.steps.extend(steps)


def save_trace(
    db: Session,
    correlation_id: str,
    kind: str,
    subject_id: str | None,
    outcome: str,
    body: dict[str, Any],
    logs: list[str],
) -> None:
    record = ReconcileTraceRecord(
        correlation_id=correlation_id,
        kind=kind,
        subject_id=subject_id,
        outcome=outcome,
        trace_json=json.dumps(body, default=str),
        logs_json=json.dumps(logs),
    )
    db.add(record)
    db.commit()


def load_trace(db: Session, correlation_id: str) -> dict | None:
    record = (
        db.query(ReconcileTraceRecord)
        .filter(ReconcileTraceRecord.correlation_id == correlation_id)
        .first()
    )
    if record is None:
        return None
    return {
        "correlation_id": record.correlation_id,
        "kind": record.kind,
        "subject_id": record.subject_id,
        "outcome": record.outcome,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "trace": json.loads(record.trace_json or "{}"),
        "logs": json.loads(record.logs_json or "[]"),
    }
