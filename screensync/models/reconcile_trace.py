import uuid
from datetime import datetime

from sqlalchemy import Column, DateTime, String, Text

from screensync.db import Base


class ReconcileTraceRecord(Base):
    __tablename__ = "reconcile_trace"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    correlation_id = Column(String(64), nullable=False, unique=True, index=True)
    kind = Column(String(16), nullable=False)  # publish | dry_run | reconcile
    subject_id = Column(String(64), nullable=True)  # advertiser id or screen id
    outcome = Column(String(16), nullable=False)
    trace_json = Column(Text, nullable=False, default="{}")
    logs_json = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
