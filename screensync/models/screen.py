import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, DateTime, Integer, String
from screensync.db import Base


class Screen(Base):
    __tablename__ = "screen"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    device_id = Column(Integer, nullable=True, unique=True)  # control-plane screen id, set once linked
    playlist_id = Column(Integer, nullable=True)  # desired-state ledger, the only authoritative playlist
    mode = Column(String(16), default="unknown")  # playlist | layout | schedule | unknown
    is_active = Column(Boolean, nullable=False, default=True)
    last_push_at = Column(DateTime, nullable=True)
    last_push_result = Column(String, nullable=True)
    last_verify_at = Column(DateTime, nullable=True)
    last_verify_result = Column(String, nullable=True)
    last_reconcile_state = Column(String(32), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
