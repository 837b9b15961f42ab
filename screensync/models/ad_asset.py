import uuid
from datetime import datetime
from sqlalchemy import BigInteger, Boolean, Column, DateTime, Integer, String
from screensync.db import Base


class AdAsset(Base):
    __tablename__ = "ad_asset"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    advertiser_id = Column(String(36), nullable=False, index=True)
    file_name = Column(String, nullable=True)
    remote_media_id = Column(Integer, nullable=True)
    # PENDING | VALIDATING | NEEDS_NORMALIZATION | NORMALIZING | READY_FOR_REMOTE | FAILED
    readiness_status = Column(String(32), nullable=False, default="PENDING")
    size_bytes = Column(BigInteger, nullable=False, default=0)
    is_superseded = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)
