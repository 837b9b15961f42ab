import uuid
from sqlalchemy import Boolean, Column, ForeignKey, String
from screensync.db import Base


class Contract(Base):
    __tablename__ = "contract"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    advertiser_id = Column(String(36), nullable=False, index=True)


class Placement(Base):
    __tablename__ = "placement"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    screen_id = Column(String(36), ForeignKey("screen.id"), nullable=False)
    contract_id = Column(String(36), ForeignKey("contract.id"), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
