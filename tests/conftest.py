import os

os.environ["SCREENSYNC_DATABASE_URL"] = "sqlite://"
os.environ["SCREENSYNC_SWEEP_ENABLED"] = "0"
os.environ["SCREENSYNC_PUSH_SETTLE_SEC"] = "0"
os.environ["SCREENSYNC_CONTROL_PLANE_TOKEN"] = ""

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from screensync import config
from screensync.db import Base
from screensync.models.ad_asset import AdAsset
from screensync.models.placement import Contract, Placement
from screensync.models.reconcile_trace import ReconcileTraceRecord  # noqa: F401
from screensync.models.screen import Screen
from tests.fakes import FakeControlPlane


@pytest.fixture(autouse=True)
def _settings(monkeypatch):
    monkeypatch.setattr(config, "TEMPLATE_PLAYLIST_ID", None)
    monkeypatch.setattr(config, "FILLER_MEDIA_ID", None)
    monkeypatch.setattr(config, "DEFAULT_ITEM_DURATION_SEC", 15)
    monkeypatch.setattr(config, "FILLER_DURATION_SEC", 30)
    monkeypatch.setattr(config, "PUSH_SETTLE_SEC", 0)
    monkeypatch.setattr(config, "PLAYLIST_NAME_PREFIX", "EVZ | SCREEN |")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def fake():
    return FakeControlPlane()


@pytest.fixture
def make_screen(db):
    def _make(name="Screen", device_id=None, playlist_id=None, is_active=True):
        screen = Screen(name=name, device_id=device_id, playlist_id=playlist_id, is_active=is_active)
        db.add(screen)
        db.commit()
        db.refresh(screen)
        return screen

    return _make


@pytest.fixture
def make_placement(db):
    def _make(screen, advertiser_id="adv-1", active=True):
        contract = db.query(Contract).filter(Contract.advertiser_id == advertiser_id).first()
        if contract is None:
            contract = Contract(advertiser_id=advertiser_id)
            db.add(contract)
            db.commit()
            db.refresh(contract)
        placement = Placement(screen_id=screen.id, contract_id=contract.id, is_active=active)
        db.add(placement)
        db.commit()
        return placement

    return _make


@pytest.fixture
def make_asset(db):
    def _make(advertiser_id="adv-1", status="READY_FOR_REMOTE", remote_media_id=500, size_bytes=1000,
              superseded=False, created_at=None):
        asset = AdAsset(
            advertiser_id=advertiser_id,
            readiness_status=status,
            remote_media_id=remote_media_id,
            size_bytes=size_bytes,
            is_superseded=superseded,
        )
        if created_at is not None:
            asset.created_at = created_at
        db.add(asset)
        db.commit()
        db.refresh(asset)
        return asset

    return _make
