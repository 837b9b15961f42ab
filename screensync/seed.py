import os
from sqlalchemy.orm import Session
from screensync.db import SessionLocal, Base, engine, ensure_sqlite_schema
from screensync.models.ad_asset import AdAsset
from screensync.models.placement import Contract, Placement
from screensync.models.screen import Screen
from screensync.models import reconcile_trace  # noqa: F401  register table


def _device_ids() -> list[int]:
    # SCREENSYNC_SEED_DEVICE_IDS=1201,1202 links the seeded screens to real devices.
    raw = os.getenv("SCREENSYNC_SEED_DEVICE_IDS", "")
    return [int(part) for part in raw.split(",") if part.strip().isdigit()]


def seed(db: Session | None = None) -> None:
    own_session = db is None
    if own_session:
        Base.metadata.create_all(bind=engine)
        ensure_sqlite_schema()
        db = SessionLocal()
    try:
        device_ids = _device_ids()
        screens = []
        for index, label in enumerate(["Lobby North", "Lobby South", "Food Court"]):
            screen = Screen(
                name=label,
                device_id=device_ids[index] if index < len(device_ids) else None,
                is_active=True,
            )
            db.add(screen)
            screens.append(screen)
        db.commit()
        for screen in screens:
            db.refresh(screen)

        advertiser_id = "demo-advertiser"
        contract = Contract(advertiser_id=advertiser_id)
        db.add(contract)
        db.commit()
        db.refresh(contract)

        for screen in screens[:2]:
            db.add(Placement(screen_id=screen.id, contract_id=contract.id, is_active=True))
        db.add(
            AdAsset(
                advertiser_id=advertiser_id,
                file_name="spring_campaign_1080p.mp4",
                readiness_status="READY_FOR_REMOTE",
                remote_media_id=int(os.getenv("SCREENSYNC_SEED_MEDIA_ID", "0")) or None,
                size_bytes=18_400_000,
            )
        )
        db.add(
            AdAsset(
                advertiser_id=advertiser_id,
                file_name="spring_campaign_raw.mov",
                readiness_status="NEEDS_NORMALIZATION",
                size_bytes=92_000_000,
                is_superseded=True,
            )
        )
        db.commit()
    finally:
        if own_session:
            db.close()


if __name__ == "__main__":
    seed()
