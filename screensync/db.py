from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy import text

from screensync.config import DATABASE_URL

_connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(DATABASE_URL, connect_args=_connect_args)
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

Base = declarative_base()


def _column_names(conn, table: str) -> set[str]:
    rows = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
    return {row[1] for row in rows}  # (cid, name, type, notnull, dflt_value, pk)


def ensure_sqlite_schema(bind=None):
    """
    Lightweight runtime schema patching for SQLite.

    `Base.metadata.create_all()` won't add new columns to existing tables.
    Older ledger databases only carried the playlist column; the sync-status
    columns are added here so reconciliation can record push/verify results.
    """
    target = bind if bind is not None else engine
    if not str(target.url).startswith("sqlite"):
        return

    with target.begin() as conn:
        screen_cols = _column_names(conn, "screen")
        if screen_cols:
            if "mode" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN mode VARCHAR DEFAULT 'unknown'"))
            if "is_active" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN is_active INTEGER DEFAULT 1"))
            if "last_push_at" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN last_push_at DATETIME"))
            if "last_push_result" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN last_push_result VARCHAR"))
            if "last_verify_at" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN last_verify_at DATETIME"))
            if "last_verify_result" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN last_verify_result VARCHAR"))
            if "last_reconcile_state" not in screen_cols:
                conn.execute(text("ALTER TABLE screen ADD COLUMN last_reconcile_state VARCHAR"))
            conn.execute(
                text(
                    "UPDATE screen SET mode='unknown' "
                    "WHERE mode IS NULL OR trim(mode)=''"
                )
            )
            conn.execute(text("UPDATE screen SET is_active=1 WHERE is_active IS NULL"))
            # Blank ledger values are treated as "no desired state".
            conn.execute(
                text(
                    "UPDATE screen SET playlist_id=NULL "
                    "WHERE playlist_id IS NOT NULL AND trim(playlist_id)=''"
                )
            )

        asset_cols = _column_names(conn, "ad_asset")
        if asset_cols:
            if "is_superseded" not in asset_cols:
                conn.execute(text("ALTER TABLE ad_asset ADD COLUMN is_superseded INTEGER DEFAULT 0"))
            if "size_bytes" not in asset_cols:
                conn.execute(text("ALTER TABLE ad_asset ADD COLUMN size_bytes BIGINT DEFAULT 0"))
            conn.execute(text("UPDATE ad_asset SET is_superseded=0 WHERE is_superseded IS NULL"))

        trace_cols = _column_names(conn, "reconcile_trace")
        if trace_cols and "logs_json" not in trace_cols:
            conn.execute(text("ALTER TABLE reconcile_trace ADD COLUMN logs_json TEXT"))
