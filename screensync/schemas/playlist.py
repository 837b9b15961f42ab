from pydantic import BaseModel

from screensync.schemas.trace import Failure


class MutationResult(BaseModel):
    ok: bool
    playlist_id: int
    media_id: int
    already_exists: bool = False
    written: bool = False
    item_count_before: int = 0
    item_count_after: int = 0
    removed_duplicates: int = 0
    unrecognized_items: int = 0
    format_used: str | None = None
    unconfirmed: bool = False
    failure: Failure | None = None


class CloneResult(BaseModel):
    ok: bool
    playlist_id: int | None = None
    playlist_name: str | None = None
    item_count: int = 0
    failure: Failure | None = None
