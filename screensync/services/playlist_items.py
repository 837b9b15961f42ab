"""
Playlist item encoding boundary.

The control plane hands back playlist items in more than one shape:

    {"id": 9, "order": 0, "item": {"id": 412, "type": "media"}, "duration": 15}
    {"id": 9, "order": 0, "item": 412, "type": "media", "duration": 15}
    {"id": 412, "type": "media", "name": "promo.mp4", "duration": 15}
    {"media": 412, "duration": 15, "position": 1}

Everything above this module works with `PlaylistEntry` only. Items that
cannot be classified keep their raw payload so a full-array replace writes
them back untouched.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

MEDIA = "media"
WIDGET = "widget"
PLAYLIST = "playlist"
LAYOUT = "layout"
TAGBASED = "tagbased-playlist"
UNKNOWN = "unknown"

_KIND_ALIASES = {
    "tagbased_playlist": TAGBASED,
    "tagbased-playlist": TAGBASED,
    "tag_playlist": TAGBASED,
}


class ItemEncoding(str, Enum):
    OBJECT = "object"  # "item": {"id": ..., "type": ...}
    BARE = "bare"  # "item": <id>


ENCODING_ORDER = (ItemEncoding.OBJECT, ItemEncoding.BARE)


@dataclass(frozen=True)
class PlaylistEntry:
    kind: str
    resource_id: int | None
    duration: int | None = None
    row_id: int | None = None
    name: str | None = None
    raw: Any = field(default=None, compare=False, hash=False)

    @property
    def recognized(self) -> bool:
        return self.resource_id is not None and self.kind != UNKNOWN

    @property
    def media_id(self) -> int | None:
        return self.resource_id if self.kind == MEDIA else None


def normalize_kind(value: Any) -> str:
    kind = str(value or "").strip().lower()
    if not kind:
        return MEDIA
    kind = _KIND_ALIASES.get(kind, kind)
    if kind in {MEDIA, WIDGET, PLAYLIST, LAYOUT, TAGBASED}:
        return kind
    return UNKNOWN


def as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def decode_entry(raw: Any) -> PlaylistEntry:
    if not isinstance(raw, dict):
        return PlaylistEntry(kind=UNKNOWN, resource_id=None, raw=raw)

    duration = as_int(raw.get("duration"))
    name = raw.get("name") if isinstance(raw.get("name"), str) else None

    if "item" in raw:
        inner = raw.get("item")
        if isinstance(inner, dict):
            kind = normalize_kind(inner.get("type") or raw.get("type"))
            resource_id = as_int(inner.get("id"))
            name = name or (inner.get("name") if isinstance(inner.get("name"), str) else None)
        else:
            kind = normalize_kind(raw.get("type"))
            resource_id = as_int(inner)
        return PlaylistEntry(
            kind=kind,
            resource_id=resource_id,
            duration=duration,
            row_id=as_int(raw.get("id")),
            name=name,
            raw=raw,
        )

    if "media" in raw:
        media = raw.get("media")
        resource_id = as_int(media.get("id")) if isinstance(media, dict) else as_int(media)
        return PlaylistEntry(
            kind=MEDIA,
            resource_id=resource_id,
            duration=duration,
            row_id=as_int(raw.get("id")),
            name=name,
            raw=raw,
        )

    if "type" in raw:
        return PlaylistEntry(
            kind=normalize_kind(raw.get("type")),
            resource_id=as_int(raw.get("id")),
            duration=duration,
            name=name,
            raw=raw,
        )

    return PlaylistEntry(kind=UNKNOWN, resource_id=None, duration=duration, raw=raw)


def decode_items(items: Any) -> list[PlaylistEntry]:
    if not isinstance(items, list):
        return []
    return [decode_entry(item) for item in items]


def media_ids(entries: list[PlaylistEntry]) -> list[int]:
    return [entry.media_id for entry in entries if entry.media_id is not None]


def contains_media(entries: list[PlaylistEntry], media_id: int) -> bool:
    return any(entry.media_id == media_id for entry in entries)


def new_media_entry(media_id: int, duration: int) -> PlaylistEntry:
    return PlaylistEntry(kind=MEDIA, resource_id=media_id, duration=duration)


def dedupe_media(entries: list[PlaylistEntry]) -> tuple[list[PlaylistEntry], int]:
    """Keep the first occurrence of each media id. Non-media entries pass through."""
    seen: set[int] = set()
    kept: list[PlaylistEntry] = []
    removed = 0
    for entry in entries:
        media_id = entry.media_id
        if media_id is not None:
            if media_id in seen:
                removed += 1
                continue
            seen.add(media_id)
        kept.append(entry)
    return kept, removed


def encode_entry(entry: PlaylistEntry, encoding: ItemEncoding, order: int, default_duration: int) -> Any:
    if not entry.recognized:
        return dict(entry.raw) if isinstance(entry.raw, dict) else entry.raw

    duration = entry.duration if entry.duration is not None else default_duration
    if encoding == ItemEncoding.OBJECT:
        payload: dict[str, Any] = {
            "order": order,
            "item": {"id": entry.resource_id, "type": entry.kind},
            "duration": duration,
        }
    else:
        payload = {
            "order": order,
            "item": entry.resource_id,
            "type": entry.kind,
            "duration": duration,
        }
    if entry.row_id is not None:
        payload["id"] = entry.row_id
    return payload


def encode_items(entries: list[PlaylistEntry], encoding: ItemEncoding, default_duration: int) -> list[Any]:
    return [
        encode_entry(entry, encoding, order, default_duration)
        for order, entry in enumerate(entries)
    ]
