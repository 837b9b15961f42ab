from screensync.services import playlist_items
from screensync.services.playlist_items import ItemEncoding, decode_entry, decode_items


OBJECT_ITEMS = [
    {"id": 1, "order": 0, "item": {"id": 101, "type": "media"}, "duration": 10},
    {"id": 2, "order": 1, "item": {"id": 102, "type": "media"}, "duration": 10},
    {"id": 3, "order": 2, "item": {"id": 7, "type": "widget"}, "duration": 30},
]
BARE_ITEMS = [
    {"id": 1, "order": 0, "item": 101, "type": "media", "duration": 10},
    {"id": 2, "order": 1, "item": 102, "type": "media", "duration": 10},
    {"id": 3, "order": 2, "item": 7, "type": "widget", "duration": 30},
]


def test_both_item_shapes_decode_to_the_same_entries():
    assert decode_items(OBJECT_ITEMS) == decode_items(BARE_ITEMS)
    assert playlist_items.media_ids(decode_items(OBJECT_ITEMS)) == [101, 102]
    assert playlist_items.media_ids(decode_items(BARE_ITEMS)) == [101, 102]
    for media_id in (101, 102, 7, 999):
        assert playlist_items.contains_media(decode_items(OBJECT_ITEMS), media_id) == playlist_items.contains_media(
            decode_items(BARE_ITEMS), media_id
        )


def test_item_without_type_defaults_to_media():
    entry = decode_entry({"order": 0, "item": "412", "duration": 15})
    assert entry.kind == "media"
    assert entry.media_id == 412


def test_resource_listing_shape_uses_top_level_id():
    entry = decode_entry({"id": 412, "type": "media", "name": "promo.mp4", "duration": 15})
    assert entry.media_id == 412
    assert entry.row_id is None
    assert entry.name == "promo.mp4"


def test_media_key_shape():
    entry = decode_entry({"media": 55, "duration": 8, "position": 1})
    assert entry.kind == "media"
    assert entry.media_id == 55


def test_tagbased_alias_is_normalized():
    entry = decode_entry({"id": 9, "type": "tagbased_playlist"})
    assert entry.kind == playlist_items.TAGBASED
    assert entry.media_id is None


def test_unclassifiable_items_never_raise():
    for raw in ({"order": 3}, {"item": None}, {"id": 5, "type": "html5"}, "garbage", None, 42):
        entry = decode_entry(raw)
        assert not entry.recognized


def test_dedupe_keeps_first_occurrence_and_counts_removed():
    entries = decode_items(
        [
            {"item": {"id": 1, "type": "media"}},
            {"item": 2, "type": "media"},
            {"item": {"id": 1, "type": "media"}},
            {"item": {"id": 1, "type": "widget"}},
            {"item": 2, "type": "media"},
        ]
    )
    kept, removed = playlist_items.dedupe_media(entries)
    assert removed == 2
    assert [(e.kind, e.resource_id) for e in kept] == [("media", 1), ("media", 2), ("widget", 1)]


def test_encode_object_and_bare():
    entries = decode_items(OBJECT_ITEMS[:1]) + [playlist_items.new_media_entry(500, 15)]

    as_object = playlist_items.encode_items(entries, ItemEncoding.OBJECT, default_duration=20)
    assert as_object == [
        {"order": 0, "item": {"id": 101, "type": "media"}, "duration": 10, "id": 1},
        {"order": 1, "item": {"id": 500, "type": "media"}, "duration": 15},
    ]

    as_bare = playlist_items.encode_items(entries, ItemEncoding.BARE, default_duration=20)
    assert as_bare == [
        {"order": 0, "item": 101, "type": "media", "duration": 10, "id": 1},
        {"order": 1, "item": 500, "type": "media", "duration": 15},
    ]


def test_encode_fills_missing_duration_and_passes_unknown_items_through():
    raw_unknown = {"order": 9, "html": "<p>hi</p>"}
    entries = decode_items([{"id": 33, "type": "media"}, raw_unknown])
    encoded = playlist_items.encode_items(entries, ItemEncoding.OBJECT, default_duration=12)
    assert encoded[0] == {"order": 0, "item": {"id": 33, "type": "media"}, "duration": 12}
    assert encoded[1] == raw_unknown
