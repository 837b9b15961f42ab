from screensync.services.content_resolver import ContentResolver, build_inventory, resolve_content


def media(media_id):
    return {"id": media_id, "type": "media", "duration": 10}


def nested(kind, node_id):
    return {"id": node_id, "type": kind}


def test_flat_playlist(fake):
    fake.add_playlist(1, [media(10), media(11), {"id": 5, "type": "widget"}])
    result = resolve_content(fake, "playlist", 1)
    assert result.media_ids == [10, 11]
    assert result.widget_count == 1
    assert result.total_items == 3


def test_nested_playlists_and_layouts(fake):
    fake.add_playlist(1, [media(10), nested("playlist", 2), nested("layout", 30)])
    fake.add_playlist(2, [media(20), media(21)])
    fake.layouts[30] = {
        "id": 30,
        "regions": [
            {"id": 1, "item": {"type": "media", "id": 31}},
            {"id": 2, "item": {"type": "widget", "id": 99}},
            {"id": 3, "item": {"type": "playlist", "id": 3}},
            {"id": 4},
        ],
        "background_audio": {"item": {"type": "media", "id": 32}},
    }
    fake.add_playlist(3, [media(40)])

    result = resolve_content(fake, "playlist", 1)

    assert sorted(result.media_ids) == [10, 20, 21, 31, 32, 40]
    assert result.widget_count == 1
    assert result.nested_playlist_count == 2
    assert result.nested_layout_count == 1
    assert result.total_items == 6


def test_self_reference_terminates_and_matches_graph_without_the_edge(fake):
    fake.add_playlist(1, [media(10), nested("playlist", 2)])
    fake.add_playlist(2, [media(20), nested("playlist", 1)])
    cyclic = resolve_content(fake, "playlist", 1)

    acyclic_fake = type(fake)()
    acyclic_fake.add_playlist(1, [media(10), nested("playlist", 2)])
    acyclic_fake.add_playlist(2, [media(20)])
    acyclic = resolve_content(acyclic_fake, "playlist", 1)

    assert cyclic == acyclic
    assert cyclic.media_ids == [10, 20]


def test_playlist_that_contains_itself(fake):
    fake.add_playlist(1, [media(10), nested("playlist", 1)])
    result = resolve_content(fake, "playlist", 1)
    assert result.media_ids == [10]
    assert result.nested_playlist_count == 0


def test_layout_cycle_through_playlist(fake):
    fake.layouts[30] = {"id": 30, "regions": [{"item": {"type": "playlist", "id": 1}}]}
    fake.add_playlist(1, [media(10), nested("layout", 30)])
    result = resolve_content(fake, "layout", 30)
    assert result.media_ids == [10]


def test_nodes_are_fetched_once_per_run(fake):
    fake.add_playlist(1, [nested("playlist", 2), nested("layout", 30), nested("playlist", 2)])
    fake.add_playlist(2, [media(20)])
    fake.layouts[30] = {"id": 30, "regions": [{"item": {"type": "playlist", "id": 2}}]}

    result = resolve_content(fake, "playlist", 1)

    assert result.media_ids == [20]
    assert fake.call_count("get_playlist", 2) == 1


def test_separate_runs_do_not_share_state(fake):
    fake.add_playlist(1, [media(10)])
    assert resolve_content(fake, "playlist", 1).media_ids == [10]
    assert resolve_content(fake, "playlist", 1).media_ids == [10]
    assert fake.call_count("get_playlist", 1) == 2


def test_schedule_unions_events_and_filler(fake):
    fake.add_playlist(1, [media(10)])
    fake.add_playlist(2, [media(20)])
    fake.layouts[30] = {"id": 30, "regions": [{"item": {"type": "media", "id": 31}}]}
    fake.schedules[50] = {
        "id": 50,
        "events": [
            {"source": {"source_type": "playlist", "source_id": 1}},
            {"source": {"source_type": "layout", "source_id": 30}},
            {"source": {"source_type": "webpage", "source_id": 77}},
            {},
        ],
        "filler_content": {"source_type": "playlist", "source_id": 2},
    }
    result = resolve_content(fake, "schedule", 50)
    assert sorted(result.media_ids) == [10, 20, 31]


def test_malformed_schedule_source_is_skipped(fake):
    fake.add_playlist(1, [media(10)])
    fake.schedules[5] = {
        "id": 5,
        "events": [{"source": {"source_type": "playlist", "source_id": "abc"}}],
        "filler_content": {"source_type": "playlist", "source_id": 1},
    }
    resolver = ContentResolver(fake)

    result = resolver.resolve("schedule", 5)

    assert result.media_ids == [10]
    assert resolver.errors == ["playlist 'abc': malformed id"]


def test_malformed_top_level_id_is_skipped(fake):
    assert resolve_content(fake, "playlist", "12a").media_ids == []


def test_media_rows_without_usable_ids_are_ignored(fake):
    fake.add_media(1, tags=["food"], workspace_id=7)
    fake.media[-1] = {"name": "broken.mp4", "tags": ["food"], "workspace": {"id": 7}}
    fake.tagbased[60] = {
        "id": 60,
        "tags": ["food"],
        "workspace": {"id": 7},
        "includes": {"media": ["x", 2]},
        "excludes": {"media": [None]},
    }

    assert resolve_content(fake, "tagbased-playlist", 60).media_ids == [1, 2]


def test_tagbased_playlist_expands_by_tag_intersection(fake):
    fake.add_media(1, tags=["summer", "food"], workspace_id=7)
    fake.add_media(2, tags=["winter"], workspace_id=7)
    fake.add_media(3, tags=["Food"], workspace_id=7)
    fake.add_media(4, tags=["food"], workspace_id=8)
    fake.add_media(5, tags=[], workspace_id=7)
    fake.tagbased[60] = {
        "id": 60,
        "tags": [{"id": 1, "name": "food"}],
        "workspaces": [{"id": 7, "name": "Main"}],
        "includes": {"media": [5]},
        "excludes": {"media": [3]},
    }
    fake.add_playlist(1, [nested("tagbased-playlist", 60)])

    result = resolve_content(fake, "playlist", 1)

    assert result.media_ids == [1, 5]


def test_unknown_types_and_missing_nodes_are_skipped(fake):
    fake.add_playlist(1, [media(10), {"id": 3, "type": "html5"}, nested("playlist", 404), nested("layout", 405)])
    resolver = ContentResolver(fake)
    result = resolver.resolve("playlist", 1)
    assert result.media_ids == [10]
    assert len(resolver.errors) == 2
    assert resolve_content(fake, "webpage", 1).media_ids == []
    assert resolve_content(fake, None, None).media_ids == []


def test_inventory_counts_and_top_media(fake):
    fake.add_media(10, name="promo.mp4", media_type="video")
    fake.add_media(11, name="logo.png", media_type="image")
    fake.add_playlist(1, [media(10), media(11), media(10), {"id": 4, "type": "widget"}])
    fake.add_playlist(2, [media(10)])
    fake.add_screen(100, "playlist", 1, name="Lobby")
    fake.add_screen(101, "playlist", 2, name="Entrance")
    fake.add_screen(102, None, None, name="Dark")

    inventory = build_inventory(fake)

    lobby = inventory.screens[0]
    assert lobby.name == "Lobby"
    assert lobby.total_playlist_items == 4
    assert lobby.media_items_total == 3
    assert lobby.unique_media_ids == 2
    assert lobby.widget_items_total == 1
    assert lobby.media_breakdown == {"video": 1, "image": 1, "audio": 0, "other": 0}
    assert inventory.screens[2].screen_content is None
    assert inventory.totals.screens == 3
    assert inventory.totals.unique_media_across_all_screens == 2
    assert inventory.totals.top_media_by_screens[0].media_id == 10
    assert inventory.totals.top_media_by_screens[0].screen_count == 2
    assert inventory.totals.top_media_by_screens[0].name == "promo.mp4"
    assert fake.call_count("get_media", 10) == 1


def test_inventory_skips_screens_without_ids(fake):
    fake.add_playlist(1, [media(10)])
    fake.add_screen(100, "playlist", 1, name="Lobby")
    fake.screens[-1] = {"name": "Ghost", "screen_content": {"source_type": "playlist", "source_id": 1}}

    inventory = build_inventory(fake)

    assert [screen.name for screen in inventory.screens] == ["Lobby"]
    assert inventory.totals.screens == 1
