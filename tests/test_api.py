import pytest
from fastapi.testclient import TestClient

from screensync.api import publish as publish_api
from screensync.api import reconcile as reconcile_api
from screensync.api import screen as screen_api
from screensync.main import app
from screensync.services.control_plane import ControlPlaneTransientError, get_control_plane


def media_item(media_id):
    return {"item": {"id": media_id, "type": "media"}, "duration": 10}


@pytest.fixture
def api(session_factory, fake):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[screen_api.get_db] = override_db
    app.dependency_overrides[publish_api.get_db] = override_db
    app.dependency_overrides[reconcile_api.get_db] = override_db
    app.dependency_overrides[reconcile_api.get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_control_plane] = lambda: fake
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


def test_healthz(api):
    body = api.get("/healthz").json()
    assert body["ok"] is True
    assert body["control_plane_configured"] is False
    assert body["sweep_running"] is False


def test_list_and_get_screens(api, make_screen):
    screen = make_screen(name="Lobby", device_id=100, playlist_id=1)
    make_screen(name="Retired", is_active=False)

    assert [s["name"] for s in api.get("/screens").json()] == ["Lobby", "Retired"]
    assert [s["name"] for s in api.get("/screens", params={"active_only": True}).json()] == ["Lobby"]

    body = api.get(f"/screens/{screen.id}").json()
    assert body["device_id"] == 100
    assert body["playlist_id"] == 1


@pytest.mark.parametrize(
    "method,path",
    [
        ("get", "/screens/missing"),
        ("post", "/screens/missing/ensure-playlist"),
        ("post", "/screens/missing/reconcile"),
        ("get", "/screens/missing/content"),
        ("get", "/traces/nope"),
    ],
)
def test_not_found(api, method, path):
    assert getattr(api, method)(path).status_code == 404


def test_reconcile_route(api, fake, make_screen):
    screen = make_screen(device_id=100, playlist_id=1)
    fake.add_playlist(1, [media_item(10)])
    fake.add_playlist(2, [media_item(20)])
    fake.add_screen(100, "playlist", 2)

    body = api.post(f"/screens/{screen.id}/reconcile").json()

    assert body["ok"] is True
    assert body["drifted"] is True
    assert body["repaired"] is True
    assert body["state"] == "IN_SYNC"

    stored = api.get(f"/traces/{body['correlation_id']}").json()
    assert stored["kind"] == "reconcile"
    assert stored["subject_id"] == screen.id


def test_reconcile_route_without_seeding(api, fake, make_screen, monkeypatch):
    from screensync import config

    monkeypatch.setattr(config, "FILLER_MEDIA_ID", 333)
    screen = make_screen(device_id=100, playlist_id=1)
    fake.add_playlist(1, [])
    fake.add_screen(100, "playlist", 1)

    body = api.post(f"/screens/{screen.id}/reconcile", params={"seed_empty": False}).json()

    assert body["warnings"] == ["EMPTY_PLAYLIST"]
    assert fake.writes == []


def test_ensure_playlist_route(api, fake, make_screen):
    screen = make_screen(device_id=100)
    fake.add_screen(100, None, None)

    first = api.post(f"/screens/{screen.id}/ensure-playlist").json()
    second = api.post(f"/screens/{screen.id}/ensure-playlist").json()

    assert first["created"] is True
    assert second["created"] is False
    assert first["playlist_id"] == second["playlist_id"]


def test_content_route(api, fake, make_screen):
    screen = make_screen(device_id=100, playlist_id=1)
    fake.add_playlist(1, [media_item(10), media_item(11), media_item(10)])
    fake.add_screen(100, "playlist", 1)

    body = api.get(f"/screens/{screen.id}/content").json()

    assert body["in_sync"] is True
    assert body["media_ids"] == [10, 11]
    assert body["total_items"] == 3


def test_publish_routes(api, fake, make_screen, make_placement, make_asset):
    screen = make_screen(device_id=100, playlist_id=1)
    make_placement(screen)
    make_asset()
    fake.add_media(500)
    fake.add_playlist(1, [media_item(10)])
    fake.add_screen(100, "playlist", 1)

    dry = api.post("/advertisers/adv-1/publish/dry-run").json()
    assert dry["dry_run"] is True
    assert dry["outcome"] == "SUCCESS"
    assert fake.writes == []

    body = api.post("/advertisers/adv-1/publish", json={"targets": [screen.id]}).json()
    assert body["outcome"] == "SUCCESS"
    assert body["summary"] == {"targets_resolved": 1, "success_count": 1, "failed_count": 0}
    assert len(fake.writes) == 1

    stored = api.get(f"/traces/{body['correlation_id']}").json()
    assert stored["outcome"] == "SUCCESS"


def test_publish_failure_is_a_trace_not_an_error(api):
    resp = api.post("/advertisers/nobody/publish")

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "FAILED"
    assert resp.json()["failure"]["code"] == "NO_ASSET_FOUND"


def test_sweep_route(api, fake, make_screen):
    make_screen(device_id=100, playlist_id=1)
    fake.add_playlist(1, [media_item(10)])
    fake.add_screen(100, "playlist", 1)

    body = api.post("/reconcile/sweep").json()

    assert body == {"processed": 1, "ok": 1, "failed": 0, "errors": []}


def test_inventory_route(api, fake):
    fake.add_media(10, name="promo.mp4")
    fake.add_playlist(1, [media_item(10)])
    fake.add_screen(100, "playlist", 1)
    fake.add_screen(101, "playlist", 1)

    body = api.get("/inventory").json()

    assert body["totals"]["screens"] == 2
    assert body["totals"]["top_media_by_screens"][0] == {"media_id": 10, "name": "promo.mp4", "screen_count": 2}


def test_inventory_route_when_control_plane_is_down(api, fake, monkeypatch):
    def down(workspace_id=None):
        raise ControlPlaneTransientError("GET /screens/ failed after 4 attempts: HTTP 503", status=503)

    monkeypatch.setattr(fake, "list_screens", down)

    assert api.get("/inventory").status_code == 502


def test_realtime_hello(api):
    with api.websocket_connect("/ws/updates") as ws:
        hello = ws.receive_json()
    assert hello["type"] == "hello"
    assert hello["service"] == "screensync"


def test_reconcile_route_notifies_dashboards(api, fake, make_screen):
    screen = make_screen(device_id=100, playlist_id=1)
    fake.add_playlist(1, [media_item(10)])
    fake.add_screen(100, "playlist", 1)

    with api.websocket_connect("/ws/updates") as ws:
        ws.receive_json()
        body = api.post(f"/screens/{screen.id}/reconcile").json()
        event = ws.receive_json()

    assert event["type"] == "reconcile_completed"
    assert event["payload"]["correlation_id"] == body["correlation_id"]
    assert event["payload"]["screen_id"] == screen.id
    assert event["payload"]["state"] == "IN_SYNC"
