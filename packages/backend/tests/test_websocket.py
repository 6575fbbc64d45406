"""WebSocket protocol tests — handshake, ping/pong, delivery, cleanup.

Learn: These use Starlette's synchronous TestClient. Inside
`with TestClient(app)` the lifespan runs (hub initialized) and every
HTTP call and socket share one event loop, so an HTTP request can push
a frame to a socket opened by the same test.

Frames on one socket arrive in order, so "nothing was delivered" is
checked by sending a ping and asserting the very next frame is the pong.
"""

import pytest
from starlette.testclient import TestClient

from firemarket.auth.dependencies import CurrentIdentity, get_current_user
from firemarket.auth.jwt import create_access_token
from firemarket.config import settings
from firemarket.events import types as frames
from firemarket.main import create_app
from firemarket.realtime import pubsub

from conftest import ADMIN, OWNER, SUPPLIER_A


@pytest.fixture()
def ws_app(monkeypatch):
    async def no_redis():
        raise ConnectionError("redis not available in tests")

    monkeypatch.setattr(settings, "create_tables", False)
    monkeypatch.setattr(pubsub, "init_redis", no_redis)
    application = create_app()
    application.dependency_overrides[get_current_user] = lambda: CurrentIdentity(
        ADMIN, role="admin"
    )
    yield application
    application.dependency_overrides.clear()


@pytest.fixture()
def tc(ws_app):
    with TestClient(ws_app) as client:
        yield client


def _hello(ws) -> dict:
    frame = ws.receive_json()
    assert frame["type"] == frames.CONNECTION
    assert frame["connectionId"]
    return frame


def _auth(ws, **claim) -> dict:
    ws.send_json({"type": frames.AUTH, **claim})
    return ws.receive_json()


def _next_is_pong(ws) -> None:
    ws.send_json({"type": frames.PING})
    assert ws.receive_json()["type"] == frames.PONG


# ═══════════════════════════════════════════════════════════
# Handshake
# ═══════════════════════════════════════════════════════════


def test_connection_frame_then_token_auth(tc, ws_app):
    with tc.websocket_connect("/ws") as ws:
        hello = _hello(ws)
        registry = ws_app.state.realtime.registry
        assert hello["connectionId"] in registry

        reply = _auth(ws, token=create_access_token(str(OWNER)))
        assert reply["type"] == frames.AUTH_SUCCESS
        assert reply["userId"] == str(OWNER)
        assert registry.connections_for(str(OWNER)) == {hello["connectionId"]}


def test_token_in_query_string(tc):
    token = create_access_token(str(OWNER))
    with tc.websocket_connect(f"/ws?token={token}") as ws:
        _hello(ws)
        assert ws.receive_json()["type"] == frames.AUTH_SUCCESS


def test_user_id_claim(tc):
    with tc.websocket_connect("/ws") as ws:
        _hello(ws)
        reply = _auth(ws, userId=str(SUPPLIER_A))
        assert reply == {
            "type": frames.AUTH_SUCCESS,
            "message": "Authenticated",
            "userId": str(SUPPLIER_A),
        }


def test_user_id_claim_disabled(tc, monkeypatch):
    monkeypatch.setattr(settings, "ws_allow_user_id_claim", False)
    with tc.websocket_connect("/ws") as ws:
        _hello(ws)
        assert _auth(ws, userId=str(SUPPLIER_A))["type"] == frames.AUTH_ERROR


def test_bad_auth_keeps_connection_open(tc, ws_app):
    with tc.websocket_connect("/ws") as ws:
        cid = _hello(ws)["connectionId"]
        assert _auth(ws)["type"] == frames.AUTH_ERROR
        assert _auth(ws, token="garbage")["type"] == frames.AUTH_ERROR
        assert _auth(ws, userId="not-a-uuid")["type"] == frames.AUTH_ERROR
        assert ws_app.state.realtime.registry.get(cid).is_authenticated is False
        _next_is_pong(ws)


def test_rebind_to_other_user_rejected(tc, ws_app):
    with tc.websocket_connect("/ws") as ws:
        cid = _hello(ws)["connectionId"]
        assert _auth(ws, userId=str(OWNER))["type"] == frames.AUTH_SUCCESS
        assert _auth(ws, userId=str(OWNER))["type"] == frames.AUTH_SUCCESS
        assert _auth(ws, userId=str(SUPPLIER_A))["type"] == frames.AUTH_ERROR
        assert ws_app.state.realtime.registry.get(cid).user_id == str(OWNER)


# ═══════════════════════════════════════════════════════════
# Frames
# ═══════════════════════════════════════════════════════════


def test_ping_before_auth_refreshes_liveness(tc, ws_app):
    registry = ws_app.state.realtime.registry
    with tc.websocket_connect("/ws") as ws:
        cid = _hello(ws)["connectionId"]
        before = registry.get(cid).last_liveness
        ws.send_json({"type": frames.PING})
        pong = ws.receive_json()
        assert pong["type"] == frames.PONG
        assert "timestamp" in pong
        assert registry.get(cid).last_liveness >= before


def test_malformed_and_unknown_frames_are_dropped(tc):
    with tc.websocket_connect("/ws") as ws:
        _hello(ws)
        ws.send_text("{not json")
        ws.send_json(["a", "list"])
        ws.send_json({"type": "teleport"})
        ws.send_json({"type": frames.NEW_BID, "data": {}})
        ws.send_json({"type": frames.PONG})
        _next_is_pong(ws)


def test_binary_frames_are_dropped(tc, ws_app):
    with tc.websocket_connect("/ws") as ws:
        cid = _hello(ws)["connectionId"]
        ws.send_bytes(b"\x00\x01")
        _next_is_pong(ws)
        assert cid in ws_app.state.realtime.registry


def test_subscriptions_recorded_after_auth_only(tc, ws_app):
    registry = ws_app.state.realtime.registry
    with tc.websocket_connect("/ws") as ws:
        cid = _hello(ws)["connectionId"]
        ws.send_json({"type": frames.SUBSCRIBE, "channel": "fire-safety"})
        _next_is_pong(ws)
        assert registry.get(cid).channels == set()

        _auth(ws, userId=str(SUPPLIER_A))
        ws.send_json({"type": frames.SUBSCRIBE, "channel": "fire-safety"})
        ws.send_json({"type": frames.SUBSCRIBE, "channel": "ventilation"})
        ws.send_json({"type": frames.UNSUBSCRIBE, "channel": "ventilation"})
        _next_is_pong(ws)
        assert registry.get(cid).channels == {"fire-safety"}


# ═══════════════════════════════════════════════════════════
# Delivery + cleanup
# ═══════════════════════════════════════════════════════════


def test_broadcast_reaches_authenticated_only(tc):
    with tc.websocket_connect("/ws") as anon, tc.websocket_connect("/ws") as member:
        _hello(anon)
        _hello(member)
        _auth(member, userId=str(SUPPLIER_A))

        r = tc.post(
            "/api/v1/realtime/broadcast",
            json={"title": "Heads up", "message": "Maintenance at 02:00"},
        )
        assert r.status_code == 200
        assert r.json() == {"delivered": 1}

        frame = member.receive_json()
        assert frame["type"] == frames.BROADCAST
        assert frame["data"]["title"] == "Heads up"
        _next_is_pong(anon)


def test_broadcast_skips_the_sender(tc):
    with tc.websocket_connect("/ws") as ws:
        _hello(ws)
        _auth(ws, userId=str(ADMIN))
        r = tc.post("/api/v1/realtime/broadcast", json={"title": "t", "message": "m"})
        assert r.json() == {"delivered": 0}
        _next_is_pong(ws)


def test_disconnect_unregisters(tc, ws_app):
    registry = ws_app.state.realtime.registry
    with tc.websocket_connect("/ws") as ws:
        _hello(ws)
        _auth(ws, userId=str(OWNER))
        assert tc.get("/api/v1/realtime/stats").json()["authenticated"] == 1

    assert len(registry) == 0
    assert registry.connections_for(str(OWNER)) == set()
    stats = tc.get("/api/v1/realtime/stats").json()
    assert stats["total"] == 0
    assert stats["backend"] == "LocalDispatcher"
