"""
End-to-end tests for the relay application.

Peers are real WebSocket sessions against the FastAPI app through
TestClient; ids are read from the welcome envelopes.
"""

import pytest
from starlette.websockets import WebSocketDisconnect

from relay_gateway.components.core.constants import WSCloseCode


class TestHttpSurface:
    """Tests for the plain HTTP routes."""

    def test_get_root_is_forbidden(self, client):
        response = client.get("/")
        assert response.status_code == 403
        assert response.text == "Forbidden - WebSocket connections only"

    def test_unknown_path_is_404(self, client):
        assert client.get("/nope").status_code == 404

    def test_health_check(self, client):
        response = client.get("/ws/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "signal-relay"
        assert data["total_connections"] == 0
        assert data["max_connections"] == 3
        assert data["heartbeat_stats"]["running"] is True

    def test_prometheus_metrics(self, client):
        response = client.get("/ws/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "signal_relay_peers_connected 0" in response.text
        assert 'signal_relay_connections_rejected_total{reason="capacity"} 0' in response.text


class TestThreePeerScenario:
    """A, B and C join in order and exchange messages."""

    def test_join_broadcast_and_unicast(self, client):
        with client.websocket_connect("/") as ws_a:
            welcome_a = ws_a.receive_json()
            a = welcome_a["id"]
            assert welcome_a["peers"] == []

            with client.websocket_connect("/") as ws_b:
                welcome_b = ws_b.receive_json()
                b = welcome_b["id"]
                assert welcome_b["peers"] == [a]
                joined = ws_a.receive_json()
                assert joined["type"] == "peer-joined"
                assert joined["id"] == b

                with client.websocket_connect("/") as ws_c:
                    welcome_c = ws_c.receive_json()
                    c = welcome_c["id"]
                    assert sorted(welcome_c["peers"]) == sorted([a, b])
                    assert ws_a.receive_json()["id"] == c
                    assert ws_b.receive_json()["id"] == c

                    # A broadcasts: B and C receive it, A does not
                    ws_a.send_json({"type": "text-message", "to": None, "content": "hi"})
                    for ws in (ws_b, ws_c):
                        message = ws.receive_json()
                        assert message["type"] == "text-message"
                        assert message["from"] == a
                        assert message["content"] == "hi"

                    # B unicasts an offer to C only
                    ws_b.send_json({"type": "offer", "to": c, "sdp": "x", "sdpType": "offer"})
                    offer = ws_c.receive_json()
                    assert offer["type"] == "offer"
                    assert offer["from"] == b
                    assert offer["sdp"] == "x"

                    # Markers from C prove A and B got nothing in between
                    ws_c.send_json({"type": "text-message", "to": a, "content": "marker-a"})
                    ws_c.send_json({"type": "text-message", "to": b, "content": "marker-b"})
                    assert ws_a.receive_json()["content"] == "marker-a"
                    assert ws_b.receive_json()["content"] == "marker-b"

                    # C leaves: A and B are told once
                    ws_c.close()
                    for ws in (ws_a, ws_b):
                        left = ws.receive_json()
                        assert left["type"] == "peer-left"
                        assert left["id"] == c

    def test_sender_cannot_spoof_from(self, client):
        with client.websocket_connect("/") as ws_a:
            a = ws_a.receive_json()["id"]
            with client.websocket_connect("/") as ws_b:
                ws_b.receive_json()
                ws_a.receive_json()

                ws_a.send_json({"type": "join", "from": "someone-else", "timestamp": 1})
                message = ws_b.receive_json()

                assert message["from"] == a
                assert message["timestamp"] != 1


class TestAdmission:
    """Capacity refusal happens before the handshake completes."""

    def test_fourth_peer_is_refused(self, client):
        with client.websocket_connect("/") as ws_a:
            ws_a.receive_json()
            with client.websocket_connect("/") as ws_b:
                ws_b.receive_json()
                ws_a.receive_json()
                with client.websocket_connect("/") as ws_c:
                    ws_c.receive_json()

                    with pytest.raises(WebSocketDisconnect) as exc_info:
                        with client.websocket_connect("/") as ws_d:
                            ws_d.receive_json()

                    assert exc_info.value.code == WSCloseCode.SERVER_OVERLOADED
                    stats = client.get("/ws/health").json()
                    assert stats["total_connections"] == 3
                    assert stats["metrics"]["connections_rejected_capacity"] == 1

    def test_slot_is_reusable_after_leave(self, client):
        for _ in range(5):
            with client.websocket_connect("/") as ws:
                assert ws.receive_json()["type"] == "id"

        assert client.get("/ws/health").json()["total_connections"] == 0


class TestDroppedFrames:
    """Invalid and heartbeat frames are never relayed."""

    def test_malformed_frame_is_dropped_silently(self, client):
        with client.websocket_connect("/") as ws_a:
            ws_a.receive_json()
            with client.websocket_connect("/") as ws_b:
                ws_b.receive_json()
                ws_a.receive_json()

                ws_a.send_text("not json")
                ws_a.send_json({"type": "bogus"})
                ws_a.send_json({"type": "offer"})

                # A is still connected and got no error back
                ws_a.send_text("ping")
                assert ws_a.receive_json() == {"type": "pong"}

                # B's next frame is the first valid relay
                ws_a.send_json({"type": "leave"})
                assert ws_b.receive_json()["type"] == "leave"

                metrics = client.get("/ws/health").json()["metrics"]
                assert metrics["messages_invalid"] == 3
                assert metrics["messages_invalid_by_kind"] == {
                    "malformed_payload": 1,
                    "unknown_type": 1,
                    "missing_field": 1,
                }

    def test_heartbeat_frames_are_not_relayed(self, client):
        with client.websocket_connect("/") as ws_a:
            ws_a.receive_json()
            with client.websocket_connect("/") as ws_b:
                ws_b.receive_json()
                ws_a.receive_json()

                ws_a.send_text("pong")
                ws_a.send_json({"type": "pong"})
                ws_a.send_json({"type": "ping"})
                assert ws_a.receive_json() == {"type": "pong"}

                ws_a.send_json({"type": "text-message", "content": "after"})
                assert ws_b.receive_json()["content"] == "after"

    def test_oversized_frame_closes_sender(self, client, relay_settings):
        with client.websocket_connect("/") as ws_a:
            a = ws_a.receive_json()["id"]
            with client.websocket_connect("/") as ws_b:
                ws_b.receive_json()
                ws_a.receive_json()

                ws_a.send_text("x" * (relay_settings.ws_max_message_size + 1))
                with pytest.raises(WebSocketDisconnect) as exc_info:
                    ws_a.receive_json()
                assert exc_info.value.code == WSCloseCode.MESSAGE_TOO_BIG

                left = ws_b.receive_json()
                assert left == {"type": "peer-left", "id": a, "timestamp": left["timestamp"]}

    def test_binary_heartbeat_is_answered(self, client):
        with client.websocket_connect("/") as ws_a:
            ws_a.receive_json()

            ws_a.send_bytes(b"ping")
            assert ws_a.receive_json() == {"type": "pong"}
            ws_a.send_bytes(b"pong")

            metrics = client.get("/ws/health").json()["metrics"]
            assert metrics["messages_invalid"] == 0

    def test_size_limit_counts_utf8_bytes(self, client, relay_settings):
        with client.websocket_connect("/") as ws_a:
            ws_a.receive_json()

            # Fewer characters than the limit, more bytes
            frame = "é" * (relay_settings.ws_max_message_size // 2 + 1)
            assert len(frame) <= relay_settings.ws_max_message_size
            ws_a.send_text(frame)

            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws_a.receive_json()
            assert exc_info.value.code == WSCloseCode.MESSAGE_TOO_BIG
