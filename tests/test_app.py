"""
Application Tests
=================

HTTP and WebSocket endpoints exercised through FastAPI's TestClient.
"""

import json

import pytest
from fastapi.testclient import TestClient


@pytest.fixture
def client(tmp_path, monkeypatch):
    """Run the app with telemetry written under tmp_path."""
    from peerwatch import main

    monkeypatch.setattr(main.settings.telemetry, "path", str(tmp_path / "metrics.jsonl"))
    monkeypatch.setattr(main.settings.telemetry, "enabled", True)
    monkeypatch.setattr(main.settings.pipeline, "enabled", True)
    monkeypatch.setattr(main.settings.detector, "backend", "mock")
    monkeypatch.setattr(main.settings.detector.mock, "latency_ms", 0.0)
    monkeypatch.setattr(main.settings.capture, "url", None)

    with TestClient(main.app) as test_client:
        yield test_client


class TestHttpEndpoints:
    """Tests for service endpoints."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["service"] == "PeerWatch"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/ready")
        assert response.status_code == 200
        assert response.json()["pipeline_running"] is True

    def test_metrics(self, client):
        data = client.get("/metrics").json()
        assert data["relay"]["rooms"] == 0
        assert data["pipeline"]["target_fps"] == 12
        assert "slot" in data["pipeline"]


class TestRelayEndpoint:
    """Tests for the /ws relay channel."""

    def test_full_session(self, client):
        from peerwatch import main

        with client.websocket_connect("/ws") as viewer:
            viewer.send_json({"type": "create", "room": "abc"})
            assert viewer.receive_json() == {"type": "created", "room": "abc"}

            with client.websocket_connect("/ws") as phone:
                phone.send_json({"type": "join", "room": "abc"})
                assert phone.receive_json() == {"type": "joined", "room": "abc"}
                assert viewer.receive_json() == {"type": "peer_joined", "room": "abc"}

                offer = {"type": "offer", "sdp": {"type": "offer", "sdp": "v=0"}}
                viewer.send_json(offer)
                assert phone.receive_json() == offer

                answer = {"type": "answer", "sdp": {"type": "answer", "sdp": "v=0"}}
                phone.send_json(answer)
                assert viewer.receive_json() == answer

                phone.send_text("garbage")
                phone.send_json({"type": "metrics", "role": "phone", "bitrate": 850, "fps": 24, "latencyMs": 35})

            assert viewer.receive_json() == {"type": "peer_left", "room": "abc", "role": "capture"}

        samples = main.get_telemetry_sink().read_all()
        assert len(samples) == 1
        assert samples[0].room == "abc"
        assert samples[0].role == "capture"
        assert samples[0].latency_ms == 35


class TestDetectionEndpoints:
    """Tests for frame ingestion and detection delivery."""

    def test_frame_produces_detection(self, client, sample_image_b64):
        frame = json.dumps({"frame_id": 1, "image": sample_image_b64})

        with client.websocket_connect("/ws/detections") as display:
            with client.websocket_connect("/ws/frames") as capture:
                capture.send_text(frame)

                event = None
                for _ in range(10):
                    message = display.receive_json()
                    if message["type"] == "detections":
                        event = message
                        break
                    # Summary arrived first: offer the frame again
                    capture.send_text(frame)

        assert event is not None
        assert event["frame_id"] == 1
        assert event["input_width"] == 320
        assert event["input_height"] == 240
        assert event["inference_ts"] >= event["recv_ts"]
        assert len(event["detections"]) == 1
        assert event["detections"][0]["label"] == "1"
