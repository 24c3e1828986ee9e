"""Tests for the relay WebSocket endpoint and RelaySession."""

import logging
import time

import pytest
from starlette.testclient import TestClient

from conftest import ScriptedSource, make_app
from tokenrelay.server.session import BUSY_ERROR, GENERIC_ERROR
from tokenrelay.shared.entities import HealthStatus
from tokenrelay.shared.errors import UpstreamError


class EagerFailingSource:
    """Token source whose stream() raises before returning an iterator."""

    provider = "eager"
    model = "eager-model"

    def __init__(self, error):
        self.error = error

    def stream(self, prompt):
        raise self.error


def _collect_until_terminal(ws):
    frames = []
    while True:
        frame = ws.receive_json()
        frames.append(frame)
        if frame["type"] in ("end", "error"):
            return frames


class TestStreaming:
    def test_chunks_then_end(self):
        source = ScriptedSource(["Hi", " there"])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "hello", "id": "r1"})
                frames = _collect_until_terminal(ws)

        assert frames == [
            {"type": "chunk", "id": "r1", "text": "Hi"},
            {"type": "chunk", "id": "r1", "text": " there"},
            {"type": "end", "id": "r1"},
        ]
        assert source.prompts == ["hello"]
        assert source.closed == 1

    def test_plain_text_is_a_user_message(self):
        source = ScriptedSource(["ok"])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_text("What is 2 + 2?")
                frames = _collect_until_terminal(ws)

        assert frames == [{"type": "chunk", "text": "ok"}, {"type": "end"}]
        assert source.prompts == ["What is 2 + 2?"]

    def test_empty_fragments_are_skipped(self):
        source = ScriptedSource(["", "a", ""])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "q"})
                frames = _collect_until_terminal(ws)
        assert frames == [{"type": "chunk", "text": "a"}, {"type": "end"}]

    def test_requests_run_one_after_another(self):
        source = ScriptedSource(["x"])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                for request_id in ("a", "b"):
                    ws.send_json({"type": "user_message", "text": "q", "id": request_id})
                    frames = _collect_until_terminal(ws)
                    assert frames[-1] == {"type": "end", "id": request_id}
        assert len(source.prompts) == 2

    def test_completed_stream_logs_usage(self, caplog):
        source = ScriptedSource(["a", "bc"])
        with caplog.at_level(logging.INFO, logger="tokenrelay.server"):
            with TestClient(make_app(source)) as client:
                with client.websocket_connect("/ws") as ws:
                    ws.send_json({"type": "user_message", "text": "q"})
                    _collect_until_terminal(ws)

        done = [r for r in caplog.records if r.getMessage() == "Streaming completed"]
        assert len(done) == 1
        usage = done[0].llm_usage
        assert usage.output_fragments == 2
        assert usage.output_chars == 3
        assert usage.model == "scripted-model"


class TestValidation:
    @pytest.mark.parametrize("text", ["", "   ", "x" * 2001])
    def test_invalid_text_is_rejected_without_upstream_call(self, text):
        source = ScriptedSource(["never"])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": text, "id": "r1"})
                frame = ws.receive_json()

        assert frame["type"] == "error"
        assert frame["id"] == "r1"
        assert source.prompts == []

    def test_limit_is_configurable(self):
        source = ScriptedSource(["ok"])
        with TestClient(make_app(source, max_message_chars=5)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "too long"})
                assert "too long" in ws.receive_json()["message"]
                ws.send_json({"type": "user_message", "text": "short"})
                assert _collect_until_terminal(ws)[-1] == {"type": "end"}

    def test_unknown_frame_answers_error_when_idle(self):
        source = ScriptedSource(["ok"])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "ai_stream", "text": "?"})
                assert ws.receive_json()["type"] == "error"
                ws.send_json({"type": "user_message"})
                assert ws.receive_json()["type"] == "error"
                ws.send_text("still works")
                assert _collect_until_terminal(ws)[-1] == {"type": "end"}


class TestFailures:
    def test_upstream_error_becomes_error_frame(self):
        source = ScriptedSource(["partial"], error=UpstreamError("Model provider returned HTTP 429"))
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "q", "id": "r1"})
                frames = _collect_until_terminal(ws)

        assert frames == [
            {"type": "chunk", "id": "r1", "text": "partial"},
            {"type": "error", "id": "r1", "message": "Model provider returned HTTP 429"},
        ]

    def test_unexpected_exception_becomes_generic_error(self):
        source = ScriptedSource([], error=KeyError("choices"))
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "q"})
                assert ws.receive_json() == {"type": "error", "message": GENERIC_ERROR}
                ws.send_json({"type": "user_message", "text": "again"})
                assert ws.receive_json()["type"] == "error"

    def test_idle_timeout_ends_stream_with_error(self):
        source = ScriptedSource(["slow"], delay=1.0)
        with TestClient(make_app(source, stream_idle_timeout=0.05)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "q"})
                frame = ws.receive_json()

        assert frame["type"] == "error"
        assert "stopped responding" in frame["message"]
        assert source.closed == 1

    @pytest.mark.parametrize(
        "error, message",
        [
            (UpstreamError("Model provider returned HTTP 401"), "Model provider returned HTTP 401"),
            (RuntimeError("not an async generator"), GENERIC_ERROR),
        ],
    )
    def test_source_failing_before_streaming_still_terminates(self, error, message):
        source = EagerFailingSource(error)
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "q", "id": "r1"})
                assert ws.receive_json() == {"type": "error", "id": "r1", "message": message}
                assert _wait_for(lambda: client.get("/ping").json()["active_requests"] == 0)


class TestCancelAndConcurrency:
    def test_cancel_stops_stream_with_cancelled_end(self):
        source = ScriptedSource(["Once upon"], hang=True)
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "story", "id": "r1"})
                assert ws.receive_json() == {"type": "chunk", "id": "r1", "text": "Once upon"}
                ws.send_json({"type": "cancel", "id": "r1"})
                assert ws.receive_json() == {"type": "end", "id": "r1", "cancelled": True}

                ws.send_json({"type": "user_message", "text": "next", "id": "r2"})
                assert ws.receive_json()["id"] == "r2"
                ws.send_json({"type": "cancel"})
                assert ws.receive_json() == {"type": "end", "id": "r2", "cancelled": True}

        assert source.closed == 2

    def test_cancel_when_idle_is_ignored(self):
        source = ScriptedSource(["ok"])
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "cancel"})
                ws.send_json({"type": "user_message", "text": "q"})
                assert _collect_until_terminal(ws) == [{"type": "chunk", "text": "ok"}, {"type": "end"}]

    def test_second_message_in_flight_is_rejected(self):
        source = ScriptedSource(["first"], hang=True)
        with TestClient(make_app(source)) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "one", "id": "r1"})
                assert ws.receive_json()["text"] == "first"
                ws.send_json({"type": "user_message", "text": "two", "id": "r2"})
                assert ws.receive_json() == {"type": "error", "id": "r2", "message": BUSY_ERROR}
                ws.send_json({"type": "cancel"})
                assert ws.receive_json() == {"type": "end", "id": "r1", "cancelled": True}

        assert source.prompts == ["one"]

    def test_disconnect_mid_stream_releases_upstream(self):
        source = ScriptedSource(["tok"], hang=True)
        app = make_app(source)
        with TestClient(app) as client:
            with client.websocket_connect("/ws") as ws:
                ws.send_json({"type": "user_message", "text": "q"})
                ws.receive_json()
                assert client.get("/ping").json()["status"] == "Busy"
            assert _wait_for(lambda: source.closed == 1)
            assert client.get("/ping").json() == {"status": "Healthy", "connections": 0, "active_requests": 0}


def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            return False
        time.sleep(0.01)
    return True


class TestHttpRoutes:
    def test_index(self):
        with TestClient(make_app(ScriptedSource())) as client:
            response = client.get("/")
        assert response.status_code == 200
        assert "/ws" in response.text

    def test_ping_healthy_and_forced(self):
        app = make_app(ScriptedSource())
        with TestClient(app) as client:
            assert client.get("/ping").json()["status"] == "Healthy"
            app.force_health_status(HealthStatus.BUSY)
            assert client.get("/ping").json()["status"] == "Busy"
            app.clear_forced_health_status()
            assert client.get("/ping").json()["status"] == "Healthy"

    def test_static_dir_is_served(self, tmp_path):
        (tmp_path / "index.html").write_text("<h1>chat</h1>", encoding="utf-8")
        app = make_app(ScriptedSource(), static_dir=str(tmp_path))
        with TestClient(app) as client:
            assert client.get("/static/index.html").text == "<h1>chat</h1>"
