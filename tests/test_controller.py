"""Tests for ChatController: submit, stop, clear and connection loss."""

import pytest

from tokenrelay.client.controller import CONNECTION_LOST, SEND_FAILED, ChatController
from tokenrelay.shared.entities import AssemblerState, ConnectionState, Role


@pytest.fixture
def chat(fake_connection, history):
    return ChatController(fake_connection, history)


def _contents(history):
    return [(m.role, m.content) for m in history]


class TestSubmit:
    def test_submit_echoes_and_sends_tagged_user_message(self, chat, fake_connection, history):
        assert chat.submit("hello") is True
        assert _contents(history) == [(Role.USER, "hello")]
        assert chat.assembler.state is AssemblerState.STREAMING
        frame = fake_connection.sent[0]
        assert frame["type"] == "user_message"
        assert frame["text"] == "hello"
        assert frame["id"] == chat.assembler.request_id

    def test_full_exchange(self, chat, fake_connection, history):
        chat.submit("hello")
        request_id = fake_connection.sent[0]["id"]
        fake_connection.deliver({"type": "chunk", "text": "Hi", "id": request_id})
        fake_connection.deliver({"type": "chunk", "text": " there", "id": request_id})
        fake_connection.deliver({"type": "end", "id": request_id})
        assert _contents(history) == [(Role.USER, "hello"), (Role.ASSISTANT, "Hi there")]
        assert not chat.is_generating

    def test_legacy_plain_fragments(self, chat, fake_connection, history):
        chat.submit("hello")
        fake_connection.deliver("Hi")
        fake_connection.deliver(" there")
        assert chat.assembler.pending == "Hi there"

    def test_oversized_input_is_rejected_locally(self, chat, fake_connection, history):
        notices = []
        chat.on_notice = notices.append
        assert chat.submit("x" * 2001) is False
        assert fake_connection.sent == []
        assert len(history) == 0
        assert not chat.is_generating
        assert notices and "too long" in notices[0]

    def test_input_at_limit_is_accepted(self, chat, fake_connection):
        assert chat.submit("x" * 2000) is True

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    def test_blank_input_is_rejected(self, chat, fake_connection, history, text):
        assert chat.submit(text) is False
        assert fake_connection.sent == []
        assert len(history) == 0

    def test_submit_while_generating_is_rejected(self, chat, fake_connection, history):
        chat.submit("first")
        assert chat.submit("second") is False
        assert len(fake_connection.sent) == 1
        assert _contents(history) == [(Role.USER, "first")]

    def test_send_while_disconnected(self, chat, fake_connection, history):
        fake_connection.connected = False
        assert chat.submit("hello") is False
        assert _contents(history) == [
            (Role.USER, "hello"),
            (Role.ASSISTANT, SEND_FAILED),
        ]
        assert not chat.is_generating

    def test_can_send(self, chat):
        assert chat.can_send("hi")
        assert not chat.can_send(" ")
        chat.submit("hi")
        assert not chat.can_send("again")


class TestStopAndClear:
    def test_stop_sends_cancel_and_marks_reply(self, chat, fake_connection, history):
        chat.submit("tell me a story")
        request_id = fake_connection.sent[0]["id"]
        fake_connection.deliver({"type": "chunk", "text": "Once upon", "id": request_id})
        chat.stop()

        assert fake_connection.sent[-1] == {"type": "cancel", "id": request_id}
        assert history[-1].content == "Once upon[stopped]"
        assert not chat.is_generating

        fake_connection.deliver({"type": "chunk", "text": " a time", "id": request_id})
        fake_connection.deliver({"type": "end", "cancelled": True, "id": request_id})
        assert history[-1].content == "Once upon[stopped]"

    def test_cancel_ack_does_not_end_next_request(self, chat, fake_connection, history):
        chat.submit("one")
        first_id = fake_connection.sent[0]["id"]
        chat.stop()
        chat.submit("two")
        second_id = fake_connection.sent[-1]["id"]

        fake_connection.deliver({"type": "end", "cancelled": True, "id": first_id})
        assert chat.is_generating
        fake_connection.deliver({"type": "chunk", "text": "answer", "id": second_id})
        fake_connection.deliver({"type": "end", "id": second_id})
        assert history[-1].content == "answer"

    def test_stop_when_idle_does_nothing(self, chat, fake_connection):
        chat.stop()
        assert fake_connection.sent == []

    def test_clear(self, chat, fake_connection, history):
        chat.submit("hello")
        fake_connection.deliver({"type": "chunk", "text": "Hi"})
        chat.clear()
        assert len(history) == 0
        assert not chat.is_generating


class TestConnectionLoss:
    def test_drop_mid_stream_finalizes_and_ignores_late_frames(self, chat, fake_connection, history):
        states = []
        chat.on_state_change = states.append
        chat.submit("hello")
        request_id = fake_connection.sent[0]["id"]
        fake_connection.deliver({"type": "chunk", "text": "Hi", "id": request_id})

        fake_connection.on_state_change(ConnectionState.CLOSED)
        assert not chat.is_generating
        assert history[-1].content == "Hi"

        fake_connection.on_state_change(ConnectionState.CONNECTING)
        fake_connection.on_state_change(ConnectionState.OPEN)
        fake_connection.deliver({"type": "chunk", "text": " late", "id": request_id})
        assert history[-1].content == "Hi"
        assert states == [ConnectionState.CLOSED, ConnectionState.CONNECTING, ConnectionState.OPEN]

    def test_drop_before_any_fragment_records_error(self, chat, fake_connection, history):
        chat.submit("hello")
        fake_connection.on_state_change(ConnectionState.CLOSED)
        assert history[-1].content == CONNECTION_LOST
        assert history[-1].role is Role.ASSISTANT

    def test_malformed_bytes_are_dropped(self, chat, fake_connection):
        chat.submit("hello")
        chat.handle_frame(b"\xff\xfe")
        assert chat.assembler.pending == ""
