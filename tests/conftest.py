"""Shared fixtures and fakes for the tokenrelay tests."""

import asyncio
import json

import pytest

from tokenrelay.client.history import ChatHistoryStore
from tokenrelay.server.app import RelayApp
from tokenrelay.shared.config import RelaySettings


class ScriptedSource:
    """Token source replaying fixed fragments, then ending, failing or hanging."""

    provider = "scripted"
    model = "scripted-model"

    def __init__(self, fragments=(), error=None, hang=False, delay=0.0):
        self.fragments = list(fragments)
        self.error = error
        self.hang = hang
        self.delay = delay
        self.prompts = []
        self.closed = 0

    async def stream(self, prompt):
        self.prompts.append(prompt)
        try:
            for fragment in self.fragments:
                if self.delay:
                    await asyncio.sleep(self.delay)
                yield fragment
            if self.error is not None:
                raise self.error
            if self.hang:
                await asyncio.sleep(3600)
        finally:
            self.closed += 1


class FakeConnection:
    """Stand-in for RelayConnection recording what the controller sends."""

    def __init__(self, connected=True):
        self.connected = connected
        self.sent = []
        self.on_frame = None
        self.on_state_change = None

    def send(self, data):
        if not self.connected:
            return False
        self.sent.append(json.loads(data))
        return True

    def deliver(self, frame):
        self.on_frame(frame if isinstance(frame, str) else json.dumps(frame))


def make_app(source, **settings):
    return RelayApp(settings=RelaySettings(**settings), source=source)


@pytest.fixture
def history():
    return ChatHistoryStore(greeting=None)


@pytest.fixture
def fake_connection():
    return FakeConnection()
