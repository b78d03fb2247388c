"""
Shared fixtures for chat gateway tests.

Provides:
- FakeWebSocket: in-memory socket recording every frame sent to it
- FakeClock: controllable time source for call sessions
- manager: fresh ConnectionManager with short call timers
- connect_user: accept and register a FakeWebSocket for a user
"""

from __future__ import annotations

from typing import Any

import pytest
from starlette.websockets import WebSocketState

from chat_gateway.connection_manager import ConnectionManager


# Short call timers keep the suite fast
RING_TIMEOUT = 0.05
OFFER_DELAY = 0.01


class FakeWebSocket:
    """Minimal stand-in for a Starlette WebSocket."""

    def __init__(self, origin: str | None = None) -> None:
        self.client_state = WebSocketState.CONNECTING
        self.application_state = WebSocketState.CONNECTING
        self.headers: dict[str, str] = {"origin": origin} if origin else {}
        self.sent: list[dict[str, Any]] = []
        self.texts: list[str] = []
        self.close_code: int | None = None
        self.close_reason: str | None = None

    async def accept(self) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("WebSocket is not connected")
        self.sent.append(data)

    async def send_text(self, data: str) -> None:
        if self.application_state != WebSocketState.CONNECTED:
            raise RuntimeError("WebSocket is not connected")
        self.texts.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.close_code = code
        self.close_reason = reason
        self.client_state = WebSocketState.DISCONNECTED
        self.application_state = WebSocketState.DISCONNECTED

    def drop(self) -> None:
        """Simulate the peer vanishing without a close handshake."""
        self.client_state = WebSocketState.DISCONNECTED

    @property
    def closed(self) -> bool:
        return self.close_code is not None

    def events(self, name: str) -> list[Any]:
        """Payloads of every frame with the given event name, in order."""
        return [frame["data"] for frame in self.sent if frame["event"] == name]

    def event_names(self) -> list[str]:
        return [frame["event"] for frame in self.sent]

    def clear(self) -> None:
        self.sent.clear()
        self.texts.clear()


class FakeClock:
    """Time source that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def manager(clock):
    """Fresh ConnectionManager; timers are cancelled on teardown."""
    mgr = ConnectionManager(
        ring_timeout=RING_TIMEOUT,
        offer_delay=OFFER_DELAY,
        stale_after=3600.0,
        clock=clock,
    )
    yield mgr
    await mgr.calls.shutdown()


@pytest.fixture
def connect_user(manager):
    """
    Connect a user on a new FakeWebSocket.

    Usage:
        alice = await connect_user("alice", "Alice")
    """

    async def _connect(user_id: str, display_name: str | None = None) -> FakeWebSocket:
        ws = FakeWebSocket()
        await manager.connect(ws, user_id=user_id, display_name=display_name or user_id.title())
        return ws

    return _connect
