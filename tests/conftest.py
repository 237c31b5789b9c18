"""
Pytest configuration for the uipilot test suite.

Provides an in-process socket pair standing in for the WebSocket between a
peer (``PeerChannel``) and the server (``PeerHub``), plus registry fixtures.
"""
import asyncio
import json
import sys
from contextlib import asynccontextmanager
from pathlib import Path

import pytest
from fastapi import WebSocketDisconnect
from websockets.exceptions import ConnectionClosed

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from control import ActionEngine, ElementRegistry, ElementType  # noqa: E402

pytest_plugins = ["pytest_asyncio"]

_CLOSE = object()


class LoopbackPair:
    """Two connected fake sockets: ``server`` for the hub, ``client`` for the peer."""

    def __init__(self):
        self.to_hub: asyncio.Queue = asyncio.Queue()
        self.to_peer: asyncio.Queue = asyncio.Queue()
        self.closed = False
        self.server = HubSocket(self)
        self.client = PeerSocket(self)

    def shutdown(self):
        if self.closed:
            return
        self.closed = True
        self.to_hub.put_nowait(_CLOSE)
        self.to_peer.put_nowait(_CLOSE)

    async def next_to_hub(self, type: str, timeout: float = 2.0) -> dict:
        """Next message of *type* the peer sent; earlier other types are skipped."""
        async def _wait():
            while True:
                item = await self.to_hub.get()
                if item is _CLOSE:
                    raise AssertionError(f"socket closed while waiting for {type}")
                message = json.loads(item)
                if message["type"] == type:
                    return message["data"]
        return await asyncio.wait_for(_wait(), timeout)

    async def next_to_peer(self, type: str, timeout: float = 2.0) -> dict:
        """Next message of *type* the hub sent; earlier other types are skipped."""
        async def _wait():
            while True:
                item = await self.to_peer.get()
                if item is _CLOSE:
                    raise AssertionError(f"socket closed while waiting for {type}")
                message = json.loads(item)
                if message["type"] == type:
                    return message["data"]
        return await asyncio.wait_for(_wait(), timeout)

    async def send_to_peer(self, type: str, data: dict) -> None:
        await self.to_peer.put(json.dumps({"type": type, "data": data}))

    async def send_to_hub(self, type: str, data: dict) -> None:
        await self.to_hub.put(json.dumps({"type": type, "data": data}))


class HubSocket:
    """Quacks like a starlette ``WebSocket`` for ``PeerHub.serve``."""

    def __init__(self, pair: LoopbackPair):
        self.pair = pair
        self.accepted = False

    async def accept(self):
        self.accepted = True

    async def send_text(self, text: str):
        if self.pair.closed:
            raise RuntimeError("socket closed")
        await self.pair.to_peer.put(text)

    async def receive_text(self) -> str:
        item = await self.pair.to_hub.get()
        if item is _CLOSE:
            raise WebSocketDisconnect(code=1000)
        return item

    async def close(self, code: int = 1000):
        self.pair.shutdown()


class PeerSocket:
    """Quacks like a ``websockets`` client connection for ``PeerChannel``."""

    def __init__(self, pair: LoopbackPair):
        self.pair = pair

    async def send(self, text: str):
        if self.pair.closed:
            raise ConnectionClosed(None, None)
        await self.pair.to_hub.put(text)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self.pair.to_peer.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item

    async def close(self):
        self.pair.shutdown()


def loopback_connect(pairs: list, hub=None):
    """Build a ``connect`` factory for ``PeerChannel``.

    Every dial creates a new ``LoopbackPair`` (appended to *pairs*); with a
    *hub*, its server side is served by ``hub.serve`` for the pair's lifetime.
    """
    @asynccontextmanager
    async def connect(url):
        pair = LoopbackPair()
        pairs.append(pair)
        serving = asyncio.create_task(hub.serve(pair.server)) if hub is not None else None
        try:
            yield pair.client
        finally:
            pair.shutdown()
            if serving is not None:
                await serving

    return connect


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


class FakeHandle:
    """Live-element stand-in recording the calls the engine makes."""

    def __init__(self, kind: str = "button"):
        self.kind = kind
        self.calls: list[tuple] = []
        self.value = None

    def click(self):
        self.calls.append(("click",))

    def set_value(self, value):
        self.value = value
        self.calls.append(("set_value", value))

    def focus(self):
        self.calls.append(("focus",))

    def blur(self):
        self.calls.append(("blur",))

    def scroll_into_view(self, options=None):
        self.calls.append(("scroll_into_view", options))

    def hover(self):
        self.calls.append(("hover",))


@pytest.fixture
def registry():
    return ElementRegistry()


@pytest.fixture
def engine(registry):
    return ActionEngine(registry, default_wait=0)


@pytest.fixture
def slider(registry):
    """A slider at 10 whose verbs write back into the registry."""
    state = {"value": 10}

    def set_value(v):
        state["value"] = int(v)
        registry.update_metadata("slider-1", value=state["value"])

    registry.register("page-1", ElementType.PAGE, "Editor")
    registry.register(
        "slider-1", ElementType.SLIDER, "Exposure", parent="page-1",
        available_actions=["increase", "decrease", "setValue"],
        metadata={"value": 10, "min": 0, "max": 100},
        verbs={
            "increase": lambda amount=1: set_value(state["value"] + int(amount)),
            "decrease": lambda amount=1: set_value(state["value"] - int(amount)),
            "setValue": set_value,
            "value": set_value,
        },
    )
    return state
