"""Server side of the session channel: connected peers and correlated actions.

``PeerHub`` accepts any number of peer WebSockets, keeps the single
authoritative UI snapshot (last writer wins), sends actions to the first
connected peer and matches each ``action_result`` to its request by
``requestId``. A periodic sweep drops peers whose heartbeat went stale.
"""

import asyncio
import json
import logging
import random
import string
import time
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

import config
from agent.event_bus import (
    ACTION_SENT,
    ACTION_TIMEOUT,
    PEER_CONNECTED,
    PEER_DISCONNECTED,
    UI_STATE,
    EventBus,
    get_event_bus,
)

from .models import ActionRequestPayload, UIStatePayload, WireMessage

logger = logging.getLogger("uipilot")


class PeerError(Exception):
    """Base class for failures talking to a peer."""


class NoPeerConnectedError(PeerError):
    def __init__(self) -> None:
        super().__init__("No UI client connected")


class ActionTimeoutError(PeerError):
    def __init__(self, timeout: float) -> None:
        super().__init__(f"Action timeout ({timeout:g}s)")
        self.timeout = timeout


class PeerDisconnectedError(PeerError):
    def __init__(self, client_id: str) -> None:
        super().__init__(f"UI client {client_id} disconnected")
        self.client_id = client_id


def now_ms() -> int:
    return int(time.time() * 1000)


def new_client_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"client_{now_ms()}_{suffix}"


@dataclass
class Peer:
    id: str
    websocket: WebSocket
    connected_at: float = field(default_factory=time.time)
    last_heartbeat: float = field(default_factory=time.time)
    ui_state: Optional[dict] = None
    pending: "OrderedDict[str, asyncio.Future]" = field(default_factory=OrderedDict)


class PeerHub:
    def __init__(
        self,
        bus: Optional[EventBus] = None,
        *,
        heartbeat_timeout: Optional[float] = None,
        reap_interval: Optional[float] = None,
        action_timeout: Optional[float] = None,
    ):
        self.bus = bus or get_event_bus()
        self.heartbeat_timeout = (
            config.HEARTBEAT_TIMEOUT if heartbeat_timeout is None else heartbeat_timeout
        )
        self.reap_interval = config.REAP_INTERVAL if reap_interval is None else reap_interval
        self.action_timeout = (
            config.ACTION_TIMEOUT + config.SERVER_ACTION_GRACE
            if action_timeout is None else action_timeout
        )
        self._peers: "OrderedDict[str, Peer]" = OrderedDict()
        self._ui_state: Optional[dict] = None
        self._reaper: Optional[asyncio.Task] = None

    # ---- Status ----

    @property
    def connected(self) -> bool:
        return bool(self._peers)

    def status(self) -> dict:
        return {"connected": self.connected, "clientCount": len(self._peers)}

    def current_ui_state(self) -> Optional[dict]:
        return self._ui_state

    def peers(self) -> list[Peer]:
        return list(self._peers.values())

    # ---- Peer connections ----

    async def serve(self, websocket: WebSocket) -> None:
        """Handle one peer WebSocket until it disconnects."""
        await websocket.accept()
        peer = Peer(id=new_client_id(), websocket=websocket)
        self._peers[peer.id] = peer
        logger.info(f"[Hub] UI client connected: {peer.id}")
        self.bus.emit(PEER_CONNECTED, agent="hub", level="info",
                      msg=f"UI client connected: {peer.id}", data={"client_id": peer.id})
        try:
            await self._send(peer, "heartbeat", {"message": "Connected to orchestration server", "clientId": peer.id})
            while True:
                raw = await websocket.receive_text()
                self.handle_message(peer, raw)
        except WebSocketDisconnect:
            pass
        finally:
            self._drop(peer)

    def handle_message(self, peer: Peer, raw: str) -> None:
        try:
            message = WireMessage.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[Hub] Malformed message from {peer.id}: {e.error_count()} error(s)")
            return
        msg_type = message.type
        data = message.data

        if msg_type == "ui_state":
            try:
                UIStatePayload.model_validate(data)
            except ValidationError as e:
                logger.warning(f"[Hub] Rejected ui_state from {peer.id}: {e}")
                return
            self._ui_state = {**data, "timestamp": now_ms()}
            peer.ui_state = self._ui_state
            self.bus.emit(UI_STATE, agent="hub",
                          msg=f"ui_state from {peer.id}: {len(data.get('components', []))} components",
                          data={"client_id": peer.id})
        elif msg_type == "heartbeat":
            peer.last_heartbeat = time.time()
        elif msg_type == "action_result":
            self._resolve(peer, data)
        else:
            logger.debug(f"[Hub] Ignoring message type {msg_type!r} from {peer.id}")

    def _resolve(self, peer: Peer, data) -> None:
        if not isinstance(data, dict):
            logger.warning(f"[Hub] Ignoring action_result from {peer.id} without an object payload")
            return
        request_id = data.get("requestId")
        if request_id is not None:
            future = peer.pending.pop(request_id, None)
        elif peer.pending:
            # Peers that don't echo ids answer in order
            _, future = peer.pending.popitem(last=False)
        else:
            future = None
        if future is None:
            logger.warning(f"[Hub] Unmatched action_result from {peer.id} (requestId={request_id})")
            return
        if not future.done():
            future.set_result(data)

    def _drop(self, peer: Peer) -> None:
        if self._peers.pop(peer.id, None) is None:
            return
        for future in peer.pending.values():
            if not future.done():
                future.set_exception(PeerDisconnectedError(peer.id))
        peer.pending.clear()
        logger.info(f"[Hub] UI client disconnected: {peer.id}")
        self.bus.emit(PEER_DISCONNECTED, agent="hub", level="info",
                      msg=f"UI client disconnected: {peer.id}", data={"client_id": peer.id})

    async def _send(self, peer: Peer, type: str, data: dict) -> None:
        await peer.websocket.send_text(json.dumps({"type": type, "data": data}, default=str))

    # ---- Actions ----

    async def send_action(self, action: str, params: dict, timeout: Optional[float] = None) -> dict:
        """Send an action to the first connected peer and wait for its result.

        Raises ``NoPeerConnectedError``, ``ActionTimeoutError`` or
        ``PeerDisconnectedError``.
        """
        peer = next(iter(self._peers.values()), None)
        if peer is None:
            raise NoPeerConnectedError()
        timeout = self.action_timeout if timeout is None else timeout

        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        peer.pending[request_id] = future
        self.bus.emit(ACTION_SENT, agent="hub",
                      msg=f"action_request {action} -> {peer.id}",
                      data={"action": action, "params": params, "request_id": request_id})
        try:
            try:
                payload = ActionRequestPayload(action=action, params=params, requestId=request_id)
                await self._send(peer, "action_request", payload.model_dump())
            except (WebSocketDisconnect, RuntimeError) as e:
                raise PeerDisconnectedError(peer.id) from e
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self.bus.emit(ACTION_TIMEOUT, agent="hub", level="warning",
                          msg=f"No result for {action} from {peer.id} after {timeout:g}s",
                          data={"action": action, "request_id": request_id})
            raise ActionTimeoutError(timeout) from None
        finally:
            peer.pending.pop(request_id, None)

    # ---- Stale peer sweep ----

    async def start(self) -> None:
        """Start the background sweep that drops peers with stale heartbeats."""
        if self._reaper is None:
            self._reaper = asyncio.create_task(self._reap_loop())

    async def stop(self) -> None:
        if self._reaper:
            self._reaper.cancel()
            try:
                await self._reaper
            except asyncio.CancelledError:
                pass
            self._reaper = None

    async def _reap_loop(self) -> None:
        while True:
            await asyncio.sleep(self.reap_interval)
            await self.reap()

    async def reap(self) -> list[str]:
        """Close and drop every peer whose last heartbeat is too old."""
        cutoff = time.time() - self.heartbeat_timeout
        stale = [p for p in self._peers.values() if p.last_heartbeat < cutoff]
        for peer in stale:
            logger.warning(f"[Hub] Removing stale UI client: {peer.id}")
            self._drop(peer)
            try:
                await peer.websocket.close()
            except RuntimeError:
                pass  # already closed
        return [p.id for p in stale]
