"""Peer side of the session channel.

A ``PeerChannel`` binds one element registry to an orchestration server over
a WebSocket. While connected it

  - pushes a ``ui_state`` snapshot on connect, then again whenever the
    structural hash (component count, ids, visible ids) changes;
  - sends a ``heartbeat`` every ``heartbeat_interval`` seconds;
  - executes inbound ``action_request`` messages through the action engine
    and answers each with a correlated ``action_result``.

Messages are JSON envelopes ``{"type": ..., "data": ...}``. When the
connection drops the channel waits ``reconnect_delay`` seconds and dials
again until ``close()`` is called.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, Callable, Optional

import websockets
from websockets.exceptions import ConnectionClosed

import config
from .engine import ActionEngine
from .errors import PlanInProgressError
from .registry import ElementRegistry
from .types import ActionOutcome, ActionPlan, ActionStep

logger = logging.getLogger("uipilot")


def now_ms() -> int:
    return int(time.time() * 1000)


def structural_hash(snapshot: dict) -> str:
    """Hash of the parts of a snapshot that count as a topology change.

    Metadata is deliberately left out; value churn alone does not trigger a push.
    """
    return json.dumps({
        "count": len(snapshot["components"]),
        "ids": sorted(c["id"] for c in snapshot["components"]),
        "visible": sorted(snapshot["currentlyVisible"]),
    })


class PeerChannel:
    def __init__(
        self,
        url: str,
        registry: ElementRegistry,
        engine: Optional[ActionEngine] = None,
        *,
        sync_interval: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
        reconnect_delay: Optional[float] = None,
        action_timeout: Optional[float] = None,
        reconnect: bool = True,
        on_connect: Optional[Callable[[], None]] = None,
        on_disconnect: Optional[Callable[[], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
        connect: Callable[[str], Any] = websockets.connect,
    ):
        self.url = url
        self.registry = registry
        self.engine = engine or ActionEngine(registry)
        self.sync_interval = config.SYNC_INTERVAL if sync_interval is None else sync_interval
        self.heartbeat_interval = (
            config.HEARTBEAT_INTERVAL if heartbeat_interval is None else heartbeat_interval
        )
        self.reconnect_delay = config.RECONNECT_DELAY if reconnect_delay is None else reconnect_delay
        self.action_timeout = config.ACTION_TIMEOUT if action_timeout is None else action_timeout
        self.reconnect = reconnect
        self._on_connect = on_connect
        self._on_disconnect = on_disconnect
        self._on_error = on_error
        self._connect = connect

        self.client_id: Optional[str] = None
        self._ws: Any = None
        self._runner: Optional[asyncio.Task] = None
        self._requests: set[asyncio.Task] = set()
        self._connected = asyncio.Event()
        self._closed = False
        self._dirty = True
        self._last_hash: Optional[str] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._ws is not None

    def status(self) -> dict:
        return {"connected": self.connected, "url": self.url, "clientId": self.client_id}

    def start(self) -> asyncio.Task:
        """Start the connect/reconnect loop in the background."""
        if self._runner is None or self._runner.done():
            self._closed = False
            self._runner = asyncio.create_task(self.run())
        return self._runner

    async def wait_connected(self, timeout: Optional[float] = None) -> None:
        await asyncio.wait_for(self._connected.wait(), timeout)

    async def run(self) -> None:
        """Connect and serve until closed, reconnecting after drops."""
        self._unsubscribe = self.registry.subscribe(self._mark_dirty)
        try:
            while not self._closed:
                try:
                    async with self._connect(self.url) as ws:
                        await self._serve(ws)
                except asyncio.CancelledError:
                    raise
                except (OSError, ConnectionClosed) as e:
                    logger.warning(f"[Channel] Connection to {self.url} lost: {e}")
                    self._report_error(e)
                except Exception as e:
                    # Transport failures of any kind end in the reconnect policy
                    logger.error(f"[Channel] Unexpected channel error: {e}", exc_info=True)
                    self._report_error(e)
                if self._closed or not self.reconnect:
                    break
                logger.info(f"[Channel] Reconnecting in {self.reconnect_delay:g}s")
                await asyncio.sleep(self.reconnect_delay)
        finally:
            if self._unsubscribe is not None:
                self._unsubscribe()
                self._unsubscribe = None

    async def close(self) -> None:
        """Stop reconnecting and close the connection."""
        self._closed = True
        self.reconnect = False
        ws = self._ws
        if ws is not None:
            try:
                await ws.close()
            except (OSError, ConnectionClosed):
                pass
        if self._runner is not None and not self._runner.done():
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
        self._runner = None

    # ------------------------------------------------------------------
    # One connected session
    # ------------------------------------------------------------------

    async def _serve(self, ws: Any) -> None:
        self._ws = ws
        self._connected.set()
        logger.info(f"[Channel] Connected to {self.url}")
        if self._on_connect is not None:
            self._on_connect()

        timers = [
            asyncio.create_task(self._sync_loop()),
            asyncio.create_task(self._heartbeat_loop()),
        ]
        try:
            await self.push_state(force=True)
            async for raw in ws:
                self._handle_message(raw)
        finally:
            for task in timers:
                task.cancel()
            for task in list(self._requests):
                task.cancel()
            await asyncio.gather(*timers, *self._requests, return_exceptions=True)
            self._ws = None
            self._connected.clear()
            logger.info("[Channel] Disconnected")
            if self._on_disconnect is not None:
                self._on_disconnect()

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sync_interval)
            if self._dirty:
                await self.push_state()

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            await self._send("heartbeat", {"timestamp": now_ms()})

    def _mark_dirty(self, _graph: Any) -> None:
        self._dirty = True

    async def push_state(self, force: bool = False) -> bool:
        """Send a ``ui_state`` if the structural hash changed (or *force*).

        Returns True when a message was sent.
        """
        self._dirty = False
        snapshot = self.registry.export_snapshot()
        digest = structural_hash(snapshot)
        if not force and digest == self._last_hash:
            return False
        snapshot["timestamp"] = now_ms()
        if not await self._send("ui_state", snapshot):
            return False
        self._last_hash = digest
        logger.debug(f"[Channel] Pushed ui_state ({len(snapshot['components'])} components)")
        return True

    async def _send(self, type: str, data: dict) -> bool:
        ws = self._ws
        if ws is None:
            return False
        try:
            await ws.send(json.dumps({"type": type, "data": data}, default=str))
        except ConnectionClosed:
            logger.debug(f"[Channel] Dropped {type}: connection closed")
            return False
        return True

    def _report_error(self, exc: BaseException) -> None:
        if self._on_error is not None:
            self._on_error(exc)

    # ------------------------------------------------------------------
    # Inbound messages
    # ------------------------------------------------------------------

    def _handle_message(self, raw: Any) -> None:
        try:
            message = json.loads(raw)
            msg_type = message["type"]
            data = message.get("data") or {}
        except (TypeError, ValueError, KeyError) as e:
            logger.warning(f"[Channel] Ignoring malformed message: {e}")
            return

        if msg_type == "action_request":
            task = asyncio.create_task(self._handle_action(data))
            self._requests.add(task)
            task.add_done_callback(self._requests.discard)
        elif msg_type == "heartbeat":
            if isinstance(data, dict) and data.get("clientId"):
                self.client_id = data["clientId"]
                logger.debug(f"[Channel] Server assigned client id {self.client_id}")
        elif msg_type == "error":
            logger.warning(f"[Channel] Server error: {data}")
        else:
            logger.debug(f"[Channel] Ignoring message type {msg_type!r}")

    async def _handle_action(self, data: dict) -> None:
        action = data.get("action", "")
        params = data.get("params") or {}
        request_id = data.get("requestId")
        logger.debug(f"[Channel] action_request {action} {params}")

        try:
            outcome = await asyncio.wait_for(self.execute(action, params), self.action_timeout)
            result = outcome.to_dict()
        except asyncio.TimeoutError:
            # wait_for cancelled the execution; nothing runs past this point
            logger.warning(f"[Channel] {action} timed out after {self.action_timeout:g}s")
            result = {"success": False, "error": f"Action execution timeout ({self.action_timeout:g}s)"}
        except PlanInProgressError as e:
            result = {"success": False, "error": str(e)}
        except Exception as e:
            logger.error(f"[Channel] {action} raised: {e}", exc_info=True)
            result = {"success": False, "error": str(e)}

        if request_id is not None:
            result["requestId"] = request_id
        await self._send("action_result", result)
        # Actions often change metadata only, which the hash ignores
        await self.push_state(force=True)

    async def execute(self, action: str, params: dict) -> ActionOutcome:
        """Translate an ``action_request`` into a step or plan and run it."""
        if action == "navigation_path":
            plan = ActionPlan.from_dict(params)
            logger.debug(
                f"[Channel] Navigation path '{plan.description}' "
                f"({len(plan.steps)} steps, ~{plan.estimated_duration}ms)"
            )
            return await self.engine.execute_plan(plan)

        if action == "custom":
            step = ActionStep(
                component_id=params.get("componentId", ""),
                action=params.get("actionName", ""),
                value=params.get("actionValue"),
                wait=params.get("waitAfter"),
            )
        else:
            value = params["text"] if "text" in params else params.get("value")
            step = ActionStep(
                component_id=params.get("componentId", ""),
                action=action,
                value=value,
                wait=params.get("waitAfter"),
            )
        return await self.engine.execute_step(step)
