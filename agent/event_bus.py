"""
Structured EventBus: one record of everything that happens in a chat turn
and on the peer channel.

Architecture:
    bus.emit() → SessionEvent → listeners[]
      ├── DebugLogListener  → Python logger (file + console)
      └── SSEEventListener  → SSE bridge for /api/events

Routing is tag based: each event type maps to a set of tags ("display",
"console") and listeners pick the tags they care about.
"""

import contextvars
import logging
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional


# ---- Event type constants ----

# Conversation
USER_MESSAGE = "user_message"
AGENT_RESPONSE = "agent_response"

# Tool lifecycle
TOOL_CALL = "tool_call"
TOOL_RESULT = "tool_result"
TOOL_ERROR = "tool_error"

# LLM
LLM_CALL = "llm_call"
LLM_RESPONSE = "llm_response"
LOOP_CAPPED = "loop_capped"

# Peer channel
PEER_CONNECTED = "peer_connected"
PEER_DISCONNECTED = "peer_disconnected"
UI_STATE = "ui_state"
ACTION_SENT = "action_sent"
ACTION_TIMEOUT = "action_timeout"

# Logging-only variants
TOOL_CALL_LOG = "tool_call_log"
TOOL_RESULT_LOG = "tool_result_log"
ERROR_LOG = "error_log"
DEBUG = "debug"


INFRASTRUCTURE_TAGS: dict[str, frozenset[str]] = {
    USER_MESSAGE:       frozenset({"display", "console"}),
    AGENT_RESPONSE:     frozenset({"display", "console"}),
    TOOL_CALL:          frozenset({"display", "console"}),
    TOOL_RESULT:        frozenset({"display", "console"}),
    TOOL_ERROR:         frozenset({"display", "console"}),
    LLM_CALL:           frozenset({"console"}),
    LLM_RESPONSE:       frozenset({"console"}),
    LOOP_CAPPED:        frozenset({"display", "console"}),
    PEER_CONNECTED:     frozenset({"display", "console"}),
    PEER_DISCONNECTED:  frozenset({"display", "console"}),
    UI_STATE:           frozenset(),
    ACTION_SENT:        frozenset({"console"}),
    ACTION_TIMEOUT:     frozenset({"display", "console"}),
    TOOL_CALL_LOG:      frozenset({"console"}),
    TOOL_RESULT_LOG:    frozenset({"console"}),
    ERROR_LOG:          frozenset({"console"}),
    DEBUG:              frozenset({"console"}),
}

_SUMMARY_LIMIT = 120


def _resolve_tags(event_type: str) -> frozenset[str]:
    return INFRASTRUCTURE_TAGS.get(event_type, frozenset())


# ---- SessionEvent ----

@dataclass(frozen=True)
class SessionEvent:
    """A single structured event.

    Fields:
        id: Bus-unique event ID (e.g. "evt_0001").
        type: Event type constant (e.g. "tool_call", "peer_connected").
        ts: ISO 8601 timestamp (UTC, millisecond precision).
        agent: Source component name.
        level: Log level (debug/info/warning/error).
        summary: Short one-liner (<=120 chars).
        details: Full context, multi-line OK.
        data: Structured machine-readable payload.
        tags: Routing tags.
    """
    id: str
    type: str
    ts: str
    agent: str
    level: str
    summary: str
    details: str
    data: dict
    tags: frozenset

    @property
    def msg(self) -> str:
        return self.summary


class EventBus:
    """Event bus with synchronous listener dispatch.

    Thread-safe: emit() and subscribe() use a lock. Listener exceptions
    never propagate to the emitter. Only the most recent *max_events*
    events are kept in memory; listeners see every one.
    """

    def __init__(self, session_id: str = "", max_events: int = 1000):
        self._events: deque[SessionEvent] = deque(maxlen=max_events)
        self._lock = threading.Lock()
        self._listeners: list[Callable[[SessionEvent], None]] = []
        self.session_id = session_id
        self._next_event_id: int = 0

    def emit(
        self,
        type: str,
        *,
        agent: str = "orchestrator",
        level: str = "debug",
        msg: str = "",
        details: str = "",
        data: Optional[dict] = None,
    ) -> SessionEvent:
        """Create, store, and dispatch a SessionEvent.

        Args:
            type: Event type constant (e.g. TOOL_CALL).
            agent: Source component name.
            level: Log level (debug/info/warning/error).
            msg: Message; its first line (truncated) becomes the summary.
            details: Full context. Defaults to ``msg``.
            data: Structured payload.
        """
        first_line = msg.split("\n", 1)[0]
        if len(first_line) > _SUMMARY_LIMIT:
            first_line = first_line[: _SUMMARY_LIMIT - 3] + "..."
        with self._lock:
            self._next_event_id += 1
            event = SessionEvent(
                id=f"evt_{self._next_event_id:04d}",
                type=type,
                ts=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
                agent=agent,
                level=level,
                summary=first_line,
                details=details or msg,
                data=data or {},
                tags=_resolve_tags(type),
            )
            self._events.append(event)
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event)
            except Exception:
                pass  # Never let a listener break the emitter
        return event

    def subscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        """Register a listener called synchronously on each emit()."""
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[SessionEvent], None]) -> None:
        """Remove a previously registered listener."""
        with self._lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def get_events(
        self,
        *,
        types: Optional[set[str]] = None,
        tags: Optional[set[str]] = None,
        since_index: int = 0,
    ) -> list[SessionEvent]:
        """Return events filtered by type and/or tag, starting at *since_index*."""
        with self._lock:
            events = list(self._events)[since_index:]
        result = []
        for e in events:
            if types and e.type not in types:
                continue
            if tags and not (e.tags & frozenset(tags)):
                continue
            result.append(e)
        return result

    def clear(self) -> None:
        """Remove all stored events."""
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


# ---- ContextVar singleton ----

_bus_var: contextvars.ContextVar[Optional[EventBus]] = contextvars.ContextVar(
    "_bus_var", default=None
)

# Module-level fallback for code that runs outside any chat turn
_fallback_bus: Optional[EventBus] = None
_fallback_lock = threading.Lock()


def get_event_bus() -> EventBus:
    """Return the EventBus for the current context.

    Falls back to a module-level bus if no context-specific bus is set, so
    the peer hub and other long-lived components can emit at any time.
    """
    bus = _bus_var.get()
    if bus is not None:
        return bus
    global _fallback_bus
    if _fallback_bus is None:
        with _fallback_lock:
            if _fallback_bus is None:
                _fallback_bus = EventBus(session_id="<fallback>")
    return _fallback_bus


def set_event_bus(bus: EventBus) -> None:
    """Set the EventBus for the current context."""
    _bus_var.set(bus)


# ---- Listeners ----

class DebugLogListener:
    """Writes every SessionEvent to the Python logger."""

    _LEVEL_MAP = {
        "debug": logging.DEBUG,
        "info": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    _TYPE_TO_TAG = {
        USER_MESSAGE: "user_message",
        AGENT_RESPONSE: "agent_response",
        TOOL_CALL: "tool_call",
        TOOL_RESULT: "tool_result",
        TOOL_ERROR: "error",
        ERROR_LOG: "error",
        LOOP_CAPPED: "error",
        ACTION_TIMEOUT: "error",
        PEER_CONNECTED: "peer",
        PEER_DISCONNECTED: "peer",
    }

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def __call__(self, event: SessionEvent) -> None:
        level = self._LEVEL_MAP.get(event.level, logging.DEBUG)
        tag = self._TYPE_TO_TAG.get(event.type, "")
        self._logger.log(level, event.details or event.summary, extra={"log_tag": tag})


class SSEEventListener:
    """Push display-tagged events (plus warnings/errors) to an SSE callback."""

    def __init__(self, callback: Callable[[dict], None]):
        self._callback = callback

    def __call__(self, event: SessionEvent) -> None:
        if "display" not in event.tags and event.level not in ("warning", "error"):
            return
        payload = {
            "id": event.id,
            "type": event.type,
            "ts": event.ts,
            "level": event.level,
            "text": event.summary,
        }
        if event.type == TOOL_CALL:
            payload["tool_name"] = event.data.get("tool_name", "")
            payload["tool_args"] = event.data.get("tool_args", {})
        elif event.type == TOOL_RESULT:
            payload["tool_name"] = event.data.get("tool_name", "")
            payload["status"] = event.data.get("status", "")
        elif event.type in (PEER_CONNECTED, PEER_DISCONNECTED):
            payload["client_id"] = event.data.get("client_id", "")
        self._callback(payload)
