"""REST, SSE and WebSocket endpoints for the FastAPI backend."""

import json
import time
from typing import Optional

import config
from fastapi import APIRouter, WebSocket
from fastapi.responses import JSONResponse
from sse_starlette.sse import EventSourceResponse

from agent.core import ChatOrchestrator
from agent.event_bus import EventBus, set_event_bus
from agent.llm import LLMAdapter
from agent.logging import get_logger
from agent.tool_handlers.state import handle_get_ui_state
from agent.tools import TOOLS

from .models import ChatRequest, ChatResponse, ErrorResponse, HealthStatus, PeerStatus
from .peers import PeerHub, now_ms
from .streaming import EventStreamBridge

# /health and /ws live at the root, everything else under /api
root_router = APIRouter()
router = APIRouter(prefix="/api")

# These are injected by app.py lifespan
hub: PeerHub = None  # type: ignore[assignment]
adapter: Optional[LLMAdapter] = None
event_bus: EventBus = None  # type: ignore[assignment]
event_bridge: EventStreamBridge = None  # type: ignore[assignment]
_start_time: float = 0.0

logger = get_logger()

NO_API_KEY_MESSAGE = (
    "⚠️ No model API key is configured on the server. Set ANTHROPIC_API_KEY "
    "(or OPENAI_API_KEY with llm_provider \"openai\") and restart.\n\n"
    "I can explain the connected UI, but I cannot control it without a key."
)

NO_PEER_MESSAGE = (
    "⚠️ No UI client connected. Please make sure:\n"
    "1. Your app is running with its control layer enabled\n"
    "2. It connects to this server's WebSocket endpoint "
    f"({config.WEBSOCKET_URL})\n\n"
    "Reload your app and try again."
)


# ---- Peer WebSocket ----


@root_router.websocket("/ws")
async def peer_socket(websocket: WebSocket):
    """Session channel endpoint for UI clients."""
    await hub.serve(websocket)


# ---- Health ----


@root_router.get("/health", response_model=HealthStatus)
async def health():
    status = hub.status()
    return HealthStatus(
        status="ok",
        websocket=PeerStatus(**status),
        timestamp=now_ms(),
        uptime_seconds=round(time.time() - _start_time, 1),
        api_key_configured=adapter is not None,
    )


# ---- Chat ----


@router.post("/chat", response_model=ChatResponse)
async def chat(req: ChatRequest):
    """Run one agentic turn over the connected UI and return the reply."""
    if not req.messages:
        return JSONResponse(status_code=400, content=ErrorResponse(error="No messages provided").model_dump())
    if adapter is None:
        return ChatResponse(message=NO_API_KEY_MESSAGE)
    if not hub.connected:
        return ChatResponse(message=NO_PEER_MESSAGE)

    logger.info(f"[HTTP] Chat request from session: {req.sessionId or 'anonymous'} "
                f"({len(req.messages)} messages)")
    set_event_bus(event_bus)
    orchestrator = ChatOrchestrator(adapter, hub, event_bus=event_bus)
    result = await orchestrator.run_turn([m.model_dump() for m in req.messages])
    return ChatResponse(message=result.text, error=result.error)


# ---- UI state and catalog ----


@router.get("/ui-state")
async def ui_state():
    """The connected UI's latest snapshot, in the ``get_ui_state`` tool shape."""
    return await handle_get_ui_state(hub, {})


@router.get("/tools")
async def list_tools():
    return {"tools": TOOLS}


# ---- Event stream (SSE) ----


@router.get("/events")
async def events():
    """Server-lifetime SSE stream of tool calls, results and replies.

    Client should reconnect on disconnect.
    """
    queue = event_bridge.subscribe()

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield {"event": event.get("type", "message"), "data": json.dumps(event, default=str)}
        finally:
            event_bridge.unsubscribe(queue)

    return EventSourceResponse(event_generator())
