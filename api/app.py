"""FastAPI app factory + lifespan (startup/shutdown)."""

import asyncio
import os
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent.event_bus import DebugLogListener, EventBus, SSEEventListener, set_event_bus
from agent.llm import LLMAdapter, create_adapter
from agent.logging import get_logger

from .peers import PeerHub
from .streaming import EventStreamBridge
from . import routes

_UNSET = object()


def create_app(adapter=_UNSET, hub: Optional[PeerHub] = None) -> FastAPI:
    """Build and return the configured FastAPI application.

    Args:
        adapter: LLM adapter for /api/chat. Defaults to ``create_adapter()``
            at startup; pass None to run without a model.
        hub: Peer hub to serve. Defaults to a fresh ``PeerHub`` on the
            app's event bus.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup / shutdown lifecycle."""
        # Startup
        bus = hub.bus if hub is not None else EventBus(session_id="server")
        set_event_bus(bus)
        logger = get_logger()
        log_listener = DebugLogListener(logger)
        bus.subscribe(log_listener)
        bridge = EventStreamBridge(asyncio.get_running_loop())
        sse_listener = SSEEventListener(bridge.callback)
        bus.subscribe(sse_listener)

        peer_hub = hub if hub is not None else PeerHub(bus)
        llm: Optional[LLMAdapter] = create_adapter() if adapter is _UNSET else adapter
        if llm is None:
            logger.warning("[Server] No model API key configured; /api/chat will not call a model")

        routes.event_bus = bus
        routes.event_bridge = bridge
        routes.hub = peer_hub
        routes.adapter = llm
        routes._start_time = time.time()
        app.state.hub = peer_hub
        app.state.event_bus = bus
        await peer_hub.start()

        yield

        # Shutdown
        await peer_hub.stop()
        bus.unsubscribe(log_listener)
        bus.unsubscribe(sse_listener)
        bridge.close()

    app = FastAPI(
        title="uipilot",
        description="Remote control plane for live application UIs",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS: UI clients call from their own origins, so allow all unless restricted
    cors_origins = os.getenv("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["*"],
        allow_credentials=bool(cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.root_router)
    app.include_router(routes.router)
    return app
