"""
MCP server entry point for uipilot.

Exposes the UI-control tools over stdio transport, so any MCP-compatible
client (Claude Desktop, Cursor, etc.) can drive a connected UI directly.
The peer WebSocket endpoint is served by the FastAPI app, started with
uvicorn on a background thread; every tool call is forwarded to that
thread's event loop.

Usage:
    python mcp_server.py              # Start MCP server (stdio)
    python mcp_server.py -v           # With verbose logging (stderr)
    python mcp_server.py --port 3001  # Peer WebSocket port
"""

import argparse
import asyncio
import json
import threading
from typing import Any, Optional

import uvicorn
from mcp.server.fastmcp import FastMCP

import config

# ---------------------------------------------------------------------------
# CLI args (parsed at import time so FastMCP sees them before run())
# ---------------------------------------------------------------------------
_parser = argparse.ArgumentParser(description="uipilot MCP server")
_parser.add_argument("--host", default=config.HTTP_HOST, help="Peer WebSocket host")
_parser.add_argument("--port", type=int, default=config.HTTP_PORT, help="Peer WebSocket port")
_parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
_args, _ = _parser.parse_known_args()

# ---------------------------------------------------------------------------
# Lazy singleton backend (uvicorn on its own thread + loop)
# ---------------------------------------------------------------------------
_backend: Optional["Backend"] = None
_backend_lock = threading.Lock()


class Backend:
    """The peer hub and the event loop it runs on."""

    def __init__(self, host: str, port: int):
        from api.app import create_app
        from api.peers import PeerHub

        self.hub = PeerHub()
        self.loop = asyncio.new_event_loop()
        # The MCP tools are the model here; /api/chat stays disabled
        app = create_app(adapter=None, hub=self.hub)
        # stdout belongs to the MCP transport
        self.server = uvicorn.Server(uvicorn.Config(app, host=host, port=port, log_config=None))
        self.thread = threading.Thread(target=self._run, name="uipilot-peers", daemon=True)

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_until_complete(self.server.serve())

    def start(self) -> "Backend":
        self.thread.start()
        return self

    async def call(self, tool_name: str, tool_args: dict) -> dict:
        from agent.tool_handlers import execute_tool

        future = asyncio.run_coroutine_threadsafe(execute_tool(self.hub, tool_name, tool_args), self.loop)
        return await asyncio.wrap_future(future)


def _get_backend() -> Backend:
    """Return the backend singleton, starting it on first call."""
    global _backend
    if _backend is not None:
        return _backend
    with _backend_lock:
        if _backend is None:
            _backend = Backend(_args.host, _args.port).start()
        return _backend


async def _call(tool_name: str, **tool_args: Any) -> str:
    args = {k: v for k, v in tool_args.items() if v is not None}
    result = await _get_backend().call(tool_name, args)
    return json.dumps(result, indent=2, default=str)


# ---------------------------------------------------------------------------
# MCP server
# ---------------------------------------------------------------------------
mcp = FastMCP(
    "uipilot",
    instructions=(
        "uipilot controls a live application UI that has registered its "
        "components. Call get_ui_state or find_component first to learn "
        "component ids and values, then act with click_component, type_text, "
        "select_option, open_component/close_component or execute_custom_action. "
        "Use execute_navigation_path for multi-step sequences."
    ),
)


@mcp.tool()
async def get_ui_state() -> str:
    """Get every registered component with its state, metadata and visibility."""
    return await _call("get_ui_state")


@mcp.tool()
async def find_component(query: str, type: Optional[str] = None) -> str:
    """Find components whose id, label, description or metadata match *query*."""
    return await _call("find_component", query=query, type=type)


@mcp.tool()
async def click_component(componentId: str, waitAfter: Optional[int] = None) -> str:
    """Click a button, card, tab or other clickable component."""
    return await _call("click_component", componentId=componentId, waitAfter=waitAfter)


@mcp.tool()
async def type_text(componentId: str, text: str) -> str:
    """Type text into an input or textarea, replacing its value."""
    return await _call("type_text", componentId=componentId, text=text)


@mcp.tool()
async def clear_input(componentId: str) -> str:
    """Clear an input or textarea."""
    return await _call("clear_input", componentId=componentId)


@mcp.tool()
async def open_component(componentId: str) -> str:
    """Open a modal, dialog, popover or dropdown."""
    return await _call("open_component", componentId=componentId)


@mcp.tool()
async def close_component(componentId: str) -> str:
    """Close a modal, dialog, popover or dropdown."""
    return await _call("close_component", componentId=componentId)


@mcp.tool()
async def scroll_to_component(componentId: str) -> str:
    """Scroll a component into view."""
    return await _call("scroll_to_component", componentId=componentId)


@mcp.tool()
async def select_option(componentId: str, value: str) -> str:
    """Select an option of a select or dropdown."""
    return await _call("select_option", componentId=componentId, value=value)


@mcp.tool()
async def execute_custom_action(componentId: str, actionName: str, actionValue: Any = None) -> str:
    """Run a component verb such as 'increase', 'decrease' or 'setValue'."""
    return await _call(
        "execute_custom_action", componentId=componentId, actionName=actionName, actionValue=actionValue,
    )


@mcp.tool()
async def execute_navigation_path(steps: list[dict], description: str) -> str:
    """Run steps ({componentId, action, value?, wait?}) in order, stopping at the first failure."""
    return await _call("execute_navigation_path", steps=steps, description=description)


@mcp.tool()
async def get_component_sitemap() -> str:
    """Get pages with their nested component trees and per-type counts."""
    return await _call("get_component_sitemap")


if __name__ == "__main__":
    from agent.logging import setup_logging

    setup_logging(verbose=_args.verbose)
    _get_backend()
    mcp.run()
