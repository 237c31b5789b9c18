from __future__ import annotations
from typing import TYPE_CHECKING, Awaitable, Callable

if TYPE_CHECKING:
    from api.peers import PeerHub

ToolHandler = Callable[["PeerHub", dict], Awaitable[dict]]

TOOL_REGISTRY: dict[str, ToolHandler] = {}

# ── Snapshot queries ──
from agent.tool_handlers.state import (
    handle_get_ui_state,
    handle_find_component,
    handle_get_component_sitemap,
)

# ── Actions ──
from agent.tool_handlers.actions import (
    handle_click_component,
    handle_type_text,
    handle_clear_input,
    handle_open_component,
    handle_close_component,
    handle_scroll_to_component,
    handle_select_option,
    handle_execute_custom_action,
    handle_execute_navigation_path,
)

TOOL_REGISTRY.update({
    # Snapshot queries
    "get_ui_state": handle_get_ui_state,
    "find_component": handle_find_component,
    "get_component_sitemap": handle_get_component_sitemap,
    # Actions
    "click_component": handle_click_component,
    "type_text": handle_type_text,
    "clear_input": handle_clear_input,
    "open_component": handle_open_component,
    "close_component": handle_close_component,
    "scroll_to_component": handle_scroll_to_component,
    "select_option": handle_select_option,
    "execute_custom_action": handle_execute_custom_action,
    "execute_navigation_path": handle_execute_navigation_path,
})


async def execute_tool(hub: "PeerHub", tool_name: str, tool_args: dict) -> dict:
    """Run one tool; every failure comes back as a ``{"success": False}`` result."""
    from agent.logging import log_error

    handler = TOOL_REGISTRY.get(tool_name)
    if handler is None:
        return {"success": False, "message": f"Unknown tool: {tool_name}", "error": f"Unknown tool: {tool_name}"}
    try:
        return await handler(hub, tool_args or {})
    except KeyError as e:
        return {"success": False, "message": f"Missing required argument {e} for {tool_name}", "error": f"missing argument {e}"}
    except Exception as e:
        log_error(f"Tool {tool_name} raised", exc=e, context={"tool_name": tool_name, "tool_args": tool_args})
        return {"success": False, "message": f"Failed to execute {tool_name}", "error": str(e)}
