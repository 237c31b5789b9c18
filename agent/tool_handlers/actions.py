"""Action tool handlers: forwarded to the connected UI client through the hub."""

from __future__ import annotations

from typing import TYPE_CHECKING

from api.peers import PeerError

if TYPE_CHECKING:
    from api.peers import PeerHub


async def _forward(hub: "PeerHub", action: str, params: dict, done: str, failed: str) -> dict:
    """Send one action and wrap the peer's answer as a tool result."""
    try:
        result = await hub.send_action(action, params)
    except PeerError as e:
        return {"success": False, "message": failed, "error": str(e)}

    success = bool(result.get("success"))
    out = {
        "success": success,
        "message": done if success else f"{failed}: {result.get('error') or 'Unknown error'}",
        "data": result,
    }
    if not success and result.get("error"):
        out["error"] = result["error"]
    return out


async def handle_click_component(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    params = {"componentId": cid}
    if tool_args.get("waitAfter") is not None:
        params["waitAfter"] = tool_args["waitAfter"]
    return await _forward(hub, "click", params, f"Clicked {cid}", f"Failed to click {cid}")


async def handle_type_text(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    text = tool_args.get("text", "")
    return await _forward(
        hub, "type", {"componentId": cid, "text": text},
        f'Typed "{text}" into {cid}', f"Failed to type into {cid}",
    )


async def handle_clear_input(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    return await _forward(hub, "clear", {"componentId": cid}, f"Cleared {cid}", f"Failed to clear {cid}")


async def handle_open_component(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    return await _forward(hub, "open", {"componentId": cid}, f"Opened {cid}", f"Failed to open {cid}")


async def handle_close_component(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    return await _forward(hub, "close", {"componentId": cid}, f"Closed {cid}", f"Failed to close {cid}")


async def handle_scroll_to_component(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    return await _forward(
        hub, "scroll", {"componentId": cid}, f"Scrolled to {cid}", f"Failed to scroll to {cid}",
    )


async def handle_select_option(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    value = tool_args.get("value")
    return await _forward(
        hub, "select", {"componentId": cid, "value": value},
        f'Selected "{value}" in {cid}', f"Failed to select an option in {cid}",
    )


async def handle_execute_custom_action(hub: "PeerHub", tool_args: dict) -> dict:
    cid = tool_args["componentId"]
    name = tool_args["actionName"]
    params = {"componentId": cid, "actionName": name}
    if tool_args.get("actionValue") is not None:
        params["actionValue"] = tool_args["actionValue"]
    return await _forward(
        hub, "custom", params,
        f'Executed "{name}" on {cid}', f'Failed to execute "{name}" on {cid}',
    )


async def handle_execute_navigation_path(hub: "PeerHub", tool_args: dict) -> dict:
    description = tool_args.get("description", "")
    return await _forward(
        hub, "navigation_path",
        {"steps": tool_args.get("steps", []), "description": description},
        f"Executed navigation: {description}", "Navigation failed",
    )
