"""Read-only tool handlers: answered from the hub's last UI snapshot."""

from __future__ import annotations

import json
from collections import Counter
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from api.peers import PeerHub

_NO_STATE = {
    "success": False,
    "message": "No UI state available. Make sure a UI client is connected.",
}


async def handle_get_ui_state(hub: "PeerHub", tool_args: dict) -> dict:
    ui_state = hub.current_ui_state()
    if not ui_state:
        return dict(_NO_STATE)
    return {
        "success": True,
        "message": (
            f"Found {len(ui_state.get('components', []))} components, "
            f"{len(ui_state.get('currentlyVisible', []))} visible"
        ),
        "data": ui_state,
    }


def _matches(component: dict, needle: str) -> bool:
    if needle in component.get("id", "").lower():
        return True
    if needle in (component.get("label") or "").lower():
        return True
    if needle in (component.get("description") or "").lower():
        return True
    metadata = component.get("metadata")
    return bool(metadata) and needle in json.dumps(metadata, default=str).lower()


async def handle_find_component(hub: "PeerHub", tool_args: dict) -> dict:
    ui_state = hub.current_ui_state()
    if not ui_state:
        return dict(_NO_STATE)

    query = tool_args.get("query", "")
    type_filter = tool_args.get("type")
    needle = query.lower()
    matches = [
        c for c in ui_state.get("components", [])
        if (not type_filter or c.get("type") == type_filter) and _matches(c, needle)
    ]
    if not matches:
        suffix = f' of type "{type_filter}"' if type_filter else ""
        return {"success": False, "message": f'No components found matching "{query}"{suffix}'}

    return {
        "success": True,
        "message": f"Found {len(matches)} matching component(s)",
        "data": [
            {
                "id": c["id"],
                "type": c.get("type"),
                "label": c.get("label"),
                "state": c.get("currentState"),
                "availableActions": c.get("actions", []),
                "description": c.get("description"),
                "metadata": c.get("metadata", {}),
            }
            for c in matches
        ],
    }


def _subtree(parent_id: str, by_id: dict[str, dict], hierarchy: dict, seen: set[str]) -> list[dict]:
    nodes = []
    for child_id in hierarchy.get(parent_id, []):
        child = by_id.get(child_id)
        if child is None or child_id in seen:
            continue
        seen.add(child_id)
        nodes.append({
            "id": child["id"],
            "type": child.get("type"),
            "label": child.get("label"),
            "actions": child.get("actions", []),
            "children": _subtree(child_id, by_id, hierarchy, seen),
        })
    return nodes


async def handle_get_component_sitemap(hub: "PeerHub", tool_args: dict) -> dict:
    ui_state = hub.current_ui_state()
    if not ui_state:
        return dict(_NO_STATE)

    components = ui_state.get("components", [])
    hierarchy = ui_state.get("hierarchy", {})
    by_id = {c["id"]: c for c in components}
    pages = [c for c in components if c.get("type") == "page"]
    sitemap = {
        "pages": [
            {
                "id": page["id"],
                "label": page.get("label"),
                "children": _subtree(page["id"], by_id, hierarchy, {page["id"]}),
            }
            for page in pages
        ],
        "totalComponents": len(components),
        "componentsByType": dict(Counter(c.get("type") for c in components)),
        "hierarchy": hierarchy,
    }
    return {
        "success": True,
        "message": f"Generated sitemap with {len(pages)} pages and {len(components)} total components",
        "data": sitemap,
    }
