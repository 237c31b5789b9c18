from unittest.mock import AsyncMock, Mock

import pytest

from agent.tool_handlers import TOOL_REGISTRY, execute_tool
from agent.tools import TOOL_NAMES
from api.peers import ActionTimeoutError, NoPeerConnectedError

UI_STATE = {
    "components": [
        {"id": "editor-page", "type": "page", "label": "Editor", "parent": None,
         "actions": [], "currentState": "visible", "description": None, "metadata": {}},
        {"id": "exposure-slider", "type": "slider", "label": "Exposure", "parent": "editor-page",
         "actions": ["increase", "decrease", "setValue"], "currentState": "visible",
         "description": "Exposure adjustment", "metadata": {"value": 10, "min": -100, "max": 100}},
        {"id": "export-dialog", "type": "dialog", "label": "Export photo", "parent": "editor-page",
         "actions": ["open", "close"], "currentState": "hidden", "description": None, "metadata": {}},
        {"id": "format-select", "type": "select", "label": "Format", "parent": "export-dialog",
         "actions": ["select"], "currentState": "hidden", "description": None,
         "metadata": {"value": "jpeg", "options": ["jpeg", "png", "tiff"]}},
    ],
    "hierarchy": {"editor-page": ["exposure-slider", "export-dialog"], "export-dialog": ["format-select"]},
    "currentlyVisible": ["editor-page", "exposure-slider"],
    "timestamp": 1,
}


@pytest.fixture
def hub():
    hub = Mock()
    hub.current_ui_state = Mock(return_value=UI_STATE)
    hub.send_action = AsyncMock(return_value={"success": True, "executedSteps": [], "duration": 3})
    return hub


@pytest.fixture
def empty_hub():
    hub = Mock()
    hub.current_ui_state = Mock(return_value=None)
    hub.send_action = AsyncMock(side_effect=NoPeerConnectedError())
    return hub


def test_registry_covers_catalog():
    assert set(TOOL_REGISTRY) == set(TOOL_NAMES)


class TestSnapshotTools:
    @pytest.mark.asyncio
    async def test_get_ui_state(self, hub):
        result = await execute_tool(hub, "get_ui_state", {})
        assert result["success"]
        assert result["message"] == "Found 4 components, 2 visible"
        assert result["data"] is UI_STATE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tool", ["get_ui_state", "find_component", "get_component_sitemap"])
    async def test_no_state(self, empty_hub, tool):
        result = await execute_tool(empty_hub, tool, {"query": "x"})
        assert not result["success"]
        assert result["message"].startswith("No UI state available")

    @pytest.mark.asyncio
    async def test_find_matches_label_description_and_metadata(self, hub):
        by_label = await execute_tool(hub, "find_component", {"query": "EXPOSURE"})
        assert [c["id"] for c in by_label["data"]] == ["exposure-slider"]
        assert by_label["data"][0]["availableActions"] == ["increase", "decrease", "setValue"]
        assert by_label["data"][0]["state"] == "visible"

        by_metadata = await execute_tool(hub, "find_component", {"query": "tiff"})
        assert [c["id"] for c in by_metadata["data"]] == ["format-select"]

    @pytest.mark.asyncio
    async def test_find_with_type_filter(self, hub):
        result = await execute_tool(hub, "find_component", {"query": "export", "type": "button"})
        assert not result["success"]
        assert result["message"] == 'No components found matching "export" of type "button"'

        result = await execute_tool(hub, "find_component", {"query": "export", "type": "dialog"})
        assert [c["id"] for c in result["data"]] == ["export-dialog"]

    @pytest.mark.asyncio
    async def test_sitemap(self, hub):
        result = await execute_tool(hub, "get_component_sitemap", {})
        sitemap = result["data"]
        assert result["message"] == "Generated sitemap with 1 pages and 4 total components"
        assert sitemap["componentsByType"] == {"page": 1, "slider": 1, "dialog": 1, "select": 1}
        page = sitemap["pages"][0]
        assert [c["id"] for c in page["children"]] == ["exposure-slider", "export-dialog"]
        assert page["children"][1]["children"][0]["id"] == "format-select"


class TestActionTools:
    @pytest.mark.asyncio
    async def test_click_forwards_wait(self, hub):
        result = await execute_tool(hub, "click_component", {"componentId": "btn", "waitAfter": 500})
        hub.send_action.assert_awaited_once_with("click", {"componentId": "btn", "waitAfter": 500})
        assert result["success"]
        assert result["message"] == "Clicked btn"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tool, args, action, params", [
        ("type_text", {"componentId": "in", "text": "hi"}, "type", {"componentId": "in", "text": "hi"}),
        ("clear_input", {"componentId": "in"}, "clear", {"componentId": "in"}),
        ("open_component", {"componentId": "dlg"}, "open", {"componentId": "dlg"}),
        ("close_component", {"componentId": "dlg"}, "close", {"componentId": "dlg"}),
        ("scroll_to_component", {"componentId": "row"}, "scroll", {"componentId": "row"}),
        ("select_option", {"componentId": "fmt", "value": "png"}, "select", {"componentId": "fmt", "value": "png"}),
        ("execute_custom_action", {"componentId": "s", "actionName": "increase", "actionValue": 5},
         "custom", {"componentId": "s", "actionName": "increase", "actionValue": 5}),
        ("execute_navigation_path", {"steps": [{"componentId": "a", "action": "click"}], "description": "d"},
         "navigation_path", {"steps": [{"componentId": "a", "action": "click"}], "description": "d"}),
    ])
    async def test_wire_action(self, hub, tool, args, action, params):
        result = await execute_tool(hub, tool, args)
        hub.send_action.assert_awaited_once_with(action, params)
        assert result["success"]

    @pytest.mark.asyncio
    async def test_peer_failure_is_surfaced(self, hub):
        hub.send_action.return_value = {"success": False, "error": "Component not found: btn"}
        result = await execute_tool(hub, "click_component", {"componentId": "btn"})
        assert not result["success"]
        assert result["error"] == "Component not found: btn"
        assert result["message"] == "Failed to click btn: Component not found: btn"

    @pytest.mark.asyncio
    async def test_transport_errors_become_results(self, hub, empty_hub):
        result = await execute_tool(empty_hub, "click_component", {"componentId": "btn"})
        assert result == {"success": False, "message": "Failed to click btn", "error": "No UI client connected"}

        hub.send_action.side_effect = ActionTimeoutError(12)
        result = await execute_tool(hub, "open_component", {"componentId": "dlg"})
        assert result["error"] == "Action timeout (12s)"

    @pytest.mark.asyncio
    async def test_unknown_tool_and_missing_argument(self, hub):
        unknown = await execute_tool(hub, "launch_rockets", {})
        assert unknown["message"] == "Unknown tool: launch_rockets"

        missing = await execute_tool(hub, "click_component", {})
        assert not missing["success"]
        assert "componentId" in missing["message"]
        hub.send_action.assert_not_awaited()
