"""
Tool definitions for LLM function calling.

Each tool schema defines what the model can call and what parameters it
needs. Tools are executed by ``agent.tool_handlers`` against the connected
UI client.
"""

_COMPONENT_TYPES = [
    "page", "button", "input", "textarea", "select", "checkbox", "toggle", "slider",
    "card", "dialog", "modal", "popover", "list", "form", "tab", "accordion",
    "menu", "dropdown",
]

_STEP_ACTIONS = [
    "click", "type", "clear", "focus", "blur", "scroll", "open", "close",
    "select", "toggle", "hover", "submit",
]


def _component_id(description: str) -> dict:
    return {"type": "string", "description": description}


TOOLS = [
    {
        "name": "get_ui_state",
        "description": """Get the current state of the UI: every registered component with its type, label, state, metadata (current value, min/max, options), the parent/child hierarchy and the ids currently visible.
Use this to understand what is on screen and what you can interact with.""",
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
    {
        "name": "find_component",
        "description": """Find components by name, type, or description. Matches the query (case-insensitive) against id, label, description and metadata.
Returns matching components with their ids and available actions. Use this when you need to locate a specific UI element.""",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Name or description of the component to find (e.g. 'exposure', 'save button')",
                },
                "type": {
                    "type": "string",
                    "enum": _COMPONENT_TYPES,
                    "description": "Optional: filter by component type",
                },
            },
            "required": ["query"],
        },
    },
    {
        "name": "click_component",
        "description": "Click a button, card, tab or other clickable component. Modals, dialogs and popovers are opened through their state instead of a raw click.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the component to click (use find_component to get the id)"),
                "waitAfter": {
                    "type": "number",
                    "description": "Milliseconds to wait after clicking (default: 300)",
                },
            },
            "required": ["componentId"],
        },
    },
    {
        "name": "type_text",
        "description": "Type text into an input field or textarea. Replaces the current value.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the input/textarea component"),
                "text": {"type": "string", "description": "The text to type"},
            },
            "required": ["componentId", "text"],
        },
    },
    {
        "name": "clear_input",
        "description": "Clear the text in an input field or textarea.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the input/textarea component to clear"),
            },
            "required": ["componentId"],
        },
    },
    {
        "name": "open_component",
        "description": "Open a modal, dialog, popover, dropdown or other overlay component.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the component to open"),
            },
            "required": ["componentId"],
        },
    },
    {
        "name": "close_component",
        "description": "Close a modal, dialog, popover, dropdown or other overlay component.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the component to close"),
            },
            "required": ["componentId"],
        },
    },
    {
        "name": "scroll_to_component",
        "description": "Scroll so that a component becomes visible on screen.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the component to scroll to"),
            },
            "required": ["componentId"],
        },
    },
    {
        "name": "select_option",
        "description": "Select an option from a select or dropdown component.",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the select/dropdown component"),
                "value": {"type": "string", "description": "The value to select"},
            },
            "required": ["componentId", "value"],
        },
    },
    {
        "name": "execute_custom_action",
        "description": """Execute a component-specific action that goes beyond clicks and typing, e.g. 'increase' / 'decrease' / 'setValue' on a slider, or 'reset' on an adjustment panel.
The available custom actions of a component are listed in its 'actions' field in the UI state.""",
        "parameters": {
            "type": "object",
            "properties": {
                "componentId": _component_id("The id of the component"),
                "actionName": {
                    "type": "string",
                    "description": "Name of the custom action (e.g. 'increase', 'setValue')",
                },
                "actionValue": {
                    "description": "Optional value passed to the action (e.g. 5 for 'increase')",
                },
            },
            "required": ["componentId", "actionName"],
        },
    },
    {
        "name": "execute_navigation_path",
        "description": """Execute a sequence of steps as one unit. Steps run strictly in order and execution stops at the first failing step; the result lists the steps that completed.
Use this for multi-step interactions such as 'open dialog, type name, click save'.""",
        "parameters": {
            "type": "object",
            "properties": {
                "steps": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "componentId": {"type": "string"},
                            "action": {
                                "type": "string",
                                "description": f"A native action ({', '.join(_STEP_ACTIONS)}) or a custom action name",
                            },
                            "value": {"description": "Optional value for the action"},
                            "wait": {"type": "number", "description": "Milliseconds to wait after the step"},
                        },
                        "required": ["componentId", "action"],
                    },
                    "description": "Steps to execute in sequence",
                },
                "description": {
                    "type": "string",
                    "description": "Human-readable description of what this path does",
                },
            },
            "required": ["steps", "description"],
        },
    },
    {
        "name": "get_component_sitemap",
        "description": """Get a sitemap of the application's UI structure: pages with their nested component trees, the total component count and a count per component type.
Use this to understand the full navigation structure before planning a multi-step task.""",
        "parameters": {"type": "object", "properties": {}, "required": []},
    },
]

TOOL_NAMES = frozenset(t["name"] for t in TOOLS)

# Tools that read state only; repeating them is not a loop
READ_ONLY_TOOLS = frozenset({"get_ui_state", "find_component", "get_component_sitemap"})


def get_tool_schemas(names: list[str] | None = None) -> list[dict]:
    """Return tool schemas for LLM function calling.

    Args:
        names: Optional list of tool names to include. If None, returns all tools.
    """
    if names is None:
        return list(TOOLS)
    wanted = set(names)
    return [t for t in TOOLS if t["name"] in wanted]


def get_function_schemas(names: list[str] | None = None) -> "list[FunctionSchema]":
    """Return tool schemas as ``FunctionSchema`` objects ready for LLM adapters."""
    from .llm.base import FunctionSchema
    return [
        FunctionSchema(
            name=ts["name"],
            description=ts["description"],
            parameters=ts["parameters"],
        )
        for ts in get_tool_schemas(names=names)
    ]
