"""Agent layer: model adapters, tool catalog and the chat-turn loop.

Lazy imports keep ``import agent.event_bus`` light; ``agent.core`` pulls in
the LLM SDKs and the tool handlers.
"""


def __getattr__(name: str):
    if name in ("ChatOrchestrator", "TurnResult"):
        from .core import ChatOrchestrator, TurnResult
        return ChatOrchestrator if name == "ChatOrchestrator" else TurnResult
    if name in ("TOOLS", "get_tool_schemas"):
        from .tools import TOOLS, get_tool_schemas
        return TOOLS if name == "TOOLS" else get_tool_schemas
    if name == "get_system_prompt":
        from .prompts import get_system_prompt
        return get_system_prompt
    raise AttributeError(f"module 'agent' has no attribute {name!r}")
