"""LLM abstraction layer: provider-agnostic interface for LLM interactions.

Re-exports the public API so consumers can write:
    from agent.llm import LLMAdapter, AnthropicAdapter, OpenAIAdapter, LLMResponse, ...
"""

from .base import LLMAdapter, LLMResponse, ToolCall, UsageMetadata, ChatSession, FunctionSchema
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter


def create_adapter(provider: str | None = None) -> LLMAdapter | None:
    """Build the adapter for *provider* (default: configured provider).

    Returns None when no API key is configured for it.
    """
    import config

    p = (provider or config.LLM_PROVIDER).lower()
    api_key = config.get_api_key(p)
    if not api_key:
        return None
    if p == "openai":
        return OpenAIAdapter(api_key, base_url=config.LLM_BASE_URL)
    if p == "anthropic":
        return AnthropicAdapter(api_key, base_url=config.LLM_BASE_URL)
    raise ValueError(f"Unknown LLM provider: {p!r}")
