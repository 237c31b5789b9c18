"""Anthropic adapter: wraps the ``anthropic`` SDK (async client) for Claude models.

This is the **only** module that imports the ``anthropic`` package.

Key Anthropic API differences from OpenAI:
- System prompt is a separate ``system`` parameter, not a message.
- Strict user/assistant alternation required: consecutive same-role messages
  must be merged.
- Tool results are sent inside a ``user`` message with ``tool_result`` blocks.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any

import anthropic

import config

logger = logging.getLogger("uipilot")

from .base import (
    ChatSession,
    FunctionSchema,
    LLMAdapter,
    LLMResponse,
    ToolCall,
    UsageMetadata,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _build_tools(schemas: list[FunctionSchema] | None) -> list[dict] | None:
    """Convert FunctionSchema list to Anthropic tool format.

    The last tool carries a cache breakpoint; the catalog is identical on
    every iteration of a turn.
    """
    if not schemas:
        return None
    tools = [
        {
            "name": s.name,
            "description": s.description,
            "input_schema": s.parameters,
        }
        for s in schemas
    ]
    tools[-1]["cache_control"] = {"type": "ephemeral"}
    return tools


def _build_system_with_cache(system_prompt: str) -> list[dict]:
    if not system_prompt:
        return []
    return [
        {
            "type": "text",
            "text": system_prompt,
            "cache_control": {"type": "ephemeral"},
        }
    ]


def _parse_response(raw) -> LLMResponse:
    """Parse an Anthropic Messages response into a provider-agnostic LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []
    thoughts: list[str] = []

    for block in raw.content:
        if block.type == "text":
            text_parts.append(block.text)
        elif block.type == "tool_use":
            tool_calls.append(
                ToolCall(
                    name=block.name,
                    args=block.input if isinstance(block.input, dict) else {},
                    id=block.id,
                )
            )
        elif block.type == "thinking":
            thinking_text = getattr(block, "thinking", None)
            if thinking_text:
                thoughts.append(thinking_text)

    usage = UsageMetadata()
    if raw.usage:
        usage = UsageMetadata(
            input_tokens=getattr(raw.usage, "input_tokens", 0) or 0,
            output_tokens=getattr(raw.usage, "output_tokens", 0) or 0,
            cached_tokens=getattr(raw.usage, "cache_read_input_tokens", 0) or 0,
        )

    return LLMResponse(
        text="\n".join(text_parts) if text_parts else "",
        tool_calls=tool_calls,
        usage=usage,
        thoughts=thoughts,
        raw=raw,
    )


def _as_blocks(content) -> list[dict]:
    if isinstance(content, str):
        return [{"type": "text", "text": content}] if content else []
    return list(content)


def _ensure_alternation(messages: list[dict]) -> list[dict]:
    """Merge consecutive same-role messages to satisfy Anthropic's alternation rule."""
    merged: list[dict] = []
    for msg in messages:
        if merged and merged[-1]["role"] == msg["role"]:
            prev = merged[-1]
            prev["content"] = _as_blocks(prev.get("content", "")) + _as_blocks(msg.get("content", ""))
        else:
            merged.append(dict(msg))
    return merged


def _response_to_messages(raw) -> list[dict]:
    """Convert an Anthropic response into message dicts for the history."""
    result: dict[str, Any] = {"role": "assistant", "content": []}

    for block in raw.content:
        if block.type == "text":
            result["content"].append({"type": "text", "text": block.text})
        elif block.type == "tool_use":
            result["content"].append(
                {
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input if isinstance(block.input, dict) else {},
                }
            )

    if not result["content"]:
        result["content"] = [{"type": "text", "text": ""}]

    return [result]


# ---------------------------------------------------------------------------
# AnthropicChatSession
# ---------------------------------------------------------------------------


class AnthropicChatSession(ChatSession):
    """Client-managed chat session for the Anthropic Messages API."""

    def __init__(
        self,
        client: anthropic.AsyncAnthropic,
        model: str,
        system_prompt: list[dict],
        messages: list[dict],
        tools: list[dict] | None,
        max_tokens: int,
    ):
        self._client = client
        self._model = model
        self._system = system_prompt
        self._messages = messages
        self._tools = tools
        self._max_tokens = max_tokens

    def _append_message(self, message) -> None:
        if isinstance(message, str):
            self._messages.append({"role": "user", "content": message})
        elif isinstance(message, list):
            # Tool results: one user message holding every tool_result block
            self._messages.append({"role": "user", "content": message})
        else:
            raise TypeError(f"Unsupported message type: {type(message)}")

    async def send(self, message) -> LLMResponse:
        self._append_message(message)

        kwargs: dict[str, Any] = {
            "model": self._model,
            "messages": _ensure_alternation(self._messages),
            "max_tokens": self._max_tokens,
        }
        if self._system:
            kwargs["system"] = self._system
        if self._tools:
            kwargs["tools"] = self._tools

        raw = await self._client.messages.create(**kwargs)
        self._messages.extend(_response_to_messages(raw))
        return _parse_response(raw)

    def get_history(self) -> list[dict]:
        return list(self._messages)


# ---------------------------------------------------------------------------
# AnthropicAdapter
# ---------------------------------------------------------------------------


class AnthropicAdapter(LLMAdapter):
    """Adapter that wraps the ``anthropic`` SDK for Claude models."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str | None = None,
        timeout_ms: int = 120_000,
    ):
        kwargs: dict[str, Any] = {
            "api_key": api_key,
            "timeout": timeout_ms / 1000.0,
        }
        if base_url:
            kwargs["base_url"] = base_url
        self._client = anthropic.AsyncAnthropic(**kwargs)

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
        max_output_tokens: int | None = None,
    ) -> AnthropicChatSession:
        messages = [{"role": m["role"], "content": m["content"]} for m in history or []]
        return AnthropicChatSession(
            client=self._client,
            model=model,
            system_prompt=_build_system_with_cache(system_prompt),
            messages=messages,
            tools=_build_tools(tools),
            max_tokens=max_output_tokens or config.MAX_OUTPUT_TOKENS,
        )

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> dict:
        """Build an Anthropic tool_result content block."""
        block = {
            "type": "tool_result",
            "tool_use_id": tool_call_id or f"toolu_{uuid.uuid4().hex[:24]}",
            "content": json.dumps(result, default=str),
        }
        if result.get("success") is False:
            block["is_error"] = True
        return block

    def is_quota_error(self, exc: Exception) -> bool:
        return isinstance(exc, anthropic.RateLimitError)

    def is_auth_error(self, exc: Exception) -> bool:
        return isinstance(exc, anthropic.AuthenticationError)

    @property
    def client(self):
        """The underlying ``anthropic.AsyncAnthropic`` client."""
        return self._client
