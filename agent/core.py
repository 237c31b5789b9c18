"""
Core agent logic - drives model calls and tool execution for one chat turn.

``ChatOrchestrator.run_turn`` sends the conversation to the model, runs the
tools it requests against the connected UI client (through ``PeerHub``),
feeds the results back and repeats until the model answers without tools or
the iteration cap is reached.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

import config
from .llm import LLMAdapter, LLMResponse
from .tools import READ_ONLY_TOOLS, get_function_schemas
from .tool_handlers import execute_tool
from .tool_timing import ToolTimer, stamp_tool_result
from .prompts import get_system_prompt
from .loop_guard import LoopGuard
from .turn_limits import get_limit as get_turn_limit
from .logging import get_logger, log_error, log_tool_call, log_tool_result
from .event_bus import (
    EventBus,
    get_event_bus,
    USER_MESSAGE,
    AGENT_RESPONSE,
    TOOL_CALL,
    TOOL_RESULT,
    TOOL_ERROR,
    LLM_CALL,
    LLM_RESPONSE,
    LOOP_CAPPED,
    DEBUG,
)

if TYPE_CHECKING:
    from api.peers import PeerHub

DEFAULT_REPLY = "I understand. How can I help you?"

# Tools whose ledger line shows no arguments
_NO_ARG_TOOLS = {"get_ui_state", "get_component_sitemap"}


@dataclass
class StepRecord:
    """One executed tool call, as listed in the reply's step ledger."""
    index: int
    tool: str
    args: dict
    result: dict

    @property
    def success(self) -> bool:
        return bool(self.result.get("success"))

    def describe(self) -> str:
        args = self.args
        if self.tool in _NO_ARG_TOOLS:
            detail = ""
        elif self.tool in ("click_component", "find_component"):
            detail = args.get("componentId") or args.get("query") or ""
        elif self.tool == "type_text":
            detail = f'"{args.get("text", "")}" → {args.get("componentId")}'
        elif self.tool == "execute_custom_action":
            value = args.get("actionValue")
            detail = f"{args.get('actionName')}({'' if value is None else value}) → {args.get('componentId')}"
        else:
            detail = json.dumps(args, default=str)
        mark = "✓" if self.success else "✗"
        name = self.tool.replace("_", " ")
        return f"{self.index}. {mark} {name}{': ' + detail if detail else ''}"


@dataclass
class TurnResult:
    """Outcome of one chat turn.

    Attributes:
        text: Final reply shown to the user (model text plus step ledger).
        steps: Every tool call executed during the turn.
        iterations: Number of tool-requesting model responses that were served.
        capped: True when the iteration cap stopped the loop.
        error: Model-call failure text, if the turn ended on one.
    """
    text: str
    steps: list[StepRecord] = field(default_factory=list)
    iterations: int = 0
    capped: bool = False
    error: Optional[str] = None


class ChatOrchestrator:
    """Runs chat turns against a model adapter and a peer hub."""

    def __init__(
        self,
        adapter: LLMAdapter,
        hub: "PeerHub",
        model: Optional[str] = None,
        max_iterations: Optional[int] = None,
        *,
        event_bus: Optional[EventBus] = None,
        max_output_tokens: Optional[int] = None,
    ):
        self.adapter = adapter
        self.hub = hub
        self.model = model or config.SMART_MODEL
        self.max_iterations = (
            get_turn_limit("orchestrator.max_iterations") if max_iterations is None else max_iterations
        )
        self.max_output_tokens = max_output_tokens or config.MAX_OUTPUT_TOKENS
        self._event_bus = event_bus or get_event_bus()
        self.logger = get_logger()

    async def run_turn(self, messages: list[dict]) -> TurnResult:
        """Answer the last user message of *messages*.

        Earlier messages become the session history. Model failures are
        turned into a short apology; they never propagate.
        """
        if not messages:
            raise ValueError("run_turn needs at least one message")

        user_message = messages[-1]["content"]
        self._event_bus.emit(USER_MESSAGE, level="info", msg=f"[User] {user_message}",
                             data={"text": user_message, "history": len(messages) - 1})

        guard = LoopGuard(
            max_iterations=self.max_iterations,
            dup_free_passes=get_turn_limit("orchestrator.dup_free_passes"),
        )
        steps: list[StepRecord] = []
        text_parts: list[str] = []
        capped = False

        try:
            chat = self.adapter.create_chat(
                model=self.model,
                system_prompt=get_system_prompt(),
                tools=get_function_schemas(),
                history=messages[:-1],
                max_output_tokens=self.max_output_tokens,
            )
            response = await self._send(chat, user_message)
            text_parts.append(response.text)

            while response.tool_calls:
                if not guard.next_iteration():
                    capped = True
                    break

                tool_results = []
                for tc in response.tool_calls:
                    args = dict(tc.args) if tc.args else {}
                    result = await self._execute_tool_safe(tc.name, args)
                    if tc.name not in READ_ONLY_TOOLS:
                        verdict = guard.record_tool_call(tc.name, args)
                        if verdict.warning:
                            result["_duplicate_warning"] = verdict.warning
                    steps.append(StepRecord(len(steps) + 1, tc.name, args, result))
                    tool_results.append(
                        self.adapter.make_tool_result_message(tc.name, result, tool_call_id=tc.id)
                    )

                self._event_bus.emit(DEBUG, msg="[LLM] Feeding tool results back to model...")
                response = await self._send(chat, tool_results)
                text_parts.append(response.text)

        except Exception as e:
            return self._failed_turn(e, steps, guard.iterations)

        text = "".join(text_parts)
        if capped:
            self.logger.warning(f"[Orchestrator] Max iterations reached ({self.max_iterations})")
            self._event_bus.emit(LOOP_CAPPED, level="warning",
                                 msg=f"[Orchestrator] Stopped after {self.max_iterations} tool iterations",
                                 data={"iterations": guard.iterations})
            text += f"\n\n⚠️ Task too complex, stopped after {self.max_iterations} tool iterations."
        if not text.strip():
            text = DEFAULT_REPLY
        if steps:
            text += "\n\n**Steps executed:**\n" + "\n".join(s.describe() for s in steps)

        self._event_bus.emit(AGENT_RESPONSE, level="info", msg=f"[Agent] {text}",
                             data={"text": text, "steps": len(steps), "capped": capped})
        return TurnResult(text=text, steps=steps, iterations=guard.iterations, capped=capped)

    async def _send(self, chat, message) -> LLMResponse:
        self._event_bus.emit(LLM_CALL, msg=f"[LLM] Calling {self.model}...",
                             data={"model": self.model})
        response = await chat.send(message)
        usage = response.usage
        self._event_bus.emit(
            LLM_RESPONSE,
            msg=f"[LLM] Response: {len(response.tool_calls)} tool call(s)",
            data={
                "tool_calls": [tc.name for tc in response.tool_calls],
                "input_tokens": usage.input_tokens,
                "output_tokens": usage.output_tokens,
                "cached_tokens": usage.cached_tokens,
            },
        )
        return response

    async def _execute_tool_safe(self, tool_name: str, tool_args: dict) -> dict:
        """Execute a tool with timing, logging and events; never raises."""
        self._event_bus.emit(
            TOOL_CALL,
            level="info",
            msg=f"[Tool] {tool_name}({tool_args})",
            data={"tool_name": tool_name, "tool_args": tool_args},
        )
        log_tool_call(tool_name, tool_args)

        timer = ToolTimer()
        try:
            with timer:
                result = await execute_tool(self.hub, tool_name, tool_args)
        except Exception as e:
            log_error(f"Unexpected exception in tool {tool_name}", exc=e,
                      context={"tool_name": tool_name, "tool_args": tool_args})
            self._event_bus.emit(TOOL_ERROR, level="error",
                                 msg=f"[Tool] {tool_name} internal error: {e}",
                                 data={"tool_name": tool_name, "error": str(e)})
            result = {"success": False, "message": f"Internal error: {e}", "error": str(e)}

        stamp_tool_result(result, timer.elapsed_ms)
        is_success = bool(result.get("success"))
        log_tool_result(tool_name, result, is_success)
        self._event_bus.emit(
            TOOL_RESULT,
            level="info" if is_success else "warning",
            msg=f"[Tool Result] {tool_name}: {result.get('message', 'success' if is_success else 'error')}",
            data={
                "tool_name": tool_name,
                "status": "success" if is_success else "error",
                "elapsed_ms": timer.elapsed_ms,
            },
        )
        return result

    def _failed_turn(self, exc: Exception, steps: list[StepRecord], iterations: int) -> TurnResult:
        if self.adapter.is_auth_error(exc):
            text = "⚠️ Invalid API key. Please check the key configured for the model provider."
        elif self.adapter.is_quota_error(exc):
            text = "⚠️ The model provider is rate limiting requests. Please wait a moment and try again."
        else:
            text = "❌ Sorry, I encountered an error. Please try again."
        log_error("Model call failed during chat turn", exc=exc,
                  context={"model": self.model, "steps": len(steps)})
        self._event_bus.emit(AGENT_RESPONSE, level="info", msg=f"[Agent] {text}",
                             data={"text": text, "error": str(exc)})
        return TurnResult(text=text, steps=steps, iterations=iterations, error=str(exc))
