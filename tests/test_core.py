from unittest.mock import AsyncMock, Mock

import pytest

from agent.core import DEFAULT_REPLY, ChatOrchestrator
from agent.event_bus import AGENT_RESPONSE, LOOP_CAPPED, TOOL_CALL, TOOL_RESULT, EventBus
from agent.llm import ChatSession, LLMAdapter, LLMResponse, ToolCall
from agent.loop_guard import LoopGuard


class FakeAuthError(Exception):
    pass


class FakeQuotaError(Exception):
    pass


class ScriptedSession(ChatSession):
    """Replays a list of responses (or exceptions) and records what was sent."""

    def __init__(self, script):
        self.script = list(script)
        self.sent = []

    async def send(self, message):
        self.sent.append(message)
        item = self.script.pop(0) if self.script else LLMResponse(text="")
        if isinstance(item, Exception):
            raise item
        return item

    def get_history(self):
        return []


class ScriptedAdapter(LLMAdapter):
    def __init__(self, script):
        self.session = ScriptedSession(script)
        self.create_kwargs = None

    def create_chat(self, model, system_prompt, tools=None, *, history=None, max_output_tokens=None):
        self.create_kwargs = {"model": model, "tools": tools, "history": history}
        return self.session

    def make_tool_result_message(self, tool_name, result, *, tool_call_id=None):
        return {"tool": tool_name, "id": tool_call_id, "result": result}

    def is_quota_error(self, exc):
        return isinstance(exc, FakeQuotaError)

    def is_auth_error(self, exc):
        return isinstance(exc, FakeAuthError)


def tool_response(name, args, text="", call_id="c1"):
    return LLMResponse(text=text, tool_calls=[ToolCall(name=name, args=args, id=call_id)])


@pytest.fixture
def hub():
    hub = Mock()
    hub.current_ui_state = Mock(return_value={"components": [{"id": "s"}], "hierarchy": {}, "currentlyVisible": ["s"]})
    hub.send_action = AsyncMock(return_value={"success": True})
    return hub


@pytest.fixture
def bus():
    return EventBus(session_id="test")


def orchestrator(adapter, hub, bus, **kwargs):
    return ChatOrchestrator(adapter, hub, model="test-model", event_bus=bus, **kwargs)


class TestRunTurn:
    @pytest.mark.asyncio
    async def test_plain_answer(self, hub, bus):
        adapter = ScriptedAdapter([LLMResponse(text="Hello there")])
        result = await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "hi"}])

        assert result.text == "Hello there"
        assert result.steps == []
        assert result.iterations == 0
        assert not result.capped
        assert bus.get_events(types=[AGENT_RESPONSE])

    @pytest.mark.asyncio
    async def test_history_and_catalog_passed_to_session(self, hub, bus):
        adapter = ScriptedAdapter([LLMResponse(text="ok")])
        messages = [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ]
        await orchestrator(adapter, hub, bus).run_turn(messages)

        assert adapter.create_kwargs["history"] == messages[:-1]
        assert adapter.create_kwargs["model"] == "test-model"
        assert len(adapter.create_kwargs["tools"]) == 12
        assert adapter.session.sent == ["second"]

    @pytest.mark.asyncio
    async def test_tool_round_trip_and_ledger(self, hub, bus):
        adapter = ScriptedAdapter([
            tool_response("execute_custom_action",
                          {"componentId": "s", "actionName": "increase", "actionValue": 5},
                          text="Raising exposure. "),
            LLMResponse(text="Done, exposure is 15."),
        ])
        result = await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "+5"}])

        hub.send_action.assert_awaited_once_with(
            "custom", {"componentId": "s", "actionName": "increase", "actionValue": 5})
        assert result.iterations == 1
        assert result.text == (
            "Raising exposure. Done, exposure is 15.\n\n**Steps executed:**\n"
            "1. ✓ execute custom action: increase(5) → s"
        )
        tool_results = adapter.session.sent[1]
        assert tool_results[0]["id"] == "c1"
        assert "_elapsed_ms" in tool_results[0]["result"]
        assert "_ts" in tool_results[0]["result"]
        assert bus.get_events(types=[TOOL_CALL]) and bus.get_events(types=[TOOL_RESULT])

    @pytest.mark.asyncio
    async def test_failed_tool_is_marked_and_loop_continues(self, hub, bus):
        hub.send_action.return_value = {"success": False, "error": "Component not found: x"}
        adapter = ScriptedAdapter([
            tool_response("click_component", {"componentId": "x"}),
            LLMResponse(text="That button does not exist."),
        ])
        result = await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "click x"}])

        assert result.text.endswith("1. ✗ click component: x")
        assert adapter.session.sent[1][0]["result"]["success"] is False

    @pytest.mark.asyncio
    async def test_empty_text_gets_default_reply(self, hub, bus):
        adapter = ScriptedAdapter([tool_response("get_ui_state", {}), LLMResponse(text="")])
        result = await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "?"}])
        assert result.text.startswith(DEFAULT_REPLY)
        assert result.text.endswith("1. ✓ get ui state")

    @pytest.mark.asyncio
    async def test_iteration_cap(self, hub, bus):
        # 26 consecutive tool-requesting responses: only 25 are served
        script = [tool_response("get_ui_state", {}, call_id=f"c{i}") for i in range(26)]
        adapter = ScriptedAdapter(script)
        result = await orchestrator(adapter, hub, bus, max_iterations=25).run_turn(
            [{"role": "user", "content": "loop forever"}])

        assert result.capped
        assert result.iterations == 25
        assert len(result.steps) == 25
        assert len(adapter.session.sent) == 26
        assert "Task too complex, stopped after 25 tool iterations." in result.text
        assert bus.get_events(types=[LOOP_CAPPED])

    @pytest.mark.asyncio
    async def test_repeated_action_gets_duplicate_warning(self, hub, bus):
        args = {"componentId": "btn"}
        adapter = ScriptedAdapter([tool_response("click_component", args, call_id=f"c{i}") for i in range(3)]
                                  + [LLMResponse(text="stopped")])
        await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "click"}])

        results = [batch[0]["result"] for batch in adapter.session.sent[1:]]
        assert "_duplicate_warning" not in results[0]
        assert "_duplicate_warning" not in results[1]
        assert "3 times" in results[2]["_duplicate_warning"]


class TestModelErrors:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("exc, expected", [
        (FakeAuthError("401"), "Invalid API key"),
        (FakeQuotaError("429"), "rate limiting"),
        (RuntimeError("boom"), "Sorry, I encountered an error"),
    ])
    async def test_errors_become_replies(self, hub, bus, exc, expected):
        adapter = ScriptedAdapter([exc])
        result = await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "hi"}])
        assert expected in result.text
        assert result.error == str(exc)

    @pytest.mark.asyncio
    async def test_error_mid_turn_keeps_steps(self, hub, bus):
        adapter = ScriptedAdapter([tool_response("get_ui_state", {}), RuntimeError("stream reset")])
        result = await orchestrator(adapter, hub, bus).run_turn([{"role": "user", "content": "hi"}])
        assert len(result.steps) == 1
        assert result.error == "stream reset"


class TestLoopGuard:
    def test_cap(self):
        guard = LoopGuard(max_iterations=2)
        assert guard.next_iteration()
        assert guard.next_iteration()
        assert not guard.next_iteration()
        assert guard.exhausted
        assert guard.iterations == 2

    def test_duplicate_tracking_ignores_arg_order(self):
        guard = LoopGuard(dup_free_passes=1)
        assert guard.record_tool_call("t", {"a": 1, "b": 2}).warning is None
        verdict = guard.record_tool_call("t", {"b": 2, "a": 1})
        assert verdict.count == 2
        assert verdict.warning is not None
