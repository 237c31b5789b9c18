"""End-to-end: peer channel ↔ peer hub over an in-process socket pair."""
import asyncio

import pytest
import pytest_asyncio

from agent.core import ChatOrchestrator
from agent.event_bus import EventBus
from agent.llm import LLMResponse, ToolCall
from agent.tool_handlers import execute_tool
from api.peers import PeerHub
from control import ElementRegistry, ElementType, PeerChannel

from conftest import loopback_connect, wait_until
from test_core import ScriptedAdapter


@pytest_asyncio.fixture
async def stack():
    """Registry with slider-1 at 10, a connected channel and the hub it talks to."""
    registry = ElementRegistry()
    value = {"v": 10}

    def set_value(v):
        value["v"] = int(v)
        registry.update_metadata("slider-1", value=value["v"])

    registry.register(
        "slider-1", ElementType.INPUT, "Exposure",
        available_actions=["increase", "decrease", "setValue"],
        metadata={"value": 10, "min": 0, "max": 100},
        verbs={
            "increase": lambda amount=1: set_value(value["v"] + int(amount)),
            "decrease": lambda amount=1: set_value(value["v"] - int(amount)),
            "setValue": set_value,
        },
    )

    bus = EventBus(session_id="e2e")
    hub = PeerHub(bus, action_timeout=2.0)
    channel = PeerChannel(
        "ws://test/ws", registry, connect=loopback_connect([], hub=hub),
        sync_interval=0.01, heartbeat_interval=60, action_timeout=0.2,
    )
    channel.engine.default_wait = 0
    channel.start()
    await channel.wait_connected(timeout=2)
    await wait_until(lambda: hub.current_ui_state() is not None)
    yield registry, channel, hub, bus
    await channel.close()


def slider_value(hub):
    state = hub.current_ui_state()
    return next(c for c in state["components"] if c["id"] == "slider-1")["metadata"]["value"]


@pytest.mark.asyncio
async def test_custom_verb_updates_reported_value(stack):
    _, channel, hub, _ = stack
    assert slider_value(hub) == 10

    result = await hub.send_action(
        "custom", {"componentId": "slider-1", "actionName": "increase", "actionValue": 5})

    assert result["success"] is True
    await wait_until(lambda: slider_value(hub) == 15)
    assert channel.connected


@pytest.mark.asyncio
async def test_click_on_missing_component_fails_fast(stack):
    _, channel, hub, _ = stack
    result = await execute_tool(hub, "click_component", {"componentId": "ghost-button"})

    assert result["success"] is False
    assert result["error"] == "Component not found: ghost-button"
    assert channel.connected and hub.connected


@pytest.mark.asyncio
async def test_navigation_path_stops_at_failing_step(stack):
    _, _, hub, _ = stack
    result = await hub.send_action("navigation_path", {
        "description": "bump, typo, bump",
        "steps": [
            {"componentId": "slider-1", "action": "increase", "value": 1, "wait": 0},
            {"componentId": "slider-1", "action": "incraese", "value": 1, "wait": 0},
            {"componentId": "slider-1", "action": "increase", "value": 1, "wait": 0},
        ],
    })

    assert result["success"] is False
    assert result["executedSteps"] == [{"componentId": "slider-1", "action": "increase", "value": 1, "wait": 0}]
    assert "Unknown action: incraese" in result["error"]
    await wait_until(lambda: slider_value(hub) == 11)


@pytest.mark.asyncio
async def test_timed_out_step_cannot_mutate_later(stack):
    registry, channel, hub, _ = stack
    mutated = []

    async def stall():
        await asyncio.sleep(1)
        mutated.append(True)

    registry.register("slow", ElementType.CARD, "Slow", verbs={"stall": stall})
    result = await execute_tool(hub, "execute_custom_action", {"componentId": "slow", "actionName": "stall"})

    assert result["success"] is False
    assert result["error"] == "Action execution timeout (0.2s)"
    await asyncio.sleep(0.3)
    assert mutated == []
    assert (await hub.send_action("setValue", {"componentId": "slider-1", "value": 42}))["success"]


@pytest.mark.asyncio
async def test_agent_loop_is_capped(stack):
    _, _, hub, bus = stack
    script = [
        LLMResponse(tool_calls=[ToolCall(name="get_ui_state", args={}, id=f"c{i}")])
        for i in range(26)
    ]
    result = await ChatOrchestrator(ScriptedAdapter(script), hub, model="m", max_iterations=25,
                                    event_bus=bus).run_turn([{"role": "user", "content": "go"}])

    assert result.capped
    assert result.iterations == 25
    assert "Task too complex, stopped after 25 tool iterations." in result.text
    assert all(step.success for step in result.steps)
