import asyncio

import pytest
import pytest_asyncio

from control import ConnectionInUseError, ConnectionManager, ElementType, PeerChannel

from conftest import loopback_connect, wait_until


def make_channel(registry, pairs, **options):
    defaults = dict(sync_interval=0.01, heartbeat_interval=60, reconnect_delay=0.01, action_timeout=1.0)
    defaults.update(options)
    return PeerChannel("ws://test/ws", registry, connect=loopback_connect(pairs), **defaults)


@pytest_asyncio.fixture
async def connected(registry, slider):
    """A started channel plus the list of socket pairs it dialed."""
    pairs = []
    channel = make_channel(registry, pairs)
    channel.engine.default_wait = 0
    channel.start()
    await channel.wait_connected(timeout=2)
    yield channel, pairs
    await channel.close()


class TestStateSync:
    @pytest.mark.asyncio
    async def test_snapshot_pushed_on_connect(self, connected):
        channel, pairs = connected
        state = await pairs[0].next_to_hub("ui_state")

        assert {c["id"] for c in state["components"]} == {"page-1", "slider-1"}
        assert state["hierarchy"] == {"page-1": ["slider-1"]}
        assert "timestamp" in state
        assert channel.connected

    @pytest.mark.asyncio
    async def test_metadata_churn_does_not_push(self, connected, registry):
        _, pairs = connected
        await pairs[0].next_to_hub("ui_state")

        registry.update_metadata("slider-1", value=99)
        await asyncio.sleep(0.05)
        assert pairs[0].to_hub.empty()

        registry.register("btn", ElementType.BUTTON, "Save", parent="page-1")
        state = await pairs[0].next_to_hub("ui_state")
        assert "btn" in state["currentlyVisible"]
        # The push carries the latest metadata too
        slider_state = next(c for c in state["components"] if c["id"] == "slider-1")
        assert slider_state["metadata"]["value"] == 99

    @pytest.mark.asyncio
    async def test_add_then_remove_within_a_tick_does_not_push(self, connected, registry):
        _, pairs = connected
        await pairs[0].next_to_hub("ui_state")

        registry.register("toast", ElementType.BUTTON, "Undo", parent="page-1")
        registry.unregister("toast")
        await asyncio.sleep(0.05)
        assert pairs[0].to_hub.empty()

    @pytest.mark.asyncio
    async def test_hiding_an_element_pushes(self, connected, registry):
        _, pairs = connected
        await pairs[0].next_to_hub("ui_state")

        registry.update_state("slider-1", state="hidden")
        state = await pairs[0].next_to_hub("ui_state")
        assert state["currentlyVisible"] == ["page-1"]

    @pytest.mark.asyncio
    async def test_welcome_heartbeat_sets_client_id(self, connected):
        channel, pairs = connected
        await pairs[0].send_to_peer("heartbeat", {"message": "Connected", "clientId": "client_1_abc"})
        await wait_until(lambda: channel.client_id == "client_1_abc")

    @pytest.mark.asyncio
    async def test_heartbeats_are_sent(self, registry):
        pairs = []
        channel = make_channel(registry, pairs, heartbeat_interval=0.02)
        channel.start()
        try:
            await channel.wait_connected(timeout=2)
            beat = await pairs[0].next_to_hub("heartbeat")
            assert "timestamp" in beat
        finally:
            await channel.close()


class TestActions:
    @pytest.mark.asyncio
    async def test_action_result_echoes_request_id_then_fresh_state(self, connected):
        _, pairs = connected
        pair = pairs[0]
        await pair.next_to_hub("ui_state")

        await pair.send_to_peer("action_request", {
            "action": "custom",
            "params": {"componentId": "slider-1", "actionName": "increase", "actionValue": 5},
            "requestId": "req-1",
        })

        result = await pair.next_to_hub("action_result")
        assert result["success"] is True
        assert result["requestId"] == "req-1"
        assert result["executedSteps"] == [{"componentId": "slider-1", "action": "increase", "value": 5}]

        state = await pair.next_to_hub("ui_state")
        slider_state = next(c for c in state["components"] if c["id"] == "slider-1")
        assert slider_state["metadata"]["value"] == 15

    @pytest.mark.asyncio
    async def test_failed_step_is_reported(self, connected):
        _, pairs = connected
        await pairs[0].send_to_peer("action_request", {
            "action": "click", "params": {"componentId": "ghost"}, "requestId": "r",
        })
        result = await pairs[0].next_to_hub("action_result")
        assert result == {
            "success": False, "executedSteps": [], "duration": result["duration"],
            "error": "Component not found: ghost", "requestId": "r",
        }

    @pytest.mark.asyncio
    async def test_timeout_cancels_and_keeps_connection(self, registry, slider):
        pairs = []
        channel = make_channel(registry, pairs, action_timeout=0.05)
        channel.engine.default_wait = 0
        finished = []

        async def stall():
            await asyncio.sleep(5)
            finished.append(True)

        registry.register("slow", ElementType.CARD, "Slow", verbs={"stall": stall})
        channel.start()
        try:
            await channel.wait_connected(timeout=2)
            pair = pairs[0]
            await pair.send_to_peer("action_request", {
                "action": "custom", "params": {"componentId": "slow", "actionName": "stall"},
                "requestId": "t1",
            })
            result = await pair.next_to_hub("action_result")
            assert result["success"] is False
            assert result["error"] == "Action execution timeout (0.05s)"
            assert result["requestId"] == "t1"
            assert finished == []

            await pair.send_to_peer("action_request", {
                "action": "setValue", "params": {"componentId": "slider-1", "value": 3},
                "requestId": "t2",
            })
            assert (await pair.next_to_hub("action_result"))["requestId"] == "t2"
            assert channel.connected
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_navigation_path_runs_as_plan(self, connected, slider):
        _, pairs = connected
        await pairs[0].send_to_peer("action_request", {
            "action": "navigation_path",
            "params": {
                "description": "bump",
                "steps": [
                    {"componentId": "slider-1", "action": "increase", "value": 1, "wait": 0},
                    {"componentId": "slider-1", "action": "increase", "value": 1, "wait": 0},
                ],
            },
            "requestId": "n1",
        })
        result = await pairs[0].next_to_hub("action_result")
        assert result["success"] is True
        assert len(result["executedSteps"]) == 2
        assert "finalState" in result
        assert slider["value"] == 12

    @pytest.mark.asyncio
    async def test_malformed_messages_are_ignored(self, connected):
        channel, pairs = connected
        await pairs[0].to_peer.put("not json")
        await pairs[0].to_peer.put('{"no_type": 1}')
        await pairs[0].send_to_peer("action_request", {
            "action": "setValue", "params": {"componentId": "slider-1", "value": 1}, "requestId": "ok",
        })
        assert (await pairs[0].next_to_hub("action_result"))["requestId"] == "ok"
        assert channel.connected


class TestReconnect:
    @pytest.mark.asyncio
    async def test_redials_after_drop(self, registry, slider):
        pairs = []
        events = []
        channel = make_channel(
            registry, pairs,
            on_connect=lambda: events.append("up"),
            on_disconnect=lambda: events.append("down"),
        )
        channel.start()
        try:
            await channel.wait_connected(timeout=2)
            pairs[0].shutdown()
            await wait_until(lambda: len(pairs) == 2 and channel.connected)
            state = await pairs[1].next_to_hub("ui_state")
            assert len(state["components"]) == 2
            assert events[:3] == ["up", "down", "up"]
        finally:
            await channel.close()

    @pytest.mark.asyncio
    async def test_close_stops_reconnecting(self, registry):
        pairs = []
        channel = make_channel(registry, pairs)
        channel.start()
        await channel.wait_connected(timeout=2)
        await channel.close()
        await asyncio.sleep(0.05)
        assert len(pairs) == 1
        assert not channel.connected


class TestConnectionManager:
    @pytest.mark.asyncio
    async def test_shared_channel_closes_with_last_owner(self, registry):
        pairs = []
        manager = ConnectionManager(registry, connect=loopback_connect(pairs), reconnect_delay=0.01)

        first = await manager.acquire("ws://test/ws")
        second = await manager.acquire("ws://test/ws")
        assert first is second
        assert manager.owners == 2
        await first.wait_connected(timeout=2)

        await manager.release()
        assert first.connected
        await manager.release()
        assert manager.channel is None
        assert not first.connected
        assert len(pairs) == 1

    @pytest.mark.asyncio
    async def test_other_url_while_owned_is_refused(self, registry):
        manager = ConnectionManager(registry, connect=loopback_connect([]))
        async with manager.lease("ws://a/ws"):
            with pytest.raises(ConnectionInUseError):
                await manager.acquire("ws://b/ws")
        assert manager.owners == 0
