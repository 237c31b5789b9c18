from agent.event_bus import TOOL_CALL, UI_STATE, EventBus


class TestEventHistory:
    def test_history_is_bounded(self):
        bus = EventBus(session_id="test", max_events=100)
        for i in range(5000):
            bus.emit(UI_STATE, msg=f"push {i}")
        assert len(bus) == 100
        events = bus.get_events()
        assert events[0].msg == "push 4900"
        assert events[-1].msg == "push 4999"

    def test_listeners_see_evicted_events(self):
        bus = EventBus(session_id="test", max_events=2)
        seen = []
        bus.subscribe(seen.append)
        for i in range(5):
            bus.emit(TOOL_CALL, msg=f"call {i}")
        assert len(seen) == 5
        assert [e.msg for e in bus.get_events(types={TOOL_CALL})] == ["call 3", "call 4"]

    def test_since_index_applies_to_retained_window(self):
        bus = EventBus(session_id="test", max_events=3)
        for i in range(3):
            bus.emit(UI_STATE, msg=f"push {i}")
        assert [e.msg for e in bus.get_events(since_index=1)] == ["push 1", "push 2"]
        bus.clear()
        assert len(bus) == 0
