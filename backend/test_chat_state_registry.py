"""
Tests for "clear everything for this chat": ChatStateRegistry, the
awaiting-input maps and the StateServices container that wires them.
"""
import asyncio

from policy_bot.state.keys import StateKeyManager
from policy_bot.state.registry import ChatStateRegistry
from policy_bot.state.services import StateServices
from policy_bot.telegram.awaiting import AWAITING_STEPS, AwaitingInputs


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_services(clock=None) -> StateServices:
    return StateServices(
        state_ttl_seconds=3600,
        cleanup_interval_seconds=900,
        admin_timeout_seconds=3600,
        admin_sweep_interval_seconds=60,
        flow_context_max_age_seconds=7200,
        clock=clock or FakeClock(),
    )


def test_registry_isolates_failing_callbacks():
    print("\n" + "=" * 70)
    print("TEST 1: Clear callbacks")
    print("=" * 70)

    calls = []
    registry = ChatStateRegistry()

    def broken(chat_id, thread_id, user_id):
        raise RuntimeError("boom")

    def counting(chat_id, thread_id, user_id):
        calls.append((chat_id, thread_id, user_id))
        return 2

    assert registry.register("broken", broken) is True
    assert registry.register("counting", counting) is True
    assert registry.register("silent", lambda *args: None) is True
    assert registry.register("bad", "not callable") is False

    result = registry.clear_chat_state(-100, 7, 42)
    assert result == {"cleared": 2, "results": {"broken": -1, "counting": 2, "silent": 0}}, result
    assert calls == [(-100, 7, 42)]

    assert registry.unregister("broken") is True
    assert registry.unregister("broken") is False
    assert registry.names() == ["counting", "silent"]
    print("  PASS: failing callback reported as -1")


def test_awaiting_inputs_are_thread_scoped():
    awaiting = AwaitingInputs()
    assert [step for step, _ in awaiting.items()] == list(AWAITING_STEPS)

    awaiting.awaiting_get_policy_number.set(-100, {"requested_by": 1}, 7)
    awaiting.awaiting_phone_number.set(-100, {"flow_id": "flow_1"}, 7)
    awaiting.awaiting_save_data.set(-100, {}, 8)

    assert awaiting.active_for(-100, 7) == "awaiting_get_policy_number"
    assert awaiting.active_steps(-100, 7) == ["awaiting_get_policy_number", "awaiting_phone_number"]
    assert awaiting.active_for(-100) is None
    assert awaiting.active_for(-100, 8) == "awaiting_save_data"

    assert awaiting.clear_for_context(-100, 7) == 2
    assert awaiting.active_for(-100, 7) is None
    assert awaiting.active_for(-100, 8) == "awaiting_save_data", "Other thread untouched"

    try:
        awaiting.awaiting_unknown_step
    except AttributeError:
        pass
    else:
        raise AssertionError("Unknown step should raise AttributeError")


def test_services_clear_chat_state_reaches_every_store():
    print("\n" + "=" * 70)
    print("TEST 2: /start clears every store")
    print("=" * 70)

    services = make_services()
    assert services.chat_state.names() == ["flow_states", "admin_states", "flow_contexts", "awaiting"]

    services.flow_states.save_state(-100, "POL1", {"step": "payment"}, 7)
    services.flow_states.save_state(-100, "POL2", {"step": "service"}, 7)
    services.flow_states.save_state(-100, "POL3", {}, 8)
    services.admin_states.create_admin_state(42, -100, "policy_search")
    services.flow_contexts.create_context(StateKeyManager.get_context_key(-100, 7), "awaitingPhone", "POL1")
    services.flow_contexts.create_context(StateKeyManager.get_context_key(-100, 8), "awaitingPhone", "POL3")
    services.awaiting.awaiting_phone_number.set(-100, {"flow_id": "flow_1"}, 7)

    result = services.clear_chat_state(-100, 7, 42)
    assert result["results"] == {
        "flow_states": 2,
        "admin_states": 1,
        "flow_contexts": 1,
        "awaiting": 1,
    }, result["results"]
    assert result["cleared"] == 5

    assert not services.flow_states.has_any_state(-100, 7)
    assert services.flow_states.has_state(-100, "POL3", 8), "Other thread keeps its flow"
    assert services.admin_states.get_admin_state(42, -100) is None
    assert services.flow_contexts.count() == 1, "Thread 8 keeps its sub-flow"
    assert services.awaiting.active_for(-100, 7) is None

    again = services.clear_chat_state(-100, 7, 42)
    assert again["cleared"] == 0
    print("  PASS: every store cleared for the (chat, thread)")


def test_services_cleanup_sweeps_all_providers():
    clock = FakeClock()
    services = make_services(clock)
    assert services.cleanup.get_stats()["providers"] == ["flow_states", "admin_states", "flow_contexts"]

    services.flow_states.save_state(-100, "POL1", {})
    services.admin_states.create_admin_state(42, -100, "policy_search")
    services.flow_contexts.create_context(-100, "awaitingPhone")

    clock.advance(3 * 60 * 60)
    result = asyncio.run(services.cleanup.run_cleanup())
    assert result["provider_results"] == {"flow_states": 1, "admin_states": 1, "flow_contexts": 1}
    assert result["cleaned"] == 3


def test_services_lifecycle():
    async def scenario():
        services = make_services()
        services.init()
        services.init()  # idempotent
        started = (services.started, services.cleanup.is_running)
        services.shutdown()
        services.shutdown()
        return started, (services.started, services.cleanup.is_running)

    started, stopped = asyncio.run(scenario())
    assert started == (True, True)
    assert stopped == (False, False)


if __name__ == "__main__":
    test_registry_isolates_failing_callbacks()
    test_awaiting_inputs_are_thread_scoped()
    test_services_clear_chat_state_reaches_every_store()
    test_services_cleanup_sweeps_all_providers()
    test_services_lifecycle()
    print("\n✅ All chat state tests passed!")
