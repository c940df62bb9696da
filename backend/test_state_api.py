"""
Tests for the /state API and /health.

A StateServices container with a fake clock is placed on app.state before the
lifespan runs, so the lifespan reuses it instead of building one from the
environment.
"""
from fastapi import FastAPI
from fastapi.testclient import TestClient

from policy_bot.api.routes import state as state_routes
from policy_bot.main import app
from policy_bot.state.services import StateServices


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_services(clock) -> StateServices:
    return StateServices(
        state_ttl_seconds=3600,
        cleanup_interval_seconds=900,
        admin_timeout_seconds=3600,
        admin_sweep_interval_seconds=60,
        flow_context_max_age_seconds=7200,
        clock=clock,
    )


def test_health_and_stats():
    print("\n" + "=" * 70)
    print("TEST 1: /health and /state/stats")
    print("=" * 70)

    clock = FakeClock()
    services = make_services(clock)
    services.flow_states.save_state(-100, "POL1", {}, 7)
    services.admin_states.create_admin_state(42, -100, "policy_search")
    app.state.state_services = services

    with TestClient(app) as client:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "state_layer": "running"}

        response = client.get("/state/stats")
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["cleanup"]["providers"] == ["flow_states", "admin_states", "flow_contexts"]
        assert body["cleanup"]["is_running"] is True
        assert body["flow_states"]["total_flows"] == 1
        assert body["flow_states"]["context_breakdown"] == {"-100:7": 1}
        assert body["admin_states"] == {"active_states": 1, "operations": {"policy_search": 1}}
        assert body["flow_contexts"] == 0

    assert services.started is False, "Lifespan shut the state layer down"
    print("  PASS: health and stats served")


def test_force_cleanup():
    clock = FakeClock()
    services = make_services(clock)
    services.flow_states.save_state(-100, "POL1", {})
    services.flow_states.save_state(-100, "POL2", {})
    app.state.state_services = services

    with TestClient(app) as client:
        response = client.post("/state/cleanup")
        assert response.status_code == 200
        assert response.json()["cleaned"] == 0

        clock.advance(2 * 60 * 60 + 1)
        response = client.post("/state/cleanup")
        body = response.json()
        assert body["cleaned"] == 2
        assert body["provider_results"] == {"flow_states": 2, "admin_states": 0, "flow_contexts": 0}


def test_timeout_and_providers():
    services = make_services(FakeClock())
    app.state.state_services = services

    with TestClient(app) as client:
        response = client.put("/state/timeout", json={"timeout_seconds": 120})
        assert response.status_code == 200
        assert response.json()["timeout_seconds"] == 120

        response = client.put("/state/timeout", json={"timeout_seconds": 0})
        assert response.status_code == 400

        response = client.put("/state/timeout", json={})
        assert response.status_code == 422

        response = client.delete("/state/providers/flow_contexts")
        assert response.status_code == 200
        assert response.json()["providers"] == ["flow_states", "admin_states"]

        response = client.delete("/state/providers/flow_contexts")
        assert response.status_code == 404


def test_clear_chat():
    print("\n" + "=" * 70)
    print("TEST 2: DELETE /state/chats/{chat_id}")
    print("=" * 70)

    services = make_services(FakeClock())
    services.flow_states.save_state(-100, "POL1", {}, 7)
    services.flow_states.save_state(-100, "POL2", {}, 8)
    services.admin_states.create_admin_state(42, -100, "policy_search")
    services.awaiting.awaiting_get_policy_number.set(-100, {}, 7)
    app.state.state_services = services

    with TestClient(app) as client:
        response = client.delete("/state/chats/-100", params={"thread_id": "7", "user_id": 42})
        assert response.status_code == 200, response.text
        body = response.json()
        assert body["chat_id"] == -100
        assert body["thread_id"] == "7"
        assert body["cleared"] == 3
        assert body["results"]["flow_states"] == 1
        assert body["results"]["admin_states"] == 1
        assert body["results"]["awaiting"] == 1

    assert services.flow_states.has_state(-100, "POL2", 8), "Thread 8 untouched"
    assert not services.flow_states.has_any_state(-100, 7)
    print("  PASS: one (chat, thread) reset")


def test_missing_state_layer_is_503():
    bare = FastAPI()
    bare.include_router(state_routes.router, prefix="/state")

    client = TestClient(bare)
    response = client.get("/state/stats")
    assert response.status_code == 503


if __name__ == "__main__":
    test_health_and_stats()
    test_force_cleanup()
    test_timeout_and_providers()
    test_clear_chat()
    test_missing_state_layer_is_503()
    print("\n✅ All state API tests passed!")
