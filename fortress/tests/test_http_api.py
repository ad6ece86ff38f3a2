import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from fortress.app.events import BroadcastEventEmitter
from fortress.app.main import create_app
from fortress.app.pipeline.registry import StageRegistry
from fortress.app.session.controller import SessionController
from fortress.tests.mocks import (
    FAST_POLICY,
    MockConversationalist,
    MockReasoner,
    ScriptedScanner,
    StaticDataSource,
    make_finding,
    make_target,
    scanners_for,
)


@pytest.fixture
def client():
    registry = StageRegistry.default()
    events = BroadcastEventEmitter()
    controller = SessionController(
        data_source=StaticDataSource(make_target()),
        scanners=scanners_for(
            registry.ids,
            ScriptedScanner({"secret_ml": [make_finding("F-1")]}),
        ),
        reasoner=MockReasoner(),
        conversationalist=MockConversationalist(),
        registry=registry,
        policy=FAST_POLICY,
        emitter=events,
    )
    app = create_app(controller=controller, events=events)
    with TestClient(app) as test_client:
        yield test_client


def _wait_until_settled(client, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        state = client.get("/state").json()
        if state["status"] not in ("SCANNING", "ANALYZING"):
            return state
        time.sleep(0.01)
    raise AssertionError("audit did not settle")


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "fortress"}


def test_audit_wait_returns_completed_session(client):
    response = client.post("/audit?wait=true", json={"target_url": "acme/widgets"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "completed"
    assert body["session"]["status"] == "PASSED"
    assert [f["id"] for f in body["session"]["findings"]] == ["F-1"]


def test_background_audit_is_accepted_and_settles(client):
    response = client.post("/audit", json={"target_url": "acme/widgets"})

    assert response.status_code == 202
    assert response.json()["status"] == "accepted"

    state = _wait_until_settled(client)
    assert state["status"] == "PASSED"
    assert len(client.get("/history").json()) == 1


def test_empty_target_is_bad_request(client):
    response = client.post("/audit", json={"target_url": "  "})

    assert response.status_code == 400
    assert client.get("/state").json()["status"] == "IDLE"


def test_reset_returns_idle_and_keeps_history(client):
    client.post("/audit?wait=true", json={"target_url": "acme/widgets"})

    response = client.post("/reset")

    assert response.json() == {"status": "IDLE"}
    state = client.get("/state").json()
    assert state["findings"] == []
    assert state["logs"] == []
    assert len(state["history"]) == 1


def test_investigation_flow(client):
    client.post("/audit?wait=true", json={"target_url": "acme/widgets"})

    opened = client.post("/investigation", json={"finding_id": "F-1"})
    assert opened.status_code == 200
    assert opened.json()["explanation"] == "Mock explanation for F-1"

    healed = client.post("/investigation/remediation")
    assert healed.status_code == 200
    assert healed.json()["remediation"]["suggested_fix"] == "Rotate the key"

    closed = client.delete("/investigation")
    assert closed.status_code == 204
    assert client.get("/state").json()["investigation"] is None


def test_unknown_finding_is_not_found(client):
    response = client.post("/investigation", json={"finding_id": "NOPE"})

    assert response.status_code == 404


def test_remediation_without_investigation_is_not_found(client):
    response = client.post("/investigation/remediation")

    assert response.status_code == 404


def test_chat_round_trip(client):
    response = client.post("/chat", json={"text": "hi"})

    assert response.status_code == 200
    assert response.json()["reply"] == {
        "role": "assistant",
        "text": "Use OIDC for deploys.",
    }
    assert len(client.get("/state").json()["chat_turns"]) == 2


def test_blank_chat_is_bad_request(client):
    response = client.post("/chat", json={"text": " "})

    assert response.status_code == 400


def test_session_routes_run_on_the_event_loop(client):
    controller = client.app.state.controller
    seen = {}

    def on_loop(name, method):
        def wrapper(*args, **kwargs):
            try:
                asyncio.get_running_loop()
                seen[name] = "loop"
            except RuntimeError:
                seen[name] = "thread"
            return method(*args, **kwargs)

        return wrapper

    for name in ("reset", "close_investigation", "snapshot"):
        setattr(controller, name, on_loop(name, getattr(controller, name)))

    client.post("/audit?wait=true", json={"target_url": "acme/widgets"})
    client.post("/investigation", json={"finding_id": "F-1"})

    assert client.delete("/investigation").status_code == 204
    assert client.get("/state").status_code == 200
    assert client.post("/reset").json() == {"status": "IDLE"}
    assert seen == {
        "reset": "loop",
        "close_investigation": "loop",
        "snapshot": "loop",
    }
