from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from matrix_automation.engine.config import StepErrorPolicy
from matrix_automation.engine.workflow.payload import Payload
from matrix_automation.engine.workflow.registry import TriggerRegistry
from matrix_automation.engine.workflow.triggers import WebhookTrigger
from matrix_automation.engine.workflow.workflow import Workflow
from matrix_automation.server.app import create_app


class CapturingStep:
    id = 1
    name = "capture"
    workflow_id = 10

    def __init__(self) -> None:
        self.payloads: list[Payload] = []

    def run(self, payload: Payload) -> Payload:
        self.payloads.append(payload)
        if payload.message == "throwerr":
            raise RuntimeError("step failed")
        return payload


class Runner:
    """Minimal engine stand-in: one workflow, configurable failure policy."""

    def __init__(self, policy: StepErrorPolicy = StepErrorPolicy.CONTINUE) -> None:
        self.step = CapturingStep()
        self.workflow = Workflow(id=10, name="notify", steps=[self.step])  # type: ignore[list-item]
        self.policy = policy

    def run_workflow(self, workflow_id: int, payload: Payload) -> Payload:
        return self.workflow.run(payload, policy=self.policy)


@pytest.fixture
def runner() -> Runner:
    return Runner()


@pytest.fixture
def client(runner: Runner) -> TestClient:
    registry = TriggerRegistry()
    trigger = WebhookTrigger(id=1, name="hook", workflow_id=10, url_suffix="deploy")
    trigger.bind(runner)
    registry.register_webhook(trigger)
    return TestClient(create_app(registry))


def test_get_with_message_runs_workflow(client: TestClient, runner: Runner) -> None:
    resp = client.get("/webhooks-listener/deploy", params={"message": "hello"})

    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}
    assert runner.step.payloads == [Payload(message="hello", room="")]


def test_get_with_room(client: TestClient, runner: Runner) -> None:
    resp = client.get(
        "/webhooks-listener/deploy", params={"message": "hello", "room": "!ops:example.org"}
    )

    assert resp.status_code == 200
    assert runner.step.payloads == [Payload(message="hello", room="!ops:example.org")]


def test_get_uses_first_value_of_repeated_params(client: TestClient, runner: Runner) -> None:
    resp = client.get("/webhooks-listener/deploy?message=one&message=two")

    assert resp.status_code == 200
    assert runner.step.payloads == [Payload(message="one")]


def test_trailing_slash_resolves_same_trigger(client: TestClient, runner: Runner) -> None:
    resp = client.get("/webhooks-listener/deploy/", params={"message": "hello"})

    assert resp.status_code == 200
    assert runner.step.payloads == [Payload(message="hello")]


def test_unregistered_suffix_is_404(client: TestClient, runner: Runner) -> None:
    resp = client.get("/webhooks-listener/unknown", params={"message": "hello"})

    assert resp.status_code == 404
    assert runner.step.payloads == []


@pytest.mark.parametrize("path", ["/", "/deploy", "/webhooks-listener/", "/health"])
def test_paths_outside_registered_webhooks_are_404(client: TestClient, path: str) -> None:
    assert client.get(path, params={"message": "hello"}).status_code == 404


def test_get_without_message_is_400(client: TestClient, runner: Runner) -> None:
    resp = client.get("/webhooks-listener/deploy")

    assert resp.status_code == 400
    assert resp.json()["detail"] == "No message parameter provided"
    assert runner.step.payloads == []


def test_get_with_empty_message_is_400(client: TestClient) -> None:
    resp = client.get("/webhooks-listener/deploy?message=")
    assert resp.status_code == 400


def test_get_with_empty_room_is_400(client: TestClient, runner: Runner) -> None:
    resp = client.get("/webhooks-listener/deploy?message=hello&room=")

    assert resp.status_code == 400
    assert resp.json()["detail"] == "No room value specified"
    assert runner.step.payloads == []


def test_json_and_form_bodies_yield_identical_payloads(client: TestClient, runner: Runner) -> None:
    body = {"message": "hello", "room": "!ops:example.org"}

    json_resp = client.post("/webhooks-listener/deploy", json=body)
    form_resp = client.post("/webhooks-listener/deploy", data=body)

    assert json_resp.status_code == 200
    assert form_resp.status_code == 200
    assert runner.step.payloads == [
        Payload(message="hello", room="!ops:example.org"),
        Payload(message="hello", room="!ops:example.org"),
    ]


def test_json_content_type_with_charset_is_accepted(client: TestClient, runner: Runner) -> None:
    resp = client.post(
        "/webhooks-listener/deploy",
        content=b'{"message": "hello"}',
        headers={"Content-Type": "application/json; charset=utf-8"},
    )

    assert resp.status_code == 200
    assert runner.step.payloads == [Payload(message="hello")]


@pytest.mark.parametrize(
    ("content", "content_type"),
    [
        (b'{"room": "!ops:example.org"}', "application/json"),
        (b'{"message": ""}', "application/json"),
        (b"message=hello", "text/plain"),
    ],
)
def test_post_without_usable_message_is_400(
    client: TestClient, runner: Runner, content: bytes, content_type: str
) -> None:
    resp = client.post(
        "/webhooks-listener/deploy", content=content, headers={"Content-Type": content_type}
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "No message to post"
    assert runner.step.payloads == []


def test_malformed_json_is_400(client: TestClient) -> None:
    resp = client.post(
        "/webhooks-listener/deploy",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Malformed JSON body"


def test_failed_step_under_continue_policy_still_returns_ok(
    client: TestClient, runner: Runner
) -> None:
    resp = client.get("/webhooks-listener/deploy", params={"message": "throwerr"})
    assert resp.status_code == 200


def test_failed_step_under_halt_policy_is_500(client: TestClient, runner: Runner) -> None:
    runner.policy = StepErrorPolicy.HALT

    resp = client.get("/webhooks-listener/deploy", params={"message": "throwerr"})

    assert resp.status_code == 500


def test_other_methods_are_rejected(client: TestClient) -> None:
    assert client.put("/webhooks-listener/deploy", json={"message": "hello"}).status_code == 405
