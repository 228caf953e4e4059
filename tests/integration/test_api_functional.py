import json

import pytest
from fastapi.testclient import TestClient

from process_copilot.api.main import build_services, create_app

from fakes import CountingEmbeddingProvider, ScriptedCompletionProvider, classification_reply

ONBOARDING = {
    "title": "Customer Onboarding Process",
    "content": (
        "<h1>Customer Onboarding Process</h1>"
        "<p>Verify the signed contract in the CRM before onboarding starts.</p>"
        "<ol><li>Send the welcome email.</li><li>Create the customer account.</li></ol>"
    ),
    "tenantId": "tenant-a",
    "tags": ["sales", "onboarding"],
    "assignedTo": [{"email": "ana@example.com", "role": "editor"}],
    "contentType": "sop",
}


def _client(provider: ScriptedCompletionProvider) -> TestClient:
    services = build_services(
        embedding_provider=CountingEmbeddingProvider(), completion_provider=provider
    )
    return TestClient(create_app(services))


@pytest.fixture
def provider() -> ScriptedCompletionProvider:
    return ScriptedCompletionProvider(
        classification=classification_reply("Customer Onboarding Process", 0.95)
    )


@pytest.fixture
def client(provider: ScriptedCompletionProvider) -> TestClient:
    client = _client(provider)
    response = client.post("/index", json=ONBOARDING)
    assert response.status_code == 200
    assert response.json()["isParent"] is False
    return client


def _chat(client: TestClient, query: str, **fields) -> dict:
    body = {"query": query, "tenantId": "tenant-a", "userId": "ana@example.com", "role": "editor"}
    body.update(fields)
    response = client.post("/chat", json=body)
    assert response.status_code == 200
    return response.json()


def _events(body: str) -> list[dict]:
    return [
        json.loads(line[len("data: "):])
        for line in body.split("\n\n")
        if line.startswith("data: ")
    ]


def test_search_respects_tenant_and_assignment(client: TestClient) -> None:
    visible = client.post(
        "/search",
        json={"query": "onboarding", "tenantId": "tenant-a", "userId": "ana@example.com", "role": "editor"},
    )
    hidden = client.post(
        "/search",
        json={"query": "onboarding", "tenantId": "tenant-a", "userId": "bob@example.com", "role": "editor"},
    )
    admin = client.post("/search", json={"query": "onboarding", "tenantId": "tenant-a", "role": "admin"})

    items = visible.json()["items"]
    assert items[0]["title"] == "Customer Onboarding Process"
    assert items[0]["searchTier"] == "exact_title"
    assert items[0]["relevanceScore"] == 1.0
    assert hidden.json()["items"] == []
    assert len(admin.json()["items"]) == 1


def test_advanced_search_returns_composite_scores(client: TestClient) -> None:
    response = client.post(
        "/advanced-search",
        json={"query": "customer onboarding", "tenantId": "tenant-a", "role": "admin", "minScore": 0.0},
    )

    assert response.status_code == 200
    item = response.json()["items"][0]
    assert item["type"] == "sop"
    assert item["compositeScore"] > item["relevanceScore"]


def test_guided_chat_walks_through_the_process(client: TestClient) -> None:
    started = _chat(client, "guide me through Customer Onboarding Process")

    assert started["guidedMode"] is True
    assert started["processTitle"] == "Customer Onboarding Process"
    assert started["progress"]["currentStep"] == 1
    assert started["currentStep"]["title"] == "Verify the contract"
    total = started["progress"]["totalSteps"]

    for expected in range(2, total + 1):
        moved = _chat(client, "next")
        assert moved["progress"]["currentStep"] == expected

    finished = _chat(client, "next")
    assert finished["completed"] is True
    assert client.get("/health").json()["active_sessions"] == 1

    stopped = _chat(client, "stop")
    assert stopped["guidedMode"] is False
    assert client.get("/health").json()["active_sessions"] == 0

    restarted = _chat(client, "guide me through Customer Onboarding Process")
    assert restarted["guidedMode"] is True
    assert restarted["progress"]["currentStep"] == 1


def test_chat_without_guided_mode_answers_from_documents(client: TestClient, provider) -> None:
    reply = _chat(client, "guide me through Customer Onboarding Process", useGuidedMode=False)

    assert reply["guidedMode"] is False
    assert reply["response"] == "Check the signed contract in the CRM first."
    assert reply["sources"][0]["title"] == "Customer Onboarding Process"
    assert "classification" not in provider.kinds()


def test_chat_is_persisted(client: TestClient) -> None:
    _chat(client, "guide me through Customer Onboarding Process")

    response = client.get("/chats", params={"tenantId": "tenant-a", "userId": "ana@example.com"})

    items = response.json()["items"]
    assert [item["type"] for item in items] == ["user", "ai"]
    assert items[0]["message"] == "guide me through Customer Onboarding Process"
    assert items[1]["guidedMode"] is True
    assert items[1]["sources"][0]["relevanceScore"] == 1.0


def test_streaming_emits_chunks_then_sources(client: TestClient, provider) -> None:
    response = client.post(
        "/chat/stream",
        json={
            "query": "Customer Onboarding Process",
            "tenantId": "tenant-a",
            "userId": "ana@example.com",
            "role": "editor",
        },
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _events(response.text)
    text = "".join(event["chunk"] for event in events if "chunk" in event)
    assert text == "Check the signed contract in the CRM first."
    assert events[-1]["done"] is True
    assert events[-1]["sources"][0]["title"] == "Customer Onboarding Process"
    assert provider.stream_closed

    history = client.get("/chats", params={"tenantId": "tenant-a", "userId": "ana@example.com"})
    ai_turn = history.json()["items"][-1]
    assert ai_turn["message"] == text
    assert ai_turn["streaming"] is True


def test_chat_with_streaming_flag_streams(client: TestClient) -> None:
    body = {"query": "Customer Onboarding Process", "tenantId": "tenant-a", "useStreaming": True}

    response = client.post("/chat", json=body)

    assert response.headers["content-type"].startswith("text/event-stream")
    assert _events(response.text)[-1]["done"] is True


@pytest.mark.parametrize(
    "path, body",
    [
        ("/chat", {"query": "", "tenantId": "tenant-a"}),
        ("/chat", {"query": "hello"}),
        ("/search", {"query": "onboarding"}),
        ("/chat/stream", {"query": "hello", "tenantId": "tenant-a"}),
        ("/chat/guided", {"query": "hello", "tenantId": "tenant-a"}),
    ],
)
def test_missing_fields_are_rejected(client: TestClient, provider, path: str, body: dict) -> None:
    response = client.post(path, json=body)

    assert response.status_code == 400
    assert response.json()["code"] == "invalid_request"
    assert provider.calls == []


def test_provider_failure_maps_to_bad_gateway() -> None:
    client = _client(ScriptedCompletionProvider(failing=("answer",)))

    response = client.post(
        "/chat", json={"query": "refund policy", "tenantId": "tenant-a", "useGuidedMode": False}
    )

    assert response.status_code == 502
    assert response.json()["code"] == "provider_error"


def test_health_reports_completion_mode(client: TestClient) -> None:
    payload = client.get("/health").json()

    assert payload["status"] == "ok"
    assert payload["completion_mode"] == "custom"
    assert payload["llm_configured"] is False
