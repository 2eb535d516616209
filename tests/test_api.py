"""Test suite for the proxy endpoints."""

import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from persona_studio.api.app import app, get_upstream_client
from persona_studio.services.completion import CompletionClient
from persona_studio.services.openrouter import OpenRouterClient
from persona_studio.services.orchestrator import ConversationOrchestrator

UPSTREAM_URL = "https://upstream.test/api/v1"

CHAT_BODY = {
    "messages": [{"role": "user", "content": "Hi"}],
    "model": "meta-llama/llama-3.2-3b-instruct:free",
    "systemPrompt": "Be kind.",
    "temperature": 0.4,
    "apiKey": "sk-test",
}


def openai_stream(*contents: str) -> bytes:
    lines = [
        "data: " + json.dumps({"choices": [{"delta": {"content": c}}]}) for c in contents
    ]
    lines.append(": OPENROUTER PROCESSING")
    lines.append("data: [DONE]")
    return ("\n\n".join(lines) + "\n\n").encode("utf-8")


@pytest.fixture
def upstream_requests():
    return []


@pytest.fixture
def use_upstream(upstream_requests):
    """Point the proxy at a mocked provider answered by the given handler."""
    def install(handler):
        def recording(request):
            upstream_requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
        app.dependency_overrides[get_upstream_client] = lambda: OpenRouterClient(UPSTREAM_URL, client=client)

    yield install
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_chat_relays_content_frames(use_upstream, upstream_requests):
    """Test that provider deltas are re-emitted as content frames ending with [DONE]."""
    use_upstream(lambda request: httpx.Response(200, content=openai_stream("Hel", "lo")))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/chat", json=CHAT_BODY)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    frames = [line for line in response.text.split("\n") if line]
    assert frames == [
        'data: {"content": "Hel"}',
        'data: {"content": "lo"}',
        "data: [DONE]",
    ]

    sent = json.loads(upstream_requests[0].content)
    assert str(upstream_requests[0].url) == f"{UPSTREAM_URL}/chat/completions"
    assert upstream_requests[0].headers["Authorization"] == "Bearer sk-test"
    assert sent["stream"] is True
    assert sent["temperature"] == 0.4
    assert sent["messages"] == [
        {"role": "system", "content": "Be kind."},
        {"role": "user", "content": "Hi"},
    ]


@pytest.mark.asyncio
async def test_chat_skips_unparseable_upstream_frames(use_upstream):
    """Test that oversized or deeply nested provider frames are dropped, not fatal."""
    body = (
        openai_stream("a")[: -len(b"data: [DONE]\n\n")]
        + b"data: " + b"1" * 5000 + b"\n\n"
        + b"data: " + b"[" * 100000 + b"\n\n"
        + b'data: {"choices": ["not a dict"]}\n\n'
        + openai_stream("b")
    )
    use_upstream(lambda request: httpx.Response(200, content=body))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/chat", json=CHAT_BODY)

    frames = [line for line in response.text.split("\n") if line]
    assert frames == ['data: {"content": "a"}', 'data: {"content": "b"}', "data: [DONE]"]


@pytest.mark.asyncio
async def test_chat_upstream_refusal_keeps_status(use_upstream):
    """Test that a refusal before streaming is returned as a JSON error."""
    use_upstream(lambda request: httpx.Response(401, json={"error": {"message": "User not found."}}))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/chat", json=CHAT_BODY)

    assert response.status_code == 401
    assert response.json() == {"error": "User not found."}


@pytest.mark.asyncio
async def test_chat_requires_key_and_messages(use_upstream, upstream_requests):
    use_upstream(lambda request: httpx.Response(200, content=openai_stream("x")))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        no_key = await client.post("/api/chat", json={**CHAT_BODY, "apiKey": ""})
        no_messages = await client.post("/api/chat", json={**CHAT_BODY, "messages": []})

    assert no_key.status_code == 400
    assert no_messages.status_code == 400
    assert upstream_requests == []


@pytest.mark.asyncio
async def test_validate_key_endpoint(use_upstream):
    """Test valid, rejected and missing keys."""
    def handler(request):
        if request.headers["Authorization"] == "Bearer sk-good":
            return httpx.Response(200, json={"data": [{"id": "a"}, {"id": "b"}]})
        return httpx.Response(401, json={"error": {"message": "Invalid credentials"}})

    use_upstream(handler)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        good = await client.post("/api/validate-key", json={"apiKey": "sk-good"})
        bad = await client.post("/api/validate-key", json={"apiKey": "sk-bad"})
        missing = await client.post("/api/validate-key", json={})
        wrong_type = await client.post("/api/validate-key", json={"apiKey": 42})

    assert good.status_code == 200
    assert good.json() == {
        "valid": True,
        "models": [{"id": "a"}, {"id": "b"}],
        "message": "API key validated successfully",
    }
    assert bad.status_code == 200
    assert bad.json() == {"valid": False, "error": "Invalid credentials"}
    assert missing.status_code == 400
    assert missing.json() == {"valid": False, "error": "API key is required"}
    assert wrong_type.status_code == 400


@pytest.mark.asyncio
async def test_validate_key_transport_failure(use_upstream):
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    use_upstream(handler)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/api/validate-key", json={"apiKey": "sk-any"})

    assert response.status_code == 500
    assert response.json() == {"valid": False, "error": "Failed to validate API key"}


@pytest.mark.asyncio
async def test_health_and_metrics():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        health = await client.get("/health")
        metrics = await client.get("/metrics")

    assert health.json() == {"status": "ok"}
    assert metrics.status_code == 200
    assert "requests_total" in metrics.text


@pytest.mark.asyncio
async def test_metrics_label_unknown_paths_together():
    """Test that request counters use route templates, not raw request paths."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        missing = await client.get("/no-such-path-xyz")
        await client.get("/health")
        metrics = await client.get("/metrics")

    assert missing.status_code == 404
    assert "/no-such-path-xyz" not in metrics.text
    assert 'requests_total{endpoint="unmatched"}' in metrics.text
    assert 'requests_total{endpoint="/health"}' in metrics.text


@pytest.mark.asyncio
async def test_orchestrator_through_proxy(use_upstream, store):
    """Test a full submission: client, proxy and mocked provider."""
    reply = "Here:\n```html\n<section>" + "p" * 60 + "</section>\n```"
    use_upstream(lambda request: httpx.Response(200, content=openai_stream(reply[:10], reply[10:])))
    await store.set_api_key("sk-test")

    proxy = AsyncClient(transport=ASGITransport(app=app), base_url="http://proxy")
    async with proxy:
        orchestrator = ConversationOrchestrator(store, CompletionClient("http://proxy", client=proxy))
        result = await orchestrator.submit("Make a section")

    assert result.ok
    assert result.assistant_message.content == reply
    assert [(a.type, a.title) for a in result.artifacts] == [("html", "Html Snippet 1")]
