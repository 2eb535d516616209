"""Test suite for API key validation."""

import httpx
import pytest

from persona_studio.domain.errors import TransportError, ValidationError
from persona_studio.services.key_validator import KeyValidator
from persona_studio.services.openrouter import OpenRouterClient

UPSTREAM_URL = "https://upstream.test/api/v1"


def make_validator(handler, calls=None):
    def recording(request):
        if calls is not None:
            calls.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(recording))
    return KeyValidator(OpenRouterClient(UPSTREAM_URL, client=client))


def models_handler(count):
    def handler(request):
        return httpx.Response(200, json={"data": [{"id": f"model-{i}"} for i in range(count)]})

    return handler


@pytest.mark.asyncio
@pytest.mark.parametrize("key", ["", None, 123, ["sk"]])
async def test_invalid_keys_fail_locally(key):
    """Test that empty or non-string keys never reach the network."""
    calls = []
    validator = make_validator(models_handler(1), calls)
    with pytest.raises(ValidationError):
        await validator.validate(key)
    assert calls == []


@pytest.mark.asyncio
async def test_valid_key_returns_first_fifty_models():
    calls = []
    validator = make_validator(models_handler(60), calls)

    result = await validator.validate("sk-good")

    assert result.valid is True
    assert len(result.models) == 50
    assert result.models[0] == {"id": "model-0"}
    assert len(calls) == 1
    assert calls[0].method == "GET"
    assert str(calls[0].url) == f"{UPSTREAM_URL}/models"
    assert calls[0].headers["Authorization"] == "Bearer sk-good"


@pytest.mark.asyncio
async def test_rejected_key_is_a_normal_result():
    """Test that the upstream error message is surfaced."""
    validator = make_validator(
        lambda request: httpx.Response(401, json={"error": {"message": "No auth credentials found"}})
    )
    result = await validator.validate("sk-bad")
    assert result.valid is False
    assert result.error == "No auth credentials found"


@pytest.mark.asyncio
async def test_rejected_key_without_body_uses_fallback():
    validator = make_validator(lambda request: httpx.Response(403, text="forbidden"))
    result = await validator.validate("sk-bad")
    assert result.valid is False
    assert result.error == "Invalid API key"


@pytest.mark.asyncio
async def test_transport_failure_is_fatal():
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    with pytest.raises(TransportError):
        await make_validator(handler).validate("sk-any")


@pytest.mark.asyncio
async def test_validate_and_store_saves_good_key(store):
    """Test that a valid key is stored and flagged."""
    validator = make_validator(models_handler(3))
    result = await validator.validate_and_store(store, " sk-good ")

    assert result.valid
    assert store.settings.api_key == "sk-good"
    assert store.is_api_key_valid is True
    assert store.is_validating is False


@pytest.mark.asyncio
async def test_validate_and_store_keeps_old_key_on_rejection(store):
    await store.set_api_key("sk-old")
    validator = make_validator(lambda request: httpx.Response(401, json={}))

    result = await validator.validate_and_store(store, "sk-bad")

    assert not result.valid
    assert store.settings.api_key == "sk-old"
    assert store.is_api_key_valid is False
    assert store.is_validating is False


@pytest.mark.asyncio
async def test_validate_and_store_empty_input(store):
    result = await make_validator(models_handler(1)).validate_and_store(store, "   ")
    assert result.valid is False
    assert result.error == "Please enter an API key"
    assert store.is_api_key_valid is False
