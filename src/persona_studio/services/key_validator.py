"""API key validation against the provider's model listing."""

from typing import Any

import structlog

from ..domain.errors import UpstreamRejected, ValidationError
from ..domain.models import KeyValidationResult
from .openrouter import OpenRouterClient
from .store import AppStore

logger = structlog.get_logger()

MAX_MODELS = 50
SUCCESS_MESSAGE = "API key validated successfully"


class KeyValidator:
    """Stateless one-shot check of an API key."""

    def __init__(self, upstream: OpenRouterClient) -> None:
        self.upstream = upstream

    async def validate(self, key: Any) -> KeyValidationResult:
        """Check ``key`` against the upstream model listing.

        Empty or non-string keys raise :class:`ValidationError` without a
        network call. A rejected key is a normal ``valid=False`` result;
        only a transport failure raises (:class:`TransportError`).
        """
        if not isinstance(key, str) or not key:
            raise ValidationError("API key is required")

        try:
            models = await self.upstream.list_models(key)
        except UpstreamRejected as e:
            logger.info("api_key_rejected", status_code=e.status_code)
            return KeyValidationResult(valid=False, error=str(e))

        logger.info("api_key_validated", model_count=len(models))
        return KeyValidationResult(valid=True, models=models[:MAX_MODELS], message=SUCCESS_MESSAGE)

    async def validate_and_store(self, store: AppStore, key: str) -> KeyValidationResult:
        """Validate ``key`` and record the outcome in ``store``.

        A valid key is saved to settings. The store's validating flag is
        cleared however the check ends.
        """
        key = (key or "").strip()
        if not key:
            store.set_api_key_valid(False)
            return KeyValidationResult(valid=False, error="Please enter an API key")

        store.set_validating(True)
        try:
            result = await self.validate(key)
            if result.valid:
                await store.set_api_key(key)
                store.set_api_key_valid(True)
            else:
                store.set_api_key_valid(False)
            return result
        except Exception:
            store.set_api_key_valid(False)
            raise
        finally:
            store.set_validating(False)
