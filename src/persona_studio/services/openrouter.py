"""Client for the hosted completion provider (OpenRouter compatible API)."""

import json
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import structlog

from ..domain.errors import TransportError, UpstreamRejected
from ..domain.models import CompletionRequest

logger = structlog.get_logger()

DEFAULT_REJECTION_MESSAGE = "Invalid API key"


def _upstream_message(response: httpx.Response, fallback: str) -> str:
    """Pull ``error.message`` out of a provider error body."""
    try:
        data = response.json()
    except ValueError:
        return fallback
    if isinstance(data, dict):
        error = data.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str) and error["message"]:
            return error["message"]
        if isinstance(error, str) and error:
            return error
    return fallback


class OpenRouterClient:
    """Talks to the provider's ``/models`` and ``/chat/completions`` endpoints."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(connect_timeout, read=None))
        logger.info("upstream_client_init", base_url=self.base_url)

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }

    async def list_models(self, api_key: str) -> List[Dict[str, Any]]:
        """Return the model listing visible to ``api_key``."""
        try:
            response = await self._client.get(f"{self.base_url}/models", headers=self._headers(api_key))
        except httpx.HTTPError as e:
            logger.error("upstream_models_unreachable", error=str(e))
            raise TransportError(f"Failed to reach upstream: {e}") from e

        if not response.is_success:
            message = _upstream_message(response, DEFAULT_REJECTION_MESSAGE)
            logger.warning("upstream_models_rejected", status_code=response.status_code)
            raise UpstreamRejected(message, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            return []
        models = data.get("data") if isinstance(data, dict) else None
        return models if isinstance(models, list) else []

    def _chat_payload(self, request: CompletionRequest) -> Dict[str, Any]:
        messages = [turn.model_dump() for turn in request.messages]
        if request.system_prompt:
            messages.insert(0, {"role": "system", "content": request.system_prompt})
        return {
            "model": request.model,
            "messages": messages,
            "temperature": request.temperature,
            "stream": True,
        }

    async def stream_chat(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield content deltas from a streaming chat completion."""
        url = f"{self.base_url}/chat/completions"
        try:
            async with self._client.stream(
                "POST", url, headers=self._headers(request.api_key), json=self._chat_payload(request)
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    message = _upstream_message(response, "Upstream completion failed")
                    logger.error(
                        "upstream_completion_rejected",
                        status_code=response.status_code,
                        error=message,
                    )
                    raise UpstreamRejected(message, status_code=response.status_code)

                async for line in response.aiter_lines():
                    if not line or not line.startswith("data:"):
                        continue
                    data_str = line[5:].strip()
                    if data_str == "[DONE]":
                        break
                    try:
                        data = json.loads(data_str)
                    except (ValueError, RecursionError):
                        continue
                    if not isinstance(data, dict):
                        continue

                    choices = data.get("choices") or []
                    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
                        delta = choices[0].get("delta") or {}
                        content = delta.get("content") if isinstance(delta, dict) else None
                        if isinstance(content, str) and content:
                            yield content
        except httpx.HTTPError as e:
            logger.error("upstream_completion_transport_error", error=str(e))
            raise TransportError(f"Upstream stream failed: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
