"""Streaming completion transport to the internal proxy."""

from typing import AsyncIterator, Optional

import httpx
import structlog

from ..domain.errors import StreamUnavailable
from ..domain.models import CompletionRequest
from .stream_decoder import decode_stream

logger = structlog.get_logger()

CHAT_PATH = "/api/chat"


def _error_detail(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(data, dict):
        detail = data.get("error") or data.get("detail")
        if isinstance(detail, str) and detail:
            return detail
    return response.reason_phrase


class CompletionClient:
    """Opens completion streams against the proxy's chat endpoint."""

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        connect_timeout: float = 10.0,
    ) -> None:
        self.url = base_url.rstrip("/") + CHAT_PATH
        self._owns_client = client is None
        # Read timeout is left to the transport; streams may idle between tokens.
        self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(connect_timeout, read=None))

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        """Yield text deltas for ``request``.

        Raises :class:`StreamUnavailable` before any delta when the request
        cannot be sent or answers with a non-success status, and
        :class:`StreamInterrupted` when the body fails midway. Closing the
        iterator early releases the HTTP response.
        """
        logger.info("completion_stream_opening", model=request.model, turns=len(request.messages))
        try:
            async with self._client.stream("POST", self.url, json=request.to_payload()) as response:
                if not response.is_success:
                    await response.aread()
                    detail = _error_detail(response)
                    logger.error(
                        "completion_stream_refused",
                        status_code=response.status_code,
                        error=detail,
                    )
                    raise StreamUnavailable(
                        f"Failed to get response: {detail}", status_code=response.status_code
                    )
                async for delta in decode_stream(response.aiter_bytes()):
                    yield delta
        except httpx.HTTPError as e:
            logger.error("completion_stream_unavailable", error=str(e))
            raise StreamUnavailable(f"Failed to get response: {e}") from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
