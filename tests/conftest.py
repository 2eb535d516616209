"""Shared test fixtures for persona studio."""

import asyncio
import json
from typing import AsyncIterator, Callable, Iterable, List, Optional

import httpx
import pytest

from persona_studio.repositories.memory import InMemoryStateStorage
from persona_studio.services.completion import CompletionClient
from persona_studio.services.store import AppStore

PROXY_URL = "http://proxy.test"


def sse_frame(payload) -> bytes:
    """Encode one proxy frame."""
    if isinstance(payload, str):
        return f"data: {payload}\n".encode("utf-8")
    return f"data: {json.dumps(payload)}\n".encode("utf-8")


def sse_body(*contents: str, done: bool = True) -> bytes:
    """Encode content deltas as a complete proxy stream."""
    body = b"".join(sse_frame({"content": c}) for c in contents)
    if done:
        body += sse_frame("[DONE]")
    return body


class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered in explicit chunks, optionally failing or pausing."""

    def __init__(
        self,
        chunks: Iterable[bytes],
        error: Optional[Exception] = None,
        pause: Optional[asyncio.Event] = None,
        pause_after: int = 1,
    ) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.pause = pause
        self.pause_after = pause_after
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if self.pause is not None and index == self.pause_after:
                await self.pause.wait()
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


async def iter_chunks(chunks: List[bytes], error: Optional[Exception] = None) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


@pytest.fixture
def storage():
    return InMemoryStateStorage()


@pytest.fixture
def store(storage):
    return AppStore(storage=storage)


@pytest.fixture
def completion_factory():
    """Build a CompletionClient whose proxy is answered by ``handler``."""
    clients: List[httpx.AsyncClient] = []

    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> CompletionClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return CompletionClient(PROXY_URL, client=client)

    return factory
