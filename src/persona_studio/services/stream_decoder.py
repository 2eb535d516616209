"""Server-sent event decoding for the completion stream.

The proxy answers with newline-delimited frames of the form
``data: {"content": "..."}`` and a final ``data: [DONE]``. Decoding turns
the raw byte chunks into text deltas, tolerating malformed frames and
multi-byte characters split across chunk boundaries.
"""

import codecs
import json
from typing import AsyncIterable, AsyncIterator, Optional, Tuple

import httpx
import structlog

from ..domain.errors import StreamInterrupted

logger = structlog.get_logger()

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def parse_frame(line: str) -> Tuple[bool, Optional[str]]:
    """Inspect one frame line.

    Returns ``(done, delta)``. ``done`` is True only for the ``[DONE]``
    sentinel, which is never handed to the JSON parser. ``delta`` is the
    ``content`` string of a well-formed payload, otherwise None.
    """
    line = line.rstrip("\r")
    if not line.strip() or not line.startswith(DATA_PREFIX):
        return False, None

    data = line[len(DATA_PREFIX):]
    if data == DONE_SENTINEL:
        return True, None

    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        logger.debug("malformed_frame_skipped", frame_length=len(data))
        return False, None

    if not isinstance(payload, dict):
        return False, None
    content = payload.get("content")
    if isinstance(content, str) and content:
        return False, content
    return False, None


async def decode_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield text deltas from a byte stream of event frames.

    Ends normally on ``[DONE]`` or end of data. A transport failure after
    the stream started is raised as :class:`StreamInterrupted` once the
    deltas received so far have been yielded.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    received = 0

    try:
        async for chunk in chunks:
            buffer += decoder.decode(chunk)
            *lines, buffer = buffer.split("\n")
            for line in lines:
                done, delta = parse_frame(line)
                if done:
                    logger.debug("stream_done_sentinel", deltas=received)
                    return
                if delta is not None:
                    received += 1
                    yield delta
    except httpx.HTTPError as e:
        logger.error("stream_interrupted", deltas=received, error=str(e))
        raise StreamInterrupted(f"Stream interrupted: {e}", received=received) from e

    buffer += decoder.decode(b"", final=True)
    for line in buffer.split("\n"):
        done, delta = parse_frame(line)
        if done:
            break
        if delta is not None:
            received += 1
            yield delta
    logger.debug("stream_ended", deltas=received)
