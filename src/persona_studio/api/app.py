"""
FastAPI Proxy Module

The internal endpoints the chat client talks to. They hold no state: each
request carries the user's API key, which is forwarded to the provider as
a bearer credential and never logged.

Endpoints:
- POST /api/chat: streams a completion as ``data: {"content": ...}`` frames
  followed by ``data: [DONE]``
- POST /api/validate-key: checks a key against the provider's model listing
- GET /health and GET /metrics for operations
"""

import json
from contextlib import asynccontextmanager
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_client import CollectorRegistry, Counter, generate_latest
from pydantic import BaseModel, ConfigDict, Field
from structlog import get_logger

from ..config import AppConfig, configure_logging
from ..domain.errors import TransportError, UpstreamRejected, ValidationError
from ..domain.models import DEFAULT_TEMPERATURE, ChatTurn, CompletionRequest
from ..services.key_validator import KeyValidator
from ..services.openrouter import OpenRouterClient

# Registry for isolated metric collection
CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter("requests_total", "Total requests by endpoint", ["endpoint"], registry=CUSTOM_REGISTRY)
ERRORS = Counter("errors_total", "Total errors by endpoint", ["endpoint"], registry=CUSTOM_REGISTRY)
STREAMED_DELTAS = Counter("streamed_deltas_total", "Content deltas relayed to clients", registry=CUSTOM_REGISTRY)

UNMATCHED_ENDPOINT = "unmatched"

logger = get_logger()

config = AppConfig.from_env()

_upstream_client: Optional[OpenRouterClient] = None


class ChatProxyRequest(BaseModel):
    """Body of a streaming chat request."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatTurn] = Field(default_factory=list)
    model: str
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    temperature: float = DEFAULT_TEMPERATURE
    api_key: Optional[str] = Field(default=None, alias="apiKey")


class ValidateKeyRequest(BaseModel):
    """Body of a key validation request. The key is checked by hand so a
    missing or non-string value gets the endpoint's own error body."""

    model_config = ConfigDict(populate_by_name=True)

    api_key: Any = Field(default=None, alias="apiKey")


def get_upstream_client() -> OpenRouterClient:
    """Returns the provider client"""
    global _upstream_client
    if _upstream_client is None:
        _upstream_client = OpenRouterClient(config.upstream_url, connect_timeout=config.connect_timeout)
    return _upstream_client


def get_key_validator(upstream: OpenRouterClient = Depends(get_upstream_client)) -> KeyValidator:
    """Returns a validator bound to the provider client"""
    return KeyValidator(upstream)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configures logging on startup and releases the provider client on shutdown"""
    global _upstream_client
    configure_logging(config.log_level, json_output=config.log_json)
    logger.info("application_startup_complete", upstream_url=config.upstream_url)

    yield

    if _upstream_client is not None:
        await _upstream_client.aclose()
        _upstream_client = None
    logger.info("application_shutdown_complete")


app = FastAPI(
    title="Persona Studio Proxy",
    description="Streaming completion and key validation proxy for the persona studio client",
    version="0.1.0",
    lifespan=lifespan,
)

# Enable cross-origin requests
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Set up request tracing
FastAPIInstrumentor.instrument_app(app)


@app.middleware("http")
async def logging_middleware(request: Request, call_next):
    """Logs and counts every request, labelled by route template"""
    path = request.url.path
    logger.info("request_started", path=path)
    try:
        response = await call_next(request)
    except Exception as e:
        endpoint = _endpoint_label(request)
        REQUESTS.labels(endpoint=endpoint).inc()
        ERRORS.labels(endpoint=endpoint).inc()
        logger.error("request_failed", path=path, error=str(e))
        raise
    REQUESTS.labels(endpoint=_endpoint_label(request)).inc()
    return response


def _endpoint_label(request: Request) -> str:
    # Set on the shared scope by routing; absent for unknown paths
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ENDPOINT)


def _frame(payload: Any) -> str:
    return f"data: {json.dumps(payload)}\n\n"


@app.post("/api/chat")
async def chat(
    body: ChatProxyRequest,
    upstream: OpenRouterClient = Depends(get_upstream_client),
) -> Response:
    """
    Relays a streaming completion from the provider.
    Refusals that happen before the first token come back as JSON errors
    with the provider's status; once streaming has begun a failure aborts
    the response so the client never mistakes partial text for a full reply.
    """
    if not body.api_key:
        return JSONResponse({"error": "API key is required"}, status_code=400)
    if not body.messages:
        return JSONResponse({"error": "Messages are required"}, status_code=400)

    request = CompletionRequest(
        messages=body.messages,
        model=body.model,
        system_prompt=body.system_prompt,
        temperature=body.temperature,
        api_key=body.api_key,
    )
    stream = upstream.stream_chat(request)

    try:
        first = await stream.__anext__()
    except StopAsyncIteration:
        first = None
    except UpstreamRejected as e:
        ERRORS.labels(endpoint="/api/chat").inc()
        await stream.aclose()
        return JSONResponse({"error": str(e)}, status_code=e.status_code)
    except TransportError as e:
        ERRORS.labels(endpoint="/api/chat").inc()
        await stream.aclose()
        return JSONResponse({"error": str(e)}, status_code=502)

    async def event_source():
        relayed = 0
        try:
            if first is not None:
                relayed += 1
                yield _frame({"content": first})
                async for delta in stream:
                    relayed += 1
                    yield _frame({"content": delta})
            yield "data: [DONE]\n\n"
        except (TransportError, UpstreamRejected) as e:
            ERRORS.labels(endpoint="/api/chat").inc()
            logger.error("chat_stream_aborted", relayed=relayed, error=str(e))
            raise
        finally:
            STREAMED_DELTAS.inc(relayed)
            await stream.aclose()
            logger.info("chat_stream_finished", relayed=relayed, model=body.model)

    return StreamingResponse(
        event_source(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.post("/api/validate-key")
async def validate_key(
    body: ValidateKeyRequest,
    validator: KeyValidator = Depends(get_key_validator),
) -> JSONResponse:
    """Checks an API key; a rejected key is still a 200 with ``valid: false``"""
    try:
        result = await validator.validate(body.api_key)
    except ValidationError as e:
        return JSONResponse({"valid": False, "error": str(e)}, status_code=400)
    except TransportError as e:
        ERRORS.labels(endpoint="/api/validate-key").inc()
        logger.error("api_validation_error", error=str(e))
        return JSONResponse({"valid": False, "error": "Failed to validate API key"}, status_code=500)

    return JSONResponse(result.model_dump(exclude_none=True))


@app.get("/health")
async def health():
    """Liveness check"""
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    """Provides Prometheus metrics for system monitoring"""
    return Response(generate_latest(CUSTOM_REGISTRY), media_type="text/plain")
