"""Wiring for a chat client session."""

from dataclasses import dataclass
from typing import Callable, Optional

import httpx
import structlog

from .config import AppConfig
from .repositories.json_file import JsonFileStateStorage
from .services.completion import CompletionClient
from .services.orchestrator import ConversationOrchestrator, StreamingView
from .services.store import AppStore

logger = structlog.get_logger()


@dataclass
class ChatSession:
    """The store and orchestrator a UI drives, plus the HTTP client they share."""

    store: AppStore
    orchestrator: ConversationOrchestrator
    completion: CompletionClient

    async def aclose(self) -> None:
        await self.completion.aclose()


async def open_session(
    config: Optional[AppConfig] = None,
    on_delta: Optional[Callable[[StreamingView], None]] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> ChatSession:
    """Load persisted state and connect to the proxy named in ``config``."""
    config = config or AppConfig.from_env()
    storage = JsonFileStateStorage(config.state_path, key=config.state_key)
    store = await AppStore.load(storage)
    completion = CompletionClient(config.proxy_url, client=client, connect_timeout=config.connect_timeout)
    logger.info("session_opened", proxy_url=config.proxy_url, state_path=str(config.state_path))
    return ChatSession(
        store=store,
        orchestrator=ConversationOrchestrator(store, completion, on_delta=on_delta),
        completion=completion,
    )
