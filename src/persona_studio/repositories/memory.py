"""In-memory storage implementation."""

from typing import Optional

import structlog

from ..domain.models import PersistedState
from .base import StateStorage

logger = structlog.get_logger()


class InMemoryStateStorage(StateStorage):
    """Keeps the persisted record in process memory as serialized JSON."""

    def __init__(self, initial: Optional[PersistedState] = None) -> None:
        self._payload: Optional[str] = initial.model_dump_json() if initial else None
        self.save_count = 0

    async def load(self) -> Optional[PersistedState]:
        if self._payload is None:
            return None
        return PersistedState.model_validate_json(self._payload)

    async def save(self, state: PersistedState) -> None:
        self._payload = state.model_dump_json()
        self.save_count += 1
        logger.debug("state_saved", backend="memory", save_count=self.save_count)
