"""Base storage interface."""

from abc import ABC, abstractmethod
from typing import Optional

from ..domain.models import PersistedState


class StateStorage(ABC):
    """Abstract key-value store holding the single persisted state record."""

    @abstractmethod
    async def load(self) -> Optional[PersistedState]:
        """Return the saved state, or None when nothing was saved yet."""
        pass

    @abstractmethod
    async def save(self, state: PersistedState) -> None:
        """Replace the saved state."""
        pass
