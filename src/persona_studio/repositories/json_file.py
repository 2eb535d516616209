"""JSON file storage implementation."""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from ..domain.models import PersistedState
from .base import StateStorage

logger = structlog.get_logger()


class JsonFileStateStorage(StateStorage):
    """Stores named records in a single JSON document on disk."""

    def __init__(self, path: Path, key: str = "ai-persona-studio") -> None:
        self.path = Path(path).expanduser()
        self.key = key

    def _read_document(self) -> Dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            document = json.loads(self.path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as e:
            logger.warning("state_file_unreadable", path=str(self.path), error=str(e))
            return {}
        if not isinstance(document, dict):
            logger.warning("state_file_not_an_object", path=str(self.path))
            return {}
        return document

    def _load_sync(self) -> Optional[PersistedState]:
        record = self._read_document().get(self.key)
        if record is None:
            return None
        try:
            return PersistedState.model_validate(record)
        except ValidationError as e:
            logger.warning("state_record_invalid", path=str(self.path), key=self.key, error=str(e))
            return None

    def _save_sync(self, state: PersistedState) -> None:
        document = self._read_document()
        document[self.key] = state.model_dump(mode="json")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic replace; readers never see a partial document.
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp_path, self.path)

    async def load(self) -> Optional[PersistedState]:
        state = await asyncio.to_thread(self._load_sync)
        logger.info("state_loaded", path=str(self.path), found=state is not None)
        return state

    async def save(self, state: PersistedState) -> None:
        await asyncio.to_thread(self._save_sync, state)
        logger.debug("state_saved", backend="json_file", path=str(self.path))
