"""Application state owner.

``AppStore`` is the single source of truth for settings, personas,
conversations and artifacts. Reads are plain attribute/method access;
every mutation goes through an async command method that holds the store
lock for the whole logical update and then writes the durable part of the
state through a :class:`StateStorage`.

Session-only flags (active conversation, validation status, panel toggles)
live on the store but are never written to storage.
"""

import asyncio
from typing import Any, List, Optional

import structlog

from ..domain.errors import InputError
from ..domain.models import (
    DEFAULT_PERSONA_ID,
    Artifact,
    ArtifactDraft,
    Conversation,
    Message,
    MessageRole,
    PersistedState,
    Persona,
    Settings,
    default_persona,
    utcnow,
)
from ..repositories.base import StateStorage
from ..repositories.memory import InMemoryStateStorage

logger = structlog.get_logger()

UNKNOWN_PERSONA_NAME = "Unknown persona"

_PERSONA_FIELDS = {"name", "avatar", "description", "system_prompt", "temperature", "model", "color", "voice"}
_ARTIFACT_FIELDS = {"title", "type", "content", "language", "metadata"}
_SETTINGS_FIELDS = set(Settings.model_fields)


class AppStore:
    """Holds all domain entities and the commands that mutate them."""

    def __init__(self, storage: Optional[StateStorage] = None, state: Optional[PersistedState] = None) -> None:
        self._storage = storage or InMemoryStateStorage()
        self._state = state or PersistedState()
        self._ensure_default_persona()
        self._lock = asyncio.Lock()

        self.active_conversation_id: Optional[str] = None
        self.is_api_key_valid: Optional[bool] = None
        self.is_validating = False
        self.sidebar_open = True
        self.artifact_panel_open = False

    @classmethod
    async def load(cls, storage: StateStorage) -> "AppStore":
        """Build a store from whatever the storage holds, or from defaults."""
        state = await storage.load()
        store = cls(storage=storage, state=state)
        logger.info(
            "store_loaded",
            restored=state is not None,
            personas=len(store.personas),
            conversations=len(store.conversations),
        )
        return store

    def _ensure_default_persona(self) -> None:
        if not any(p.id == DEFAULT_PERSONA_ID for p in self._state.personas):
            self._state.personas.insert(0, default_persona())

    async def _persist(self) -> None:
        await self._storage.save(self._state.model_copy(deep=True))

    # Read accessors

    @property
    def settings(self) -> Settings:
        return self._state.settings

    @property
    def personas(self) -> List[Persona]:
        return list(self._state.personas)

    @property
    def artifacts(self) -> List[Artifact]:
        return list(self._state.artifacts)

    @property
    def conversations(self) -> List[Conversation]:
        return list(self._state.conversations)

    @property
    def active_persona_id(self) -> Optional[str]:
        return self._state.active_persona_id

    def get_persona(self, persona_id: Optional[str]) -> Optional[Persona]:
        if persona_id is None:
            return None
        return next((p for p in self._state.personas if p.id == persona_id), None)

    @property
    def active_persona(self) -> Optional[Persona]:
        return self.get_persona(self._state.active_persona_id)

    def persona_display_name(self, persona_id: Optional[str]) -> str:
        persona = self.get_persona(persona_id)
        return persona.name if persona else UNKNOWN_PERSONA_NAME

    def get_conversation(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        if conversation_id is None:
            return None
        return next((c for c in self._state.conversations if c.id == conversation_id), None)

    @property
    def active_conversation(self) -> Optional[Conversation]:
        return self.get_conversation(self.active_conversation_id)

    def conversations_for_persona(self, persona_id: str) -> List[Conversation]:
        return [c for c in self._state.conversations if c.persona_id == persona_id]

    def get_artifact(self, artifact_id: str) -> Optional[Artifact]:
        return next((a for a in self._state.artifacts if a.id == artifact_id), None)

    def artifacts_for_conversation(self, conversation_id: str) -> List[Artifact]:
        return [a for a in self._state.artifacts if a.conversation_id == conversation_id]

    def message_artifacts(self, message: Message) -> List[Artifact]:
        """Resolve a message's artifact references, skipping deleted ones."""
        resolved = []
        for artifact_id in message.artifact_ids:
            artifact = self.get_artifact(artifact_id)
            if artifact is not None:
                resolved.append(artifact)
        return resolved

    # Settings

    async def set_settings(self, **changes: Any) -> Settings:
        unknown = set(changes) - _SETTINGS_FIELDS
        if unknown:
            raise InputError(f"Unknown settings: {', '.join(sorted(unknown))}")
        async with self._lock:
            self._state.settings = Settings.model_validate(
                {**self._state.settings.model_dump(), **changes}
            )
            await self._persist()
        logger.info("settings_updated", fields=sorted(changes))
        return self._state.settings

    async def set_api_key(self, key: str) -> None:
        async with self._lock:
            self._state.settings = self._state.settings.model_copy(update={"api_key": key})
            self.is_api_key_valid = None
            await self._persist()
        logger.info("api_key_updated", has_key=bool(key))

    def set_api_key_valid(self, valid: Optional[bool]) -> None:
        self.is_api_key_valid = valid

    def set_validating(self, validating: bool) -> None:
        self.is_validating = validating

    # Personas

    async def add_persona(self, name: str, **fields: Any) -> Persona:
        unknown = set(fields) - _PERSONA_FIELDS
        if unknown:
            raise InputError(f"Unknown persona fields: {', '.join(sorted(unknown))}")
        if not name or not name.strip():
            raise InputError("Persona name is required")
        persona = Persona(name=name, **fields)
        async with self._lock:
            self._state.personas.append(persona)
            await self._persist()
        logger.info("persona_created", persona_id=persona.id)
        return persona

    async def update_persona(self, persona_id: str, **changes: Any) -> Optional[Persona]:
        unknown = set(changes) - _PERSONA_FIELDS
        if unknown:
            raise InputError(f"Cannot update persona fields: {', '.join(sorted(unknown))}")
        async with self._lock:
            for index, persona in enumerate(self._state.personas):
                if persona.id == persona_id:
                    updated = Persona.model_validate(
                        {**persona.model_dump(), **changes, "updated_at": utcnow()}
                    )
                    self._state.personas[index] = updated
                    await self._persist()
                    logger.info("persona_updated", persona_id=persona_id)
                    return updated
        logger.warning("persona_not_found", persona_id=persona_id)
        return None

    async def delete_persona(self, persona_id: str) -> bool:
        """Delete a persona. The reserved default persona is never removed."""
        if persona_id == DEFAULT_PERSONA_ID:
            logger.warning("default_persona_delete_ignored")
            return False
        async with self._lock:
            before = len(self._state.personas)
            self._state.personas = [p for p in self._state.personas if p.id != persona_id]
            if len(self._state.personas) == before:
                logger.warning("persona_not_found", persona_id=persona_id)
                return False
            if self._state.active_persona_id == persona_id:
                self._state.active_persona_id = DEFAULT_PERSONA_ID
            await self._persist()
        logger.info("persona_deleted", persona_id=persona_id)
        return True

    async def set_active_persona(self, persona_id: Optional[str]) -> None:
        async with self._lock:
            self._state.active_persona_id = persona_id
            await self._persist()

    # Artifacts

    async def add_artifact(self, draft: ArtifactDraft) -> Artifact:
        artifact = Artifact(**draft.model_dump())
        async with self._lock:
            self._state.artifacts.append(artifact)
            try:
                await self._persist()
            except Exception:
                self._state.artifacts.remove(artifact)
                raise
            self.artifact_panel_open = True
        logger.info(
            "artifact_created",
            artifact_id=artifact.id,
            conversation_id=artifact.conversation_id,
            artifact_type=artifact.type,
        )
        return artifact

    async def update_artifact(self, artifact_id: str, **changes: Any) -> Optional[Artifact]:
        unknown = set(changes) - _ARTIFACT_FIELDS
        if unknown:
            raise InputError(f"Cannot update artifact fields: {', '.join(sorted(unknown))}")
        async with self._lock:
            for index, artifact in enumerate(self._state.artifacts):
                if artifact.id == artifact_id:
                    updated = Artifact.model_validate(
                        {**artifact.model_dump(), **changes, "updated_at": utcnow()}
                    )
                    self._state.artifacts[index] = updated
                    await self._persist()
                    return updated
        logger.warning("artifact_not_found", artifact_id=artifact_id)
        return None

    async def delete_artifact(self, artifact_id: str) -> bool:
        async with self._lock:
            before = len(self._state.artifacts)
            self._state.artifacts = [a for a in self._state.artifacts if a.id != artifact_id]
            if len(self._state.artifacts) == before:
                return False
            await self._persist()
        logger.info("artifact_deleted", artifact_id=artifact_id)
        return True

    # Conversations

    async def add_conversation(self, persona_id: str, title: Optional[str] = None) -> Conversation:
        conversation = Conversation(persona_id=persona_id, title=title or "New Conversation")
        async with self._lock:
            self._state.conversations.append(conversation)
            self.active_conversation_id = conversation.id
            await self._persist()
        logger.info("conversation_created", conversation_id=conversation.id, persona_id=persona_id)
        return conversation

    async def update_conversation(self, conversation_id: str, title: str) -> Optional[Conversation]:
        async with self._lock:
            conversation = self.get_conversation(conversation_id)
            if conversation is None:
                logger.warning("conversation_not_found", conversation_id=conversation_id)
                return None
            conversation.title = title
            conversation.updated_at = utcnow()
            await self._persist()
        return conversation

    async def delete_conversation(self, conversation_id: str) -> bool:
        async with self._lock:
            before = len(self._state.conversations)
            self._state.conversations = [
                c for c in self._state.conversations if c.id != conversation_id
            ]
            if len(self._state.conversations) == before:
                return False
            if self.active_conversation_id == conversation_id:
                self.active_conversation_id = None
            await self._persist()
        logger.info("conversation_deleted", conversation_id=conversation_id)
        return True

    def set_active_conversation(self, conversation_id: Optional[str]) -> None:
        self.active_conversation_id = conversation_id

    async def add_message(
        self,
        conversation_id: str,
        role: MessageRole,
        content: str,
        artifact_ids: Optional[List[str]] = None,
        persona_id: Optional[str] = None,
    ) -> Message:
        """Append a message to a conversation."""
        message = Message(
            role=role,
            content=content,
            artifact_ids=list(artifact_ids or []),
            persona_id=persona_id,
        )
        async with self._lock:
            conversation = self.get_conversation(conversation_id)
            if conversation is None:
                logger.error("conversation_not_found_for_message", conversation_id=conversation_id)
                raise ValueError(f"Conversation {conversation_id} not found")
            conversation.messages.append(message)
            previous_updated_at = conversation.updated_at
            conversation.updated_at = message.created_at
            try:
                await self._persist()
            except Exception:
                conversation.messages.remove(message)
                conversation.updated_at = previous_updated_at
                raise
        logger.info(
            "message_added",
            conversation_id=conversation_id,
            message_role=role,
            artifact_count=len(message.artifact_ids),
        )
        return message

    # Session-only toggles

    def toggle_sidebar(self) -> bool:
        self.sidebar_open = not self.sidebar_open
        return self.sidebar_open

    def toggle_artifact_panel(self) -> bool:
        self.artifact_panel_open = not self.artifact_panel_open
        return self.artifact_panel_open

    def snapshot(self) -> PersistedState:
        """Deep copy of the durable part of the state."""
        return self._state.model_copy(deep=True)
