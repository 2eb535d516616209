"""Request/response cycle for one chat submission.

A submission appends the user message, streams the completion while
mirroring the text into a transient :class:`StreamingView`, and only once
the stream has finished commits the assistant message together with the
artifacts extracted from it. Any failure along the way commits a fixed
error message instead; partial text is never stored.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import structlog

from ..domain.errors import InputError, RequestInProgress, StreamError
from ..domain.models import DEFAULT_PERSONA_ID, Artifact, CompletionRequest, Conversation, Message
from .artifact_extractor import extract_artifacts
from .completion import CompletionClient
from .request_builder import build_completion_request
from .store import AppStore

logger = structlog.get_logger()

ERROR_MESSAGE = "Sorry, I encountered an error. Please check your API key and try again."
TITLE_LENGTH = 50


class StreamingView:
    """In-progress text for live rendering. Never persisted."""

    def __init__(self) -> None:
        self.conversation_id: Optional[str] = None
        self.text = ""

    @property
    def active(self) -> bool:
        return self.conversation_id is not None

    def start(self, conversation_id: str) -> None:
        self.conversation_id = conversation_id
        self.text = ""

    def append(self, delta: str) -> None:
        self.text += delta

    def clear(self) -> None:
        self.conversation_id = None
        self.text = ""


@dataclass
class SubmissionResult:
    """What a submission committed, and the failure if there was one."""

    conversation_id: str
    user_message: Message
    assistant_message: Message
    artifacts: List[Artifact] = field(default_factory=list)
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ConversationOrchestrator:
    """Drives submissions against the store and the completion stream."""

    def __init__(
        self,
        store: AppStore,
        completion: CompletionClient,
        on_delta: Optional[Callable[[StreamingView], None]] = None,
    ) -> None:
        self.store = store
        self.completion = completion
        self.on_delta = on_delta
        self.view = StreamingView()
        self._loading = False

    @property
    def is_loading(self) -> bool:
        return self._loading

    async def _resolve_conversation(self, text: str) -> Conversation:
        conversation = self.store.active_conversation
        if conversation is None:
            persona_id = self.store.active_persona_id or DEFAULT_PERSONA_ID
            conversation = await self.store.add_conversation(persona_id, text[:TITLE_LENGTH])
        return conversation

    async def submit(self, text: str) -> SubmissionResult:
        """Send ``text`` as the next user turn of the active conversation.

        Failures after the user message is stored are not raised; they are
        reported on the result and recorded as an error assistant message.
        Cancelling the calling task stops the stream and commits no
        assistant message.
        """
        user_text = (text or "").strip()
        if not user_text:
            raise InputError("Message is empty")
        if self._loading:
            raise RequestInProgress("A response is already being generated")

        self._loading = True
        try:
            conversation = await self._resolve_conversation(user_text)
            conversation_id = conversation.id
            history = list(conversation.messages)
            user_message = await self.store.add_message(conversation_id, "user", user_text)

            persona = self.store.active_persona
            persona_id = self.store.active_persona_id
            self.view.start(conversation_id)
            artifacts: List[Artifact] = []
            try:
                request = build_completion_request(history, user_text, persona, self.store.settings)
                full_text = await self._consume(request)
                extraction = extract_artifacts(full_text, persona_id, conversation_id)
                for draft in extraction.drafts:
                    artifacts.append(await self.store.add_artifact(draft))
                assistant_message = await self.store.add_message(
                    conversation_id,
                    "assistant",
                    extraction.text,
                    artifact_ids=[a.id for a in artifacts],
                    persona_id=persona_id,
                )
            except asyncio.CancelledError:
                logger.info("submission_cancelled", conversation_id=conversation_id, partial_length=len(self.view.text))
                raise
            except Exception as e:
                log = logger.error if isinstance(e, StreamError) else logger.exception
                log(
                    "submission_failed",
                    conversation_id=conversation_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                self.view.clear()
                await self._discard_artifacts(artifacts)
                error_message = await self.store.add_message(conversation_id, "assistant", ERROR_MESSAGE)
                return SubmissionResult(
                    conversation_id=conversation_id,
                    user_message=user_message,
                    assistant_message=error_message,
                    error=e,
                )

            logger.info(
                "submission_completed",
                conversation_id=conversation_id,
                response_length=len(full_text),
                artifact_count=len(artifacts),
            )
            return SubmissionResult(
                conversation_id=conversation_id,
                user_message=user_message,
                assistant_message=assistant_message,
                artifacts=artifacts,
            )
        finally:
            self.view.clear()
            self._loading = False

    async def _discard_artifacts(self, artifacts: List[Artifact]) -> None:
        """Remove artifacts persisted by a submission that then failed."""
        for artifact in artifacts:
            try:
                await self.store.delete_artifact(artifact.id)
            except Exception as e:
                logger.warning("artifact_discard_failed", artifact_id=artifact.id, error=str(e))

    async def _consume(self, request: CompletionRequest) -> str:
        chunks: List[str] = []
        stream = self.completion.stream(request)
        try:
            async for delta in stream:
                chunks.append(delta)
                self.view.append(delta)
                if self.on_delta is not None:
                    self.on_delta(self.view)
        finally:
            await stream.aclose()
        return "".join(chunks)
