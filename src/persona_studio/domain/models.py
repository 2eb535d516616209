"""Domain models for the persona studio."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PERSONA_ID = "default"
DEFAULT_TEMPERATURE = 0.7

MessageRole = Literal["user", "assistant", "system"]
ArtifactType = Literal["code", "document", "image", "html", "markdown", "mermaid", "svg"]
Theme = Literal["light", "dark", "system"]


class FreeModel(BaseModel):
    """A model offered without charge by the upstream provider."""

    id: str
    name: str
    provider: str


FREE_MODELS: List[FreeModel] = [
    FreeModel(id="meta-llama/llama-3.2-3b-instruct:free", name="Llama 3.2 3B Instruct (Free)", provider="Meta"),
    FreeModel(id="meta-llama/llama-3.1-8b-instruct:free", name="Llama 3.1 8B Instruct (Free)", provider="Meta"),
    FreeModel(id="google/gemma-2-9b-it:free", name="Gemma 2 9B IT (Free)", provider="Google"),
    FreeModel(id="mistralai/mistral-7b-instruct:free", name="Mistral 7B Instruct (Free)", provider="Mistral"),
    FreeModel(id="huggingfaceh4/zephyr-7b-beta:free", name="Zephyr 7B Beta (Free)", provider="HuggingFace"),
    FreeModel(id="openchat/openchat-7b:free", name="OpenChat 7B (Free)", provider="OpenChat"),
    FreeModel(id="qwen/qwen-2-7b-instruct:free", name="Qwen 2 7B Instruct (Free)", provider="Alibaba"),
    FreeModel(id="microsoft/phi-3-mini-128k-instruct:free", name="Phi-3 Mini 128K (Free)", provider="Microsoft"),
    FreeModel(id="nousresearch/nous-capybara-7b:free", name="Nous Capybara 7B (Free)", provider="Nous Research"),
    FreeModel(id="deepseek/deepseek-r1:free", name="DeepSeek R1 (Free)", provider="DeepSeek"),
]

DEFAULT_MODEL = FREE_MODELS[0].id


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid4())


class Persona(BaseModel):
    """Named configuration bundle used to build completion requests."""

    id: str = Field(default_factory=new_id)
    name: str
    avatar: str = "🤖"
    description: str = ""
    system_prompt: str = ""
    temperature: float = Field(default=DEFAULT_TEMPERATURE, ge=0.0, le=1.0)
    model: str = DEFAULT_MODEL
    color: str = "#6366f1"
    voice: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


def default_persona() -> Persona:
    """Build the reserved persona that always exists."""
    return Persona(
        id=DEFAULT_PERSONA_ID,
        name="Nova",
        avatar="🤖",
        description="A helpful AI assistant ready to help with any task",
        system_prompt=(
            "You are Nova, a helpful, creative, and knowledgeable AI assistant. "
            "You can help with coding, writing, analysis, and creative tasks. "
            "When creating content that could be an artifact (code, documents, diagrams), "
            "wrap them appropriately."
        ),
        temperature=DEFAULT_TEMPERATURE,
        model=DEFAULT_MODEL,
        color="#6366f1",
    )


class ArtifactDraft(BaseModel):
    """Artifact extracted from a response but not yet persisted."""

    title: str
    type: ArtifactType
    content: str
    language: Optional[str] = None
    persona_id: str
    conversation_id: str
    metadata: Optional[Dict[str, Any]] = None


class Artifact(ArtifactDraft):
    """Persisted structured content unit."""

    id: str = Field(default_factory=new_id)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Message(BaseModel):
    """Terminal record of one conversation turn.

    Artifacts are referenced by id and resolved against the artifact table
    when displayed, so deleting an artifact never leaves a stale copy here.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content: str
    artifact_ids: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    persona_id: Optional[str] = None


class Conversation(BaseModel):
    """Conversation model."""

    id: str = Field(default_factory=new_id)
    title: str = "New Conversation"
    persona_id: str
    messages: List[Message] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Settings(BaseModel):
    """Process-wide user settings."""

    api_key: str = ""
    selected_model: str = DEFAULT_MODEL
    theme: Theme = "dark"
    font_size: int = 14
    show_artifact_preview: bool = True


class PersistedState(BaseModel):
    """The single durable record. Session-only flags are deliberately absent."""

    settings: Settings = Field(default_factory=Settings)
    personas: List[Persona] = Field(default_factory=lambda: [default_persona()])
    artifacts: List[Artifact] = Field(default_factory=list)
    conversations: List[Conversation] = Field(default_factory=list)
    active_persona_id: Optional[str] = DEFAULT_PERSONA_ID


class ChatTurn(BaseModel):
    """Role/content pair sent upstream."""

    role: MessageRole
    content: str


class CompletionRequest(BaseModel):
    """Body of the streaming completion request sent to the proxy."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[ChatTurn]
    model: str
    system_prompt: Optional[str] = Field(default=None, alias="systemPrompt")
    temperature: float = DEFAULT_TEMPERATURE
    api_key: str = Field(alias="apiKey")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class KeyValidationResult(BaseModel):
    """Outcome of checking an API key against the upstream model listing."""

    valid: bool
    models: Optional[List[Dict[str, Any]]] = None
    error: Optional[str] = None
    message: Optional[str] = None
