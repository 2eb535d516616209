"""Completion request construction."""

from dataclasses import dataclass
from typing import Optional, Sequence

from ..domain.models import (
    DEFAULT_MODEL,
    DEFAULT_TEMPERATURE,
    ChatTurn,
    CompletionRequest,
    Message,
    Persona,
    Settings,
)


@dataclass(frozen=True)
class GenerationParams:
    model: str
    system_prompt: Optional[str]
    temperature: float


def resolve_generation_params(persona: Optional[Persona], settings: Settings) -> GenerationParams:
    """Resolve model parameters for a request.

    Precedence, first non-empty wins:

    * model: persona model, then the selected model in settings, then
      :data:`DEFAULT_MODEL`.
    * system prompt: persona system prompt, otherwise omitted.
    * temperature: persona temperature (0 is a valid value), then
      :data:`DEFAULT_TEMPERATURE`.
    """
    model = (persona.model if persona else None) or settings.selected_model or DEFAULT_MODEL
    system_prompt = (persona.system_prompt if persona else None) or None
    temperature = persona.temperature if persona is not None else DEFAULT_TEMPERATURE
    return GenerationParams(model=model, system_prompt=system_prompt, temperature=temperature)


def build_completion_request(
    history: Sequence[Message],
    user_text: str,
    persona: Optional[Persona],
    settings: Settings,
) -> CompletionRequest:
    """Build the proxy payload: prior turns, the new user turn and persona parameters."""
    params = resolve_generation_params(persona, settings)
    turns = [ChatTurn(role=m.role, content=m.content) for m in history]
    turns.append(ChatTurn(role="user", content=user_text))
    return CompletionRequest(
        messages=turns,
        model=params.model,
        system_prompt=params.system_prompt,
        temperature=params.temperature,
        api_key=settings.api_key,
    )
