"""Artifact extraction from completed assistant responses."""

import string
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

from ..domain.models import DEFAULT_PERSONA_ID, ArtifactDraft, ArtifactType

FENCE = "```"
MIN_ARTIFACT_LENGTH = 50
DEFAULT_LANGUAGE = "plaintext"

_TAG_CHARS = frozenset(string.ascii_letters + string.digits + "_")

_TYPE_BY_LANGUAGE = {
    "html": "html",
    "mermaid": "mermaid",
    "svg": "svg",
    "markdown": "markdown",
    "md": "markdown",
}


@dataclass
class FencedBlock:
    """A terminated fenced block found in the text."""

    language: Optional[str]
    body: str
    start: int
    end: int


@dataclass
class ExtractionResult:
    """The unchanged response text plus the artifact drafts found in it."""

    text: str
    drafts: List[ArtifactDraft] = field(default_factory=list)


def scan_fences(text: str) -> Iterator[FencedBlock]:
    """Yield fenced blocks left to right.

    An opening fence is three backticks, an optional word tag and a newline.
    The first following triple backtick closes it. A block without a
    closing fence is dropped rather than running to the end of the text.
    """
    pos = 0
    length = len(text)
    while True:
        start = text.find(FENCE, pos)
        if start == -1:
            return

        cursor = start + len(FENCE)
        while cursor < length and text[cursor] in _TAG_CHARS:
            cursor += 1
        if cursor >= length or text[cursor] != "\n":
            pos = start + 1
            continue

        tag = text[start + len(FENCE):cursor]
        body_start = cursor + 1
        close = text.find(FENCE, body_start)
        if close == -1:
            return

        yield FencedBlock(
            language=tag or None,
            body=text[body_start:close],
            start=start,
            end=close + len(FENCE),
        )
        pos = close + len(FENCE)


def classify_language(language: Optional[str]) -> ArtifactType:
    """Map a fence tag to an artifact type. Matching is case-sensitive."""
    return _TYPE_BY_LANGUAGE.get(language or "", "code")


def snippet_title(language: str, index: int) -> str:
    return f"{language[:1].upper()}{language[1:]} Snippet {index}"


def extract_artifacts(
    text: str,
    persona_id: Optional[str],
    conversation_id: str,
) -> ExtractionResult:
    """Build artifact drafts from every sufficiently long fenced block.

    The text is returned as-is; artifacts are extra views of it.
    """
    drafts: List[ArtifactDraft] = []
    for block in scan_fences(text):
        content = block.body.strip()
        if len(content) <= MIN_ARTIFACT_LENGTH:
            continue
        language = block.language or DEFAULT_LANGUAGE
        drafts.append(
            ArtifactDraft(
                title=snippet_title(language, len(drafts) + 1),
                type=classify_language(block.language),
                content=content,
                language=language,
                persona_id=persona_id or DEFAULT_PERSONA_ID,
                conversation_id=conversation_id,
            )
        )
    return ExtractionResult(text=text, drafts=drafts)
