"""Prompt context builder for reader turns.

Pure functions only: each one turns session data into a piece of the
instruction payload handed to the inference client. Nothing here performs
I/O, so every piece can be tested on its own.
"""

from __future__ import annotations

from typing import Iterable, List, Mapping, Optional, Sequence

from readerpanel.primitives.models import (
    AnalysisResult,
    AnalystPersona,
    CoverageReport,
    Document,
    FocusGroupMessage,
)
from readerpanel.prompts import (
    DISCUSSION_SCRIPT_CONTEXT,
    DOCUMENT_HEADER,
    MODERATOR_NAME,
    READER_ANALYSIS_PROMPT,
    READER_MEMORY_SECTION,
    READER_OUTPUT_FORMAT,
    READER_PERSPECTIVE,
)

DEFAULT_TRANSCRIPT_WINDOW = 6


def build_reader_system_prompt(
    persona: AnalystPersona,
    calibration_context: str = "",
    memory_context: str = "",
) -> str:
    """Persona instruction + calibration + memory + output format."""
    parts = [persona.system_prompt]
    if calibration_context:
        parts.append(calibration_context)
    if memory_context:
        parts.append(READER_MEMORY_SECTION.format(memory_context=memory_context))
    parts.append(READER_OUTPUT_FORMAT)
    return "\n\n".join(parts)


def build_analysis_prompt(document: Document, max_chars: Optional[int] = None) -> str:
    text = document.text
    if max_chars is not None and len(text) > max_chars:
        text = text[:max_chars]
    meta = document.metadata
    header = DOCUMENT_HEADER.format(
        title=meta.title,
        author=meta.author,
        genre=meta.genre,
        format=meta.format,
        page_count=meta.page_count or "unknown",
    )
    return READER_ANALYSIS_PROMPT.format(document_header=header, document_text=text)


def build_discussion_system_prompt(
    persona: AnalystPersona,
    coverage: Optional[CoverageReport] = None,
    extra: Iterable[str] = (),
) -> str:
    """System prompt for conversational turns (focus group, chat)."""
    parts = [persona.system_prompt]
    if coverage is not None:
        meta = coverage.metadata
        parts.append(DISCUSSION_SCRIPT_CONTEXT.format(
            title=meta.title,
            author=meta.author,
            genre=meta.genre,
            format=meta.format,
            logline=coverage.logline or "n/a",
        ))
    parts.extend(p for p in extra if p)
    return "\n\n".join(parts)


def render_perspective(result: Optional[AnalysisResult]) -> str:
    if result is None:
        return "No perspective data available."
    return READER_PERSPECTIVE.format(
        rating=result.ratings["overall"],
        numeric=result.scores["overall"],
        recommendation=result.recommendation,
        strengths="; ".join(result.key_strengths),
        concerns="; ".join(result.key_concerns),
    )


def speaker_label(message: FocusGroupMessage) -> str:
    if message.speaker_type == "moderator":
        return f"{message.speaker or MODERATOR_NAME} (Moderator)"
    if message.speaker_type == "user":
        return "User"
    return message.speaker


def render_transcript(
    messages: Sequence[FocusGroupMessage],
    window: int = DEFAULT_TRANSCRIPT_WINDOW,
) -> str:
    """The last ``window`` turns as ``Speaker: content`` paragraphs."""
    recent = list(messages)[-window:] if window > 0 else []
    if not recent:
        return "(The discussion is just starting.)"
    return "\n\n".join(f"{speaker_label(m)}: {m.content}" for m in recent)


def render_statements(
    messages: Iterable[FocusGroupMessage],
    names: Optional[Mapping[str, str]] = None,
) -> str:
    """Quoted statements; reactions show whom they answer and how.

    ``names`` maps analyst ids to the names shown for reaction targets.
    """
    names = names or {}
    lines: List[str] = []
    for m in messages:
        if m.is_reaction and m.reply_to_analyst_id:
            target = names.get(m.reply_to_analyst_id, m.reply_to_analyst_id)
            lines.append(f'{m.speaker} ({m.reaction} with {target}): "{m.content}"')
        else:
            lines.append(f'{m.speaker}: "{m.content}"')
    return "\n\n".join(lines)


def memory_block(memory_context: str) -> str:
    return f"{memory_context}\n\n" if memory_context else ""
