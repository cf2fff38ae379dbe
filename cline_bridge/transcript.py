"""Transcript assembly with idempotent reuse of a prior collapsed turn.

A collapsed user turn carries the whole transcript so far inside its task
block. When such a turn is found in the history, its body seeds the new
transcript and only the messages after it are walked; loop state is
rehydrated from the body so suppression carries across calls.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from cline_bridge.blocks import (
    BLOCK_SEPARATOR,
    advisory_section,
    extract_task_body,
    is_wrapped_text,
    neutralize,
    split_advisory,
    turn_block,
)
from cline_bridge.config import CollapseConfig
from cline_bridge.content import (
    ImageAttachment,
    NormalizedMessage,
    field_of,
    image_from_part,
    message_text,
    normalize_message,
    normalize_role,
)
from cline_bridge.loop_detection import Decision, LoopDetector
from cline_bridge.state import PriorState, rehydrate
from cline_bridge.tool_calls import UNRESOLVED, resolve_tool_calls

logger = logging.getLogger(__name__)

_SKILL_TAG_RE = re.compile(r"<skill\s+name=[\"']([^\"']+)[\"']")


@dataclass
class WrappedTurn:
    """A previously collapsed user turn found in the history."""

    index: int
    body: str
    skill: str | None
    images: list[ImageAttachment] = field(default_factory=list)


@dataclass
class AssembledTranscript:
    """Flattened transcript plus what the envelope needs around it."""

    text: str
    images: list[ImageAttachment]
    state: PriorState
    decisions: list[Decision]
    reused: bool
    processed: int
    skill: str | None = None


def detect_skill(text: str) -> str | None:
    """Name of the last ``<skill name="...">`` tag in ``text``, if any."""
    matches = _SKILL_TAG_RE.findall(text)
    return matches[-1] if matches else None


def _images_of(message: Any) -> list[ImageAttachment]:
    content = field_of(message, "content")
    if not isinstance(content, list):
        return []
    return [img for img in (image_from_part(p) for p in content) if img is not None]


def find_wrapped_turn(messages: Sequence[Any]) -> WrappedTurn | None:
    """Most recent user message already in collapsed-envelope shape."""
    for index in range(len(messages) - 1, -1, -1):
        message = messages[index]
        if normalize_role(field_of(message, "role")) != "user":
            continue
        text = message_text(message)
        if not is_wrapped_text(text):
            continue
        body = extract_task_body(text)
        if body is None:
            continue
        return WrappedTurn(
            index=index,
            body=body,
            skill=detect_skill(body),
            images=_images_of(message),
        )
    return None


def active_skill(messages: Sequence[Any], wrapped: WrappedTurn | None) -> str | None:
    """Skill tag of the latest plain user turn.

    Without any plain user turn the wrapped turn's skill stays active, so
    re-collapsing a collapsed envelope keeps its scope note.
    """
    for message in reversed(messages):
        if normalize_role(field_of(message, "role")) != "user":
            continue
        text = message_text(message)
        if is_wrapped_text(text):
            continue
        return detect_skill(text)
    return wrapped.skill if wrapped else None


def _skill_note(skill: str) -> str:
    return (
        f"Active skill: {skill}. Stay within this skill's scope and finish its task "
        "before starting anything else."
    )


def _dedupe_images(images: list[ImageAttachment]) -> list[ImageAttachment]:
    seen: set[str] = set()
    out: list[ImageAttachment] = []
    for image in images:
        if image.url in seen:
            continue
        seen.add(image.url)
        out.append(image)
    return out


class TranscriptAssembler:
    """Walks a message history into one transcript string."""

    def __init__(self, config: CollapseConfig | None = None) -> None:
        self.config = config or CollapseConfig()

    def _render(
        self,
        index: int,
        raw: Any,
        message: NormalizedMessage,
        first_system: int | None,
        contexts: dict,
        detector: LoopDetector,
        decisions: list[Decision],
    ) -> str | None:
        if message.role == "system":
            if index == first_system:
                return None
            return turn_block("SYSTEM", message.text)

        if message.role == "user":
            if is_wrapped_text(message_text(raw)):
                logger.debug("Skipping stale collapsed turn at index %d", index)
                return None
            return turn_block("USER", message.text)

        if message.role == "assistant":
            if message.had_tool_calls:
                if message.has_text:
                    return turn_block("ASSISTANT REASONING", message.text)
                return None
            return turn_block("ASSISTANT", message.text)

        context = contexts.get(message.tool_call_id) if message.tool_call_id else None
        if context is None:
            context = UNRESOLVED
        decision = detector.observe(context.name, context.summary, neutralize(message.text))
        decisions.append(decision)
        return decision.block

    def assemble(
        self,
        messages: Sequence[Any],
        *,
        ignore_wrapped_history: bool = False,
    ) -> AssembledTranscript:
        """Build the transcript for ``messages``.

        Args:
            messages: Raw history in any supported shape. Never mutated.
            ignore_wrapped_history: Start from an empty transcript even if a
                collapsed turn is present (fresh session / model switch).
        """
        cfg = self.config
        contexts = resolve_tool_calls(messages, max_chars=cfg.summary_max_chars)

        wrapped = None if ignore_wrapped_history else find_wrapped_turn(messages)
        skill = active_skill(messages, wrapped)
        if wrapped is not None and skill is not None and wrapped.skill != skill:
            logger.info(
                "Not reusing collapsed turn: skill changed (%s -> %s)",
                wrapped.skill,
                skill,
            )
            wrapped = None

        blocks: list[str] = []
        images: list[ImageAttachment] = []
        if wrapped is not None:
            state = rehydrate(wrapped.body, family_threshold=cfg.family_threshold)
            seed, _ = split_advisory(wrapped.body)
            if seed:
                blocks.append(seed)
            images.extend(wrapped.images)
            start = wrapped.index + 1
            logger.info(
                "Reusing collapsed turn at index %d (%d new messages)",
                wrapped.index,
                len(messages) - start,
            )
        else:
            state = PriorState()
            start = 0

        first_system = next(
            (i for i, m in enumerate(messages) if normalize_role(field_of(m, "role")) == "system"),
            None,
        )
        detector = LoopDetector(state, config=cfg)
        decisions: list[Decision] = []

        for index in range(start, len(messages)):
            raw = messages[index]
            message = normalize_message(raw)
            block = self._render(index, raw, message, first_system, contexts, detector, decisions)
            if block is None:
                continue
            blocks.append(block)
            if message.role == "user":
                images.extend(message.images)

        notes = detector.advisory_notes()
        if skill:
            notes.append(_skill_note(skill))
        if notes:
            blocks.append(advisory_section(notes))

        return AssembledTranscript(
            text=BLOCK_SEPARATOR.join(blocks),
            images=_dedupe_images(images),
            state=detector.state,
            decisions=decisions,
            reused=wrapped is not None,
            processed=len(messages) - start,
            skill=skill,
        )
