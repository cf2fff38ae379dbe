"""Envelope wrapper: the bounded message list sent upstream.

Output is at most one system message followed by exactly one user message
whose content parts are, in order: the task block, the progress block, the
environment block, then any carried images.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Sequence

from cline_bridge.blocks import task_block
from cline_bridge.config import CollapseConfig
from cline_bridge.content import field_of, normalize_message, normalize_role
from cline_bridge.scaffold import DEFAULT_SCAFFOLD, Scaffold
from cline_bridge.transcript import AssembledTranscript, TranscriptAssembler

logger = logging.getLogger(__name__)


@dataclass
class Envelope:
    messages: list[dict[str, Any]]
    transcript: AssembledTranscript


def system_text(messages: Sequence[Any]) -> str | None:
    """Text of the first system message, or None if absent or empty."""
    for message in messages:
        if normalize_role(field_of(message, "role")) != "system":
            continue
        normalized = normalize_message(message)
        return normalized.text if normalized.has_text else None
    return None


def wrap(
    transcript: AssembledTranscript,
    *,
    system: str | None,
    scaffold: Scaffold = DEFAULT_SCAFFOLD,
) -> list[dict[str, Any]]:
    """Assemble the final message list around a transcript."""
    out: list[dict[str, Any]] = []
    if system:
        out.append({"role": "system", "content": system})
    content: list[dict[str, Any]] = [{"type": "text", "text": task_block(transcript.text)}]
    content.extend(scaffold.parts())
    content.extend(image.as_part() for image in transcript.images)
    out.append({"role": "user", "content": content})
    return out


def build_envelope(
    messages: Sequence[Any],
    *,
    scaffold: Scaffold | None = None,
    config: CollapseConfig | None = None,
    ignore_wrapped_history: bool = False,
) -> Envelope:
    """Assemble the transcript for ``messages`` and wrap it."""
    transcript = TranscriptAssembler(config).assemble(
        messages,
        ignore_wrapped_history=ignore_wrapped_history,
    )
    wrapped = wrap(
        transcript,
        system=system_text(messages),
        scaffold=scaffold or DEFAULT_SCAFFOLD,
    )
    logger.debug(
        "Envelope: %d messages, %d chars of transcript, %d images",
        len(wrapped),
        len(transcript.text),
        len(transcript.images),
    )
    return Envelope(messages=wrapped, transcript=transcript)
