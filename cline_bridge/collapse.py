"""Collapse a tool-using conversation into one system message and one user turn.

This is the per-call entry point. It reads the session's "ignore wrapped
history" flag, assembles and wraps the transcript, and consumes the flag
once the collapse succeeds.

Usage::

    from cline_bridge import CollapseContext, SessionRegistry, collapse

    sessions = SessionRegistry()
    ctx = CollapseContext(session_id="sess-1", sessions=sessions)
    result = collapse(history, ctx)
    send_upstream(result.messages)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from cline_bridge.config import CollapseConfig
from cline_bridge.envelope import build_envelope
from cline_bridge.loop_detection import Decision
from cline_bridge.scaffold import DEFAULT_SCAFFOLD, Scaffold
from cline_bridge.session import SessionRegistry
from cline_bridge.state import PriorState

logger = logging.getLogger(__name__)


@dataclass
class CollapseContext:
    """Everything one collapse needs besides the messages."""

    session_id: str | None = None
    sessions: SessionRegistry | None = None
    scaffold: Scaffold = DEFAULT_SCAFFOLD
    config: CollapseConfig = field(default_factory=CollapseConfig)


@dataclass
class CollapseResult:
    """Collapsed envelope plus the bookkeeping behind it."""

    messages: list[dict[str, Any]]
    transcript: str
    state: PriorState
    decisions: list[Decision]
    reused_prior: bool
    processed_messages: int
    skill: str | None = None

    @property
    def suppressed_count(self) -> int:
        return sum(1 for d in self.decisions if d.suppressed)


def collapse(
    messages: Sequence[Any],
    context: CollapseContext | None = None,
    *,
    ignore_wrapped_history: bool = False,
) -> CollapseResult:
    """Collapse ``messages`` into the bounded envelope.

    Args:
        messages: Raw history (dicts or attribute-style objects). Not mutated.
        context: Session, scaffold and config. Defaults to no session, the
            default scaffold and default thresholds.
        ignore_wrapped_history: Force an empty starting transcript regardless
            of the session flag.
    """
    ctx = context or CollapseContext()
    sessions = ctx.sessions if ctx.sessions is not None else SessionRegistry()

    with sessions.collapse_scope(ctx.session_id) as fresh:
        envelope = build_envelope(
            messages,
            scaffold=ctx.scaffold,
            config=ctx.config,
            ignore_wrapped_history=ignore_wrapped_history or fresh,
        )

    transcript = envelope.transcript
    result = CollapseResult(
        messages=envelope.messages,
        transcript=transcript.text,
        state=transcript.state,
        decisions=transcript.decisions,
        reused_prior=transcript.reused,
        processed_messages=transcript.processed,
        skill=transcript.skill,
    )
    logger.info(
        "Collapsed %d messages (%d walked, reused=%s, suppressed=%d)",
        len(messages),
        result.processed_messages,
        result.reused_prior,
        result.suppressed_count,
    )
    return result


def collapse_messages(
    messages: Sequence[Any],
    context: CollapseContext | None = None,
    *,
    ignore_wrapped_history: bool = False,
) -> list[dict[str, Any]]:
    """Collapse and return only the outgoing message list."""
    return collapse(messages, context, ignore_wrapped_history=ignore_wrapped_history).messages
