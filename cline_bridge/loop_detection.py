"""Loop-detection state machine for tool results.

Each tool result is classified once, in order, and either passed through or
replaced by a corrective stop instruction aimed at the upstream model:

1. write/edit calls count as a mutation and reset all loop state;
2. inspection calls (reads, listings, searches, read-only shell commands) bump
   their family count and the since-mutation count;
3. a repeated "(no output)" for the same summary becomes a no-output stop;
4. a result identical to one already shown becomes an identical-result stop;
5. a family inspected more than ``family_threshold`` times is suppressed;
6. more than ``global_threshold`` inspections since the last edit is an
   inspection loop.

The detector starts from a ``PriorState`` rehydrated from the previous task
body, so decisions are the same whether a history is collapsed in one call
or across many.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from cline_bridge.blocks import (
    FAMILY_STOP_PREFIX,
    GLOBAL_STOP_PREFIX,
    IDENTICAL_STOP_PREFIX,
    NO_OUTPUT_STOP_PREFIX,
    identical_line,
    no_output_line,
    result_signature,
    signature_ref,
    suppressed_line,
    tool_block,
)
from cline_bridge.config import CollapseConfig
from cline_bridge.content import NO_OUTPUT_SENTINEL
from cline_bridge.inspection import inspection_family, is_branch_range_diff
from cline_bridge.state import PriorState
from cline_bridge.tool_calls import ToolKind, is_mutation_kind, tool_kind

logger = logging.getLogger(__name__)

Action = Literal["pass", "no_output", "identical", "family", "global"]


@dataclass(frozen=True)
class Decision:
    """Outcome for one tool result."""

    action: Action
    summary: str
    body: str
    family: str | None = None

    @property
    def suppressed(self) -> bool:
        return self.action != "pass"

    @property
    def block(self) -> str:
        return tool_block(self.summary, self.body)


# ---------------------------------------------------------------------------
# Stop messages
# ---------------------------------------------------------------------------


def no_output_stop(summary: str) -> str:
    return (
        f"{NO_OUTPUT_STOP_PREFIX} `{summary}` was already run and produced no output. "
        "Running it again will not change that. Do not repeat it; try a different "
        "approach or continue with the task."
    )


def identical_stop(kind: ToolKind, summary: str) -> str:
    if kind == "read":
        verb, past, obj = "read", "read", "file"
    else:
        verb, past, obj = "run", "ran", "command"
    text = (
        f"{IDENTICAL_STOP_PREFIX} you already {past} this exact {obj} (`{summary}`) "
        f"and got the same result shown earlier in this transcript. Do not {verb} it "
        "again; use the earlier output and move on."
    )
    if kind == "shell":
        text += (
            " If the command is waiting on an interactive prompt or pager, cancel it "
            "and rerun it non-interactively (for example with --no-pager, --yes or `| cat`)."
        )
    return text


def family_stop(family: str, count: int, signature: str) -> str:
    return (
        f"{FAMILY_STOP_PREFIX} `{family}` has been inspected {count} times since the "
        "last edit. You already have this information. Stop inspecting and proceed "
        f"with the edits now. {signature_ref(signature)}"
    )


def global_stop(count: int, signature: str) -> str:
    return (
        f"{GLOBAL_STOP_PREFIX} {count} read-only calls since the last edit. You are "
        "stuck in an inspection loop. Stop exploring and write code now. "
        f"{signature_ref(signature)}"
    )


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------


class LoopDetector:
    """Classifies tool results against accumulated loop state."""

    def __init__(self, state: PriorState | None = None, *, config: CollapseConfig | None = None) -> None:
        self.state = state if state is not None else PriorState()
        self.config = config or CollapseConfig()

    def observe(self, name: str, summary: str, result: str) -> Decision:
        """Classify one tool result and update state.

        ``result`` must already be neutralized; its signature is computed over
        exactly the text that will appear in the transcript.
        """
        state = self.state
        kind = tool_kind(name)

        if is_mutation_kind(kind):
            state.record_mutation()
            logger.debug("Mutation #%d (%s); loop state reset", state.mutation_count, summary)

        family = inspection_family(kind, summary)
        if family is not None:
            state.record_inspection(family)

        if result == NO_OUTPUT_SENTINEL:
            state.no_output_counts[summary] += 1
            if summary in state.no_output_seen:
                logger.warning(
                    "Loop detection: repeated empty result for '%s' (count=%d)",
                    summary,
                    state.no_output_counts[summary],
                )
                return Decision("no_output", summary, no_output_stop(summary), family)
            state.no_output_seen.add(summary)
            return Decision("pass", summary, result, family)

        signature = result_signature(summary, result)
        if signature in state.signatures:
            state.repeat_counts[summary] += 1
            logger.warning(
                "Loop detection: identical result for '%s' (repeats=%d)",
                summary,
                state.repeat_counts[summary],
            )
            return Decision("identical", summary, identical_stop(kind, summary), family)
        state.signatures.add(signature)

        if family is None:
            return Decision("pass", summary, result, family)

        count = state.family_counts[family]
        if count > self.config.family_threshold:
            state.suppressed_families[family] += 1
            logger.warning(
                "Loop detection: family '%s' inspected %d times (threshold=%d)",
                family,
                count,
                self.config.family_threshold,
            )
            return Decision("family", summary, family_stop(family, count, signature), family)

        since = state.inspections_since_mutation
        if since > self.config.global_threshold:
            state.global_suppressions += 1
            logger.warning(
                "Loop detection: %d inspections since last edit (threshold=%d)",
                since,
                self.config.global_threshold,
            )
            return Decision("global", summary, global_stop(since, signature), family)

        return Decision("pass", summary, result, family)

    # -- advisory notes -----------------------------------------------------

    def advisory_notes(self) -> list[str]:
        """Lines for the trailing advisory section (may be empty)."""
        state = self.state
        lines: list[str] = []

        repeated_empty = sorted(s for s, n in state.no_output_counts.items() if n > 1)
        if repeated_empty:
            lines.append("Commands that keep producing no output (do not run them again):")
            for summary in repeated_empty:
                lines.append(no_output_line(summary, state.no_output_counts[summary]))
                if is_branch_range_diff(summary):
                    lines.append(
                        "  hint: an empty branch-range diff/log means the ranges have no "
                        "differences; check the branch names or compare against the "
                        "working tree instead."
                    )

        repeated = sorted(s for s, n in state.repeat_counts.items() if n > 0)
        if repeated:
            lines.append("Calls that returned a result already shown (reuse the earlier output):")
            for summary in repeated:
                lines.append(identical_line(summary, state.repeat_counts[summary]))

        suppressed = sorted(f for f, n in state.suppressed_families.items() if n > 0)
        if suppressed:
            lines.append("Inspection families suppressed for repetition:")
            for family in suppressed:
                lines.append(suppressed_line(family, state.suppressed_families[family]))
            if state.mutation_count:
                lines.append(
                    "  hint: you have already made edits; verify once with a targeted "
                    "check, then continue with the remaining work."
                )
            else:
                lines.append(
                    "  hint: no file has been edited yet; you have enough context, "
                    "start implementing the change now."
                )
        elif state.inspections_since_mutation > self.config.global_threshold:
            lines.append(
                f"Inspection loop: {state.inspections_since_mutation} read-only calls since "
                "the last edit. Stop exploring and start writing code."
            )

        return lines
