"""Loop-detection bookkeeping and its rehydration from transcript text.

The collapse engine keeps no memory between calls. Everything the loop
detector knew at the end of the previous call is recovered here from the
task body that call emitted: tool-result blocks are replayed in order, then
the trailing advisory notes are merged in as lower bounds.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from cline_bridge.blocks import (
    FAMILY_STOP_PREFIX,
    GLOBAL_STOP_PREFIX,
    IDENTICAL_LINE_RE,
    IDENTICAL_STOP_PREFIX,
    NO_OUTPUT_LINE_RE,
    NO_OUTPUT_STOP_PREFIX,
    SUPPRESSED_LINE_RE,
    iter_tool_blocks,
    parse_signature_ref,
    result_signature,
    split_advisory,
)
from cline_bridge.config import DEFAULT_FAMILY_THRESHOLD
from cline_bridge.content import NO_OUTPUT_SENTINEL
from cline_bridge.inspection import inspection_family
from cline_bridge.tool_calls import is_mutation_kind, summary_kind

logger = logging.getLogger(__name__)


@dataclass
class PriorState:
    """Counters carried from one collapse to the next."""

    no_output_counts: Counter[str] = field(default_factory=Counter)
    no_output_seen: set[str] = field(default_factory=set)
    repeat_counts: Counter[str] = field(default_factory=Counter)
    signatures: set[str] = field(default_factory=set)
    family_counts: Counter[str] = field(default_factory=Counter)
    inspections_since_mutation: int = 0
    mutation_count: int = 0
    suppressed_families: Counter[str] = field(default_factory=Counter)
    global_suppressions: int = 0

    def reset_loop_state(self) -> None:
        """Forget everything except the cumulative mutation count."""
        self.no_output_counts.clear()
        self.no_output_seen.clear()
        self.repeat_counts.clear()
        self.signatures.clear()
        self.family_counts.clear()
        self.inspections_since_mutation = 0
        self.suppressed_families.clear()
        self.global_suppressions = 0

    def record_mutation(self) -> None:
        self.mutation_count += 1
        self.reset_loop_state()

    def record_inspection(self, family: str) -> int:
        """Count one inspection call; returns the family's new count."""
        self.family_counts[family] += 1
        self.inspections_since_mutation += 1
        return self.family_counts[family]

    def is_empty(self) -> bool:
        return not (
            self.no_output_counts
            or self.repeat_counts
            or self.signatures
            or self.family_counts
            or self.mutation_count
            or self.suppressed_families
            or self.global_suppressions
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly view (sorted) for the CLI and debugging."""
        return {
            "no_output_counts": dict(sorted(self.no_output_counts.items())),
            "no_output_seen": sorted(self.no_output_seen),
            "repeat_counts": dict(sorted(self.repeat_counts.items())),
            "signatures": len(self.signatures),
            "family_counts": dict(sorted(self.family_counts.items())),
            "inspections_since_mutation": self.inspections_since_mutation,
            "mutation_count": self.mutation_count,
            "suppressed_families": dict(sorted(self.suppressed_families.items())),
            "global_suppressions": self.global_suppressions,
        }


# ---------------------------------------------------------------------------
# Rehydration
# ---------------------------------------------------------------------------


def _replay_block(state: PriorState, summary: str, body: str) -> None:
    kind = summary_kind(summary)
    if is_mutation_kind(kind):
        state.record_mutation()
    family = inspection_family(kind, summary)
    if family is not None:
        state.record_inspection(family)

    if body == NO_OUTPUT_SENTINEL or body.startswith(NO_OUTPUT_STOP_PREFIX):
        state.no_output_counts[summary] += 1
        state.no_output_seen.add(summary)
        return
    if body.startswith(IDENTICAL_STOP_PREFIX):
        state.repeat_counts[summary] += 1
        return
    if body.startswith(FAMILY_STOP_PREFIX):
        state.suppressed_families[family or summary] += 1
    elif body.startswith(GLOBAL_STOP_PREFIX):
        state.global_suppressions += 1
    else:
        state.signatures.add(result_signature(summary, body))
        return

    signature = parse_signature_ref(body)
    if signature:
        state.signatures.add(signature)


def _merge_notes(state: PriorState, section: str, family_threshold: int) -> None:
    for match in NO_OUTPUT_LINE_RE.finditer(section):
        count, summary = int(match.group(1)), match.group(2)
        state.no_output_counts[summary] = max(state.no_output_counts[summary], count)
        if count > 0:
            state.no_output_seen.add(summary)
    for match in IDENTICAL_LINE_RE.finditer(section):
        count, summary = int(match.group(1)), match.group(2)
        state.repeat_counts[summary] = max(state.repeat_counts[summary], count)
    for match in SUPPRESSED_LINE_RE.finditer(section):
        count, family = int(match.group(1)), match.group(2)
        state.suppressed_families[family] = max(state.suppressed_families[family], count)
        # a family suppressed k times was counted at least threshold + k times
        floor = family_threshold + count
        if state.family_counts[family] < floor:
            state.family_counts[family] = floor


def rehydrate(text: str, *, family_threshold: int = DEFAULT_FAMILY_THRESHOLD) -> PriorState:
    """Rebuild loop-detection state from a previously emitted task body.

    Counts are the maximum of block replay and advisory-note parsing; the
    since-mutation count is raised to the sum of family counts if larger.
    """
    state = PriorState()
    if not text.strip():
        return state

    body, section = split_advisory(text)
    blocks = 0
    for summary, block_body in iter_tool_blocks(body):
        _replay_block(state, summary, block_body)
        blocks += 1

    if section:
        _merge_notes(state, section, family_threshold)

    family_total = sum(state.family_counts.values())
    if family_total > state.inspections_since_mutation:
        state.inspections_since_mutation = family_total

    logger.debug(
        "Rehydrated %d tool blocks: %d mutations, %d inspections since last, %d signatures",
        blocks,
        state.mutation_count,
        state.inspections_since_mutation,
        len(state.signatures),
    )
    return state
