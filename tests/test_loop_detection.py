"""Tests for the tool-result loop-detection state machine."""

from __future__ import annotations

import logging

import pytest

from cline_bridge.blocks import (
    FAMILY_STOP_PREFIX,
    GLOBAL_STOP_PREFIX,
    IDENTICAL_STOP_PREFIX,
    NO_OUTPUT_STOP_PREFIX,
)
from cline_bridge.config import CollapseConfig
from cline_bridge.content import NO_OUTPUT_SENTINEL
from cline_bridge.loop_detection import LoopDetector


@pytest.fixture()
def detector() -> LoopDetector:
    return LoopDetector()


class TestNoOutput:
    def test_first_passes_repeats_stop(self, detector: LoopDetector) -> None:
        decisions = [detector.observe("bash", "$ make lint", NO_OUTPUT_SENTINEL) for _ in range(3)]
        assert [d.action for d in decisions] == ["pass", "no_output", "no_output"]
        assert decisions[0].body == NO_OUTPUT_SENTINEL
        assert decisions[1].body.startswith(NO_OUTPUT_STOP_PREFIX)
        assert detector.state.no_output_counts["$ make lint"] == 3

    def test_different_summaries_tracked_separately(self, detector: LoopDetector) -> None:
        assert detector.observe("bash", "$ make a", NO_OUTPUT_SENTINEL).action == "pass"
        assert detector.observe("bash", "$ make b", NO_OUTPUT_SENTINEL).action == "pass"

    def test_no_output_is_terminal(self, detector: LoopDetector) -> None:
        # five empty ls runs: family count exceeds the threshold but the
        # no-output stop wins
        decisions = [detector.observe("bash", "$ ls", NO_OUTPUT_SENTINEL) for _ in range(6)]
        assert {d.action for d in decisions[1:]} == {"no_output"}
        assert detector.state.family_counts["ls ."] == 6
        assert not detector.state.suppressed_families

    def test_note_with_branch_range_hint(self, detector: LoopDetector) -> None:
        for _ in range(3):
            detector.observe("bash", "$ git diff main..feature", NO_OUTPUT_SENTINEL)
        notes = detector.advisory_notes()
        assert "- NO OUTPUT x3: $ git diff main..feature" in notes
        assert any("branch-range" in line for line in notes)

    def test_single_no_output_has_no_note(self, detector: LoopDetector) -> None:
        detector.observe("bash", "$ make lint", NO_OUTPUT_SENTINEL)
        assert detector.advisory_notes() == []


class TestIdenticalResult:
    def test_read_edit_read(self, detector: LoopDetector) -> None:
        first = detector.observe("read_file", "read a.txt", "hello")
        second = detector.observe("read_file", "read a.txt", "hello")
        edit = detector.observe("edit_file", "edit a.txt", "ok")
        third = detector.observe("read_file", "read a.txt", "hello")

        assert [first.action, second.action, edit.action, third.action] == [
            "pass",
            "identical",
            "pass",
            "pass",
        ]
        assert second.body.startswith(IDENTICAL_STOP_PREFIX)
        assert "read this exact file" in second.body
        assert "interactive prompt" not in second.body
        assert detector.state.mutation_count == 1

    def test_shell_gets_cancel_hint(self, detector: LoopDetector) -> None:
        detector.observe("bash", "$ npm test", "1 passed")
        decision = detector.observe("bash", "$ npm test", "1 passed")
        assert decision.action == "identical"
        assert "ran this exact command" in decision.body
        assert "interactive prompt" in decision.body

    def test_changed_result_passes(self, detector: LoopDetector) -> None:
        detector.observe("bash", "$ npm test", "1 failed")
        assert detector.observe("bash", "$ npm test", "1 passed").action == "pass"

    def test_repeat_note(self, detector: LoopDetector) -> None:
        for _ in range(3):
            detector.observe("web_fetch", 'web_fetch {"url":"u"}', "page")
        assert '- IDENTICAL RESULT x2: web_fetch {"url":"u"}' in detector.advisory_notes()


class TestFamilyThreshold:
    def test_fifth_listing_suppressed(self, detector: LoopDetector) -> None:
        commands = ["$ ls", "$ ls -la", "$ ls -la .", "$ ls .", "$ ls ./"]
        decisions = [detector.observe("bash", c, f"listing {i}") for i, c in enumerate(commands)]
        assert [d.action for d in decisions] == ["pass"] * 4 + ["family"]
        stop = decisions[-1]
        assert stop.body.startswith(FAMILY_STOP_PREFIX)
        assert "`ls .`" in stop.body
        assert "(ref " in stop.body
        assert detector.state.suppressed_families["ls ."] == 1

    def test_other_target_is_own_family(self, detector: LoopDetector) -> None:
        for i, c in enumerate(["$ ls", "$ ls -la", "$ ls -la .", "$ ls ."]):
            detector.observe("bash", c, f"listing {i}")
        assert detector.observe("bash", "$ ls -al /tmp", "tmp").action == "pass"
        assert detector.state.family_counts["ls /tmp"] == 1

    def test_note_hint_before_any_edit(self, detector: LoopDetector) -> None:
        for i in range(5):
            detector.observe("read_file", "read a.py", f"v{i}")
        notes = detector.advisory_notes()
        assert "- SUPPRESSED x1: read a.py" in notes
        assert any("no file has been edited yet" in line for line in notes)

    def test_note_hint_after_edit(self, detector: LoopDetector) -> None:
        detector.observe("edit_file", "edit a.py", "ok")
        for i in range(5):
            detector.observe("read_file", "read a.py", f"v{i}")
        assert any("already made edits" in line for line in detector.advisory_notes())

    def test_custom_threshold(self) -> None:
        detector = LoopDetector(config=CollapseConfig(family_threshold=2))
        actions = [detector.observe("bash", "$ git status", f"s{i}").action for i in range(3)]
        assert actions == ["pass", "pass", "family"]


class TestGlobalThreshold:
    def test_ninth_distinct_inspection(self, detector: LoopDetector) -> None:
        decisions = [detector.observe("bash", f"$ cat f{i}.py", f"body {i}") for i in range(9)]
        assert [d.action for d in decisions] == ["pass"] * 8 + ["global"]
        assert decisions[-1].body.startswith(GLOBAL_STOP_PREFIX)
        assert detector.state.global_suppressions == 1
        notes = detector.advisory_notes()
        assert any(line.startswith("Inspection loop: 9 read-only calls") for line in notes)

    def test_global_note_excluded_by_family_note(self, detector: LoopDetector) -> None:
        for i in range(5):
            detector.observe("bash", "$ ls", f"listing {i}")
        for i in range(4):
            detector.observe("bash", f"$ cat f{i}.py", f"body {i}")
        notes = detector.advisory_notes()
        assert "- SUPPRESSED x1: ls ." in notes
        assert not any(line.startswith("Inspection loop") for line in notes)

    def test_non_inspection_calls_do_not_count(self, detector: LoopDetector) -> None:
        for i in range(12):
            detector.observe("bash", f"$ make target{i}", f"built {i}")
        assert detector.state.inspections_since_mutation == 0


class TestMutationReset:
    def test_edit_clears_loop_state(self, detector: LoopDetector) -> None:
        for i in range(6):
            detector.observe("bash", "$ ls", f"listing {i}")
        detector.observe("bash", "$ make", NO_OUTPUT_SENTINEL)
        detector.observe("write_to_file", "write b.py", "created")
        state = detector.state
        assert state.mutation_count == 1
        assert not state.family_counts
        assert not state.suppressed_families
        assert not state.no_output_seen
        assert state.inspections_since_mutation == 0
        assert detector.advisory_notes() == []

    def test_mutation_result_is_tracked_after_reset(self, detector: LoopDetector) -> None:
        detector.observe("edit_file", "edit a.py", "ok")
        assert len(detector.state.signatures) == 1


class TestLogging:
    def test_loop_detection_warns(self, detector: LoopDetector, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="cline_bridge.loop_detection"):
            detector.observe("bash", "$ npm test", "ok")
            detector.observe("bash", "$ npm test", "ok")
        assert "Loop detection: identical result" in caplog.text
