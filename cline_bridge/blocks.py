"""Text formats of the collapsed transcript.

Everything the engine writes into a task body, and everything the
rehydrator reads back out of one, goes through this module:

- turn blocks ``[USER]``/``[ASSISTANT]``/... followed by the turn text
- tool-result blocks ``[TOOL RESULT] <summary>`` ... ``[END TOOL RESULT]``
- stop bodies that replace suppressed tool results (fixed prefixes)
- the trailing advisory section ``[ADVISORY NOTES]`` ... ``[END ADVISORY NOTES]``
- the envelope markers used to recognize an already-wrapped user turn

Delimiter text and line-leading stop prefixes found inside embedded content
are neutralized so that a tool result quoting a transcript cannot forge
blocks or stops.
"""

from __future__ import annotations

import hashlib
import re
from typing import Iterator

TASK_OPEN = "<task>"
TASK_CLOSE = "</task>"
PROGRESS_MARKER = "# task_progress RECOMMENDED"
ENVIRONMENT_MARKER = "<environment_details>"

TOOL_RESULT_OPEN = "[TOOL RESULT]"
TOOL_RESULT_CLOSE = "[END TOOL RESULT]"
ADVISORY_OPEN = "[ADVISORY NOTES]"
ADVISORY_CLOSE = "[END ADVISORY NOTES]"

NO_OUTPUT_STOP_PREFIX = "LOOP DETECTED (no output):"
IDENTICAL_STOP_PREFIX = "LOOP DETECTED (identical result):"
FAMILY_STOP_PREFIX = "STOP INSPECTING:"
GLOBAL_STOP_PREFIX = "INSPECTION LOOP:"

BLOCK_SEPARATOR = "\n\n"

_NEUTRALIZED: tuple[tuple[str, str], ...] = (
    (TOOL_RESULT_CLOSE, "(END TOOL RESULT)"),
    (TOOL_RESULT_OPEN, "(TOOL RESULT)"),
    (ADVISORY_CLOSE, "(END ADVISORY NOTES)"),
    (ADVISORY_OPEN, "(ADVISORY NOTES)"),
)

_STOP_PREFIXES: tuple[str, ...] = (
    NO_OUTPUT_STOP_PREFIX,
    IDENTICAL_STOP_PREFIX,
    FAMILY_STOP_PREFIX,
    GLOBAL_STOP_PREFIX,
)
# "STOP INSPECTING:" at a line start -> "(STOP INSPECTING):"
_STOP_PREFIX_RE = re.compile(
    r"^(" + "|".join(re.escape(p[:-1]) for p in _STOP_PREFIXES) + r"):",
    re.MULTILINE,
)

_TOOL_BLOCK_RE = re.compile(
    r"^\[TOOL RESULT\] ([^\n]*)\n(.*?)\n\[END TOOL RESULT\]$",
    re.MULTILINE | re.DOTALL,
)
_SIGNATURE_REF_RE = re.compile(r"\(ref ([0-9a-f]{16})\)\s*$")

NO_OUTPUT_LINE_RE = re.compile(r"^- NO OUTPUT x(\d+): (.+)$", re.MULTILINE)
IDENTICAL_LINE_RE = re.compile(r"^- IDENTICAL RESULT x(\d+): (.+)$", re.MULTILINE)
SUPPRESSED_LINE_RE = re.compile(r"^- SUPPRESSED x(\d+): (.+)$", re.MULTILINE)


def neutralize(text: str) -> str:
    """Defuse block delimiters and stop prefixes inside embedded text."""
    for marker, replacement in _NEUTRALIZED:
        if marker in text:
            text = text.replace(marker, replacement)
    return _STOP_PREFIX_RE.sub(r"(\1):", text)


# ---------------------------------------------------------------------------
# Blocks
# ---------------------------------------------------------------------------


def turn_block(label: str, text: str) -> str:
    return f"[{label}]\n{neutralize(text)}"


def tool_block(summary: str, body: str) -> str:
    """Tool-result block; ``body`` must already be neutralized."""
    return f"{TOOL_RESULT_OPEN} {summary}\n{body}\n{TOOL_RESULT_CLOSE}"


def iter_tool_blocks(text: str) -> Iterator[tuple[str, str]]:
    """Yield ``(summary, body)`` for every tool-result block, in order."""
    for match in _TOOL_BLOCK_RE.finditer(text):
        yield match.group(1), match.group(2)


# ---------------------------------------------------------------------------
# Signatures
# ---------------------------------------------------------------------------


def result_signature(summary: str, result: str) -> str:
    """Short stable digest of a (summary, result) pair."""
    raw = f"{summary}\x00{result}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def signature_ref(signature: str) -> str:
    return f"(ref {signature})"


def parse_signature_ref(body: str) -> str | None:
    match = _SIGNATURE_REF_RE.search(body)
    return match.group(1) if match else None


# ---------------------------------------------------------------------------
# Advisory section
# ---------------------------------------------------------------------------


def advisory_section(lines: list[str]) -> str:
    return "\n".join([ADVISORY_OPEN, *lines, ADVISORY_CLOSE])


def split_advisory(text: str) -> tuple[str, str]:
    """Split a task body into (body without advisory section, advisory section).

    The section is only recognized as the final block of the body.
    """
    stripped = text.rstrip()
    if not stripped.endswith(ADVISORY_CLOSE):
        return text, ""
    if stripped.startswith(ADVISORY_OPEN + "\n"):
        return "", stripped
    start = stripped.rfind("\n" + ADVISORY_OPEN + "\n")
    if start == -1:
        return text, ""
    return stripped[:start].rstrip(), stripped[start + 1:]


def no_output_line(summary: str, count: int) -> str:
    return f"- NO OUTPUT x{count}: {summary}"


def identical_line(summary: str, count: int) -> str:
    return f"- IDENTICAL RESULT x{count}: {summary}"


def suppressed_line(family: str, count: int) -> str:
    return f"- SUPPRESSED x{count}: {family}"


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


def task_block(body: str) -> str:
    return f"{TASK_OPEN}\n{body}\n{TASK_CLOSE}"


def is_wrapped_text(text: str) -> bool:
    """True for user text already in collapsed-envelope shape."""
    return (
        TASK_OPEN in text
        and TASK_CLOSE in text
        and PROGRESS_MARKER in text
        and ENVIRONMENT_MARKER in text
    )


def extract_task_body(text: str) -> str | None:
    """Body between the first open and the last close task marker.

    Index-based rather than a regex so task markers quoted inside file
    content do not end the extraction early. A later, unrelated close marker
    after the real one would be included.
    """
    start = text.find(TASK_OPEN)
    end = text.rfind(TASK_CLOSE)
    if start == -1 or end == -1 or end < start + len(TASK_OPEN):
        return None
    return text[start + len(TASK_OPEN):end].strip("\n")
