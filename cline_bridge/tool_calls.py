"""Tool-call identity resolution and canonical invocation summaries.

Agent runtimes record tool calls in (at least) three shapes:

- inline content parts: ``{"type": "toolCall", "id", "name", "arguments"}``
- a flat list on the message: ``{"toolCalls": [{"id", "name", "arguments"}]}``
- an OpenAI-style list nesting one level deeper:
  ``{"tool_calls": [{"id", "function": {"name", "arguments"}}]}``

``extract_tool_calls`` folds all of them into ``ToolCall`` records at the
boundary; nothing downstream branches on shape.

The summary produced by ``summarize_invocation`` is the identity key used by
loop detection: two calls are "the same" iff their summaries are equal.
"""

from __future__ import annotations

import json as _json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Literal

from cline_bridge.config import DEFAULT_SUMMARY_MAX_CHARS
from cline_bridge.content import TOOL_CALL_LIST_KEYS, field_of, is_tool_call_part

logger = logging.getLogger(__name__)

ToolKind = Literal["shell", "read", "write", "edit", "search", "other"]

SHELL_TOOLS: frozenset[str] = frozenset({
    "bash",
    "shell",
    "sh",
    "execute_command",
    "run_command",
    "run_terminal_cmd",
    "terminal",
    "exec",
})

READ_TOOLS: frozenset[str] = frozenset({
    "read",
    "read_file",
    "view",
    "view_file",
    "open_file",
})

WRITE_TOOLS: frozenset[str] = frozenset({
    "write",
    "write_file",
    "write_to_file",
    "create_file",
})

EDIT_TOOLS: frozenset[str] = frozenset({
    "edit",
    "edit_file",
    "replace_in_file",
    "str_replace",
    "str_replace_editor",
    "apply_patch",
    "multi_edit",
    "multiedit",
})

SEARCH_TOOLS: frozenset[str] = frozenset({
    "ls",
    "list_files",
    "list_dir",
    "grep",
    "search",
    "search_files",
    "find",
    "glob",
})
"""Dedicated listing/search tools; read-only, summarized generically."""

COMMAND_KEYS: tuple[str, ...] = ("command", "cmd", "script")
PATH_KEYS: tuple[str, ...] = ("path", "file_path", "filePath", "file", "filename", "target_file")

UNRESOLVED_TOOL_NAME = "tool"

_NAME_SPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class ToolCall:
    """One tool invocation, whatever shape it was recorded in."""

    id: str
    name: str
    arguments: Any = None


@dataclass(frozen=True)
class ToolCallContext:
    """Resolved identity of a tool call: its tool name and canonical summary."""

    name: str
    summary: str


UNRESOLVED = ToolCallContext(name=UNRESOLVED_TOOL_NAME, summary=UNRESOLVED_TOOL_NAME)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


def normalize_tool_name(name: str | None) -> str:
    """Trim a tool name and join inner whitespace runs with ``_``.

    A summary's first word is read back as the tool class on rehydration,
    so a name must never contain a space (``"edit notes"`` -> ``"edit_notes"``).
    """
    return _NAME_SPACE_RE.sub("_", (name or "").strip())


def tool_kind(name: str) -> ToolKind:
    """Classify a tool by name."""
    key = (name or "").strip().lower()
    if key in SHELL_TOOLS:
        return "shell"
    if key in READ_TOOLS:
        return "read"
    if key in WRITE_TOOLS:
        return "write"
    if key in EDIT_TOOLS:
        return "edit"
    if key in SEARCH_TOOLS:
        return "search"
    return "other"


def summary_kind(summary: str) -> ToolKind:
    """Classify a tool from its canonical summary alone.

    Inverse of ``summarize_invocation`` for the classified forms, so a
    transcript can be re-read without the original tool names.
    """
    if summary.startswith("$ "):
        return "shell"
    head = summary.split(" ", 1)[0]
    if head == "read":
        return "read"
    if head == "write":
        return "write"
    if head == "edit":
        return "edit"
    if head.lower() in SEARCH_TOOLS:
        return "search"
    return "other"


def is_mutation_kind(kind: ToolKind) -> bool:
    return kind in ("write", "edit")


# ---------------------------------------------------------------------------
# Arguments and summaries
# ---------------------------------------------------------------------------


def parse_arguments(arguments: Any) -> dict[str, Any]:
    """Coerce raw tool arguments into a dict.

    Malformed or non-object JSON strings become ``{"raw": <original>}``
    instead of failing.
    """
    if arguments is None:
        return {}
    if isinstance(arguments, dict):
        return arguments
    if isinstance(arguments, str):
        if not arguments.strip():
            return {}
        try:
            parsed = _json.loads(arguments)
        except ValueError:
            return {"raw": arguments}
        if isinstance(parsed, dict):
            return parsed
        return {"raw": arguments}
    if hasattr(arguments, "items"):
        try:
            return dict(arguments.items())
        except (TypeError, ValueError):
            pass
    return {"raw": str(arguments)}


def single_line(text: str) -> str:
    """Join the non-blank lines of ``text`` with single spaces."""
    return " ".join(part.strip() for part in text.splitlines() if part.strip())


def _first_str(args: dict[str, Any], keys: Iterable[str]) -> str | None:
    for key in keys:
        value = args.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def compact_json(args: dict[str, Any]) -> str:
    return _json.dumps(
        args,
        sort_keys=True,
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )


def _generic_summary(name: str, args: dict[str, Any], max_chars: int) -> str:
    if not args:
        return name
    return f"{name} {compact_json(args)[:max_chars]}"


def summarize_invocation(
    name: str,
    arguments: Any,
    *,
    max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
) -> str:
    """Render a tool call as a canonical one-line summary.

    - shell: ``$ <command>``
    - read: ``read <path>``
    - write / edit: ``write <path>`` / ``edit <path>``
    - anything else: ``<name> <compact json>`` (json cut at ``max_chars``)
    """
    display_name = normalize_tool_name(name) or UNRESOLVED_TOOL_NAME
    args = parse_arguments(arguments)
    kind = tool_kind(display_name)

    if kind == "shell":
        command = _first_str(args, COMMAND_KEYS)
        if command:
            return single_line(f"$ {command}")
    elif kind == "read":
        path = _first_str(args, PATH_KEYS)
        if path:
            return single_line(f"read {path}")
        return single_line(_generic_summary("read", args, max_chars))
    elif kind in ("write", "edit"):
        path = _first_str(args, PATH_KEYS)
        if path:
            return single_line(f"{kind} {path}")
        return single_line(_generic_summary(kind, args, max_chars))

    return single_line(_generic_summary(display_name, args, max_chars))


# ---------------------------------------------------------------------------
# Identity resolution
# ---------------------------------------------------------------------------


def _call_from_entry(entry: Any) -> ToolCall | None:
    """Read one recorded call; ``function`` may nest name/arguments."""
    if entry is None:
        return None
    call_id = field_of(entry, "id") or field_of(entry, "call_id") or field_of(entry, "toolCallId")
    fn = field_of(entry, "function")
    name = field_of(fn, "name") if fn is not None else None
    name = name or field_of(entry, "name")
    if fn is not None and field_of(fn, "arguments") is not None:
        arguments = field_of(fn, "arguments")
    else:
        arguments = field_of(entry, "arguments")
        if arguments is None:
            arguments = field_of(entry, "input")
        if arguments is None:
            arguments = field_of(entry, "args")
    if not isinstance(call_id, str) or not call_id.strip():
        return None
    if not isinstance(name, str) or not name.strip():
        return None
    return ToolCall(id=call_id.strip(), name=normalize_tool_name(name), arguments=arguments)


def extract_tool_calls(message: Any) -> list[ToolCall]:
    """All tool calls recorded on one message, in recorded order."""
    calls: list[ToolCall] = []
    content = field_of(message, "content")
    if isinstance(content, list):
        for part in content:
            if is_tool_call_part(part):
                call = _call_from_entry(part)
                if call is not None:
                    calls.append(call)
    for key in TOOL_CALL_LIST_KEYS:
        entries = field_of(message, key)
        if not isinstance(entries, list):
            continue
        for entry in entries:
            call = _call_from_entry(entry)
            if call is not None:
                calls.append(call)
    return calls


def resolve_tool_calls(
    messages: Iterable[Any],
    *,
    max_chars: int = DEFAULT_SUMMARY_MAX_CHARS,
) -> dict[str, ToolCallContext]:
    """Map call id -> (name, summary) across the whole history.

    Later records for the same id overwrite earlier ones.
    """
    contexts: dict[str, ToolCallContext] = {}
    for message in messages:
        for call in extract_tool_calls(message):
            contexts[call.id] = ToolCallContext(
                name=call.name,
                summary=summarize_invocation(call.name, call.arguments, max_chars=max_chars),
            )
    logger.debug("Resolved %d tool-call identities", len(contexts))
    return contexts
