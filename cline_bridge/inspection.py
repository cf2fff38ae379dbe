"""Read-only call classification and family normalization.

A *family* is the identity under which inspection calls are counted: ``ls``,
``ls -la`` and ``ls -la .`` are all the family ``ls .``. Only the leading
segment of a compound shell command is considered, so chaining an already
penalized command with something new (``ls && echo hi``) does not reset it.
Leading ``cd`` hops are not classified themselves; their directory is folded
into the family target instead (``cd src && ls`` is ``ls src``).
"""

from __future__ import annotations

import re
import shlex

from cline_bridge.tool_calls import ToolKind

LISTING_VERBS: frozenset[str] = frozenset({"ls", "ll", "la", "dir", "tree", "exa", "eza"})
VIEWING_VERBS: frozenset[str] = frozenset({"cat", "head", "tail", "less", "more", "bat", "nl"})
SEARCH_VERBS: frozenset[str] = frozenset({
    "grep",
    "egrep",
    "fgrep",
    "rg",
    "ag",
    "ack",
    "find",
    "fd",
    "wc",
    "stat",
    "file",
})
LOCATION_VERBS: frozenset[str] = frozenset({"pwd"})
PRESENCE_VERBS: frozenset[str] = frozenset({"which", "whereis", "type"})
GIT_READ_SUBCOMMANDS: frozenset[str] = frozenset({"status", "diff", "log", "show"})

# git global options that take a separate value
_GIT_VALUE_OPTIONS: frozenset[str] = frozenset({"-C", "-c", "--git-dir", "--work-tree", "--namespace"})

_SEGMENT_SPLIT_RE = re.compile(r"\s*(?:&&|\|\||;)\s*")
_STOP_TOKENS: frozenset[str] = frozenset({"|", ">", ">>", "<", "2>", "2>&1", "&>"})
_BRANCH_RANGE_RE = re.compile(r"^\$ .*\bgit\s+(?:\S+\s+)*?(?:diff|log)\b.*?\S\.\.\.?\S")


def normalize_command(command: str) -> str:
    """Drop a leading ``$ `` marker and collapse whitespace."""
    text = command.strip()
    if text.startswith("$ "):
        text = text[2:]
    elif text == "$":
        text = ""
    return " ".join(text.split())


def _segments(command: str) -> list[str]:
    return [s for s in _SEGMENT_SPLIT_RE.split(normalize_command(command)) if s]


def _is_cd(segment: str) -> bool:
    return segment == "cd" or segment.startswith("cd ")


def leading_segment(command: str) -> str:
    """First segment before ``&&``, ``||`` or ``;``, skipping leading ``cd`` hops."""
    segments = _segments(command)
    while len(segments) > 1 and _is_cd(segments[0]):
        segments.pop(0)
    return segments[0] if segments else ""


def _tokens(segment: str) -> list[str]:
    try:
        return shlex.split(segment)
    except ValueError:
        return segment.split()


def _operands(tokens: list[str]) -> list[str]:
    """Non-flag arguments up to the first pipe or redirect."""
    out: list[str] = []
    for token in tokens:
        if token in _STOP_TOKENS or token.startswith((">", "<", "|")):
            break
        if token.startswith("-"):
            continue
        out.append(token)
    return out


def _normalize_target(target: str) -> str:
    if target in ("./", "."):
        return "."
    if len(target) > 1:
        target = target.rstrip("/") or "/"
    if target.startswith("./") and len(target) > 2:
        target = target[2:]
    return target


def _join_target(base: str, target: str) -> str:
    """Resolve ``target`` against ``base`` lexically (no filesystem access)."""
    target = _normalize_target(target)
    if target == "." or not target:
        return base
    if base == "." or target.startswith(("/", "~")):
        return target
    return f"{base}/{target}"


def working_directory(command: str) -> str | None:
    """Directory reached by the leading ``cd`` hops, or None if unchanged.

    ``cd a && cd b && ls`` is ``a/b``; an absolute or home target restarts
    the path. A bare ``cd`` goes home.
    """
    segments = _segments(command)
    path = "."
    while len(segments) > 1 and _is_cd(segments[0]):
        args = _operands(_tokens(segments.pop(0))[1:])
        path = _join_target(path, args[0] if args else "~")
    return None if path == "." else path


def _listing_family(tokens: list[str], cwd: str) -> str:
    targets = [_join_target(cwd, t) for t in _operands(tokens[1:])]
    return "ls " + (" ".join(targets) if targets else cwd)


def _viewing_family(verb: str, tokens: list[str], segment: str, cwd: str) -> str | None:
    args = _operands(tokens[1:])
    if verb == "sed":
        args = args[1:]
    args = [a for a in args if not a.lstrip("+").isdigit()]
    if not args:
        return _scoped(segment, cwd)
    return "cat " + " ".join(_join_target(cwd, a) for a in args)


def _scoped(segment: str, cwd: str) -> str:
    return segment if cwd == "." else f"cd {cwd} && {segment}"


def _git_subcommand(tokens: list[str]) -> str | None:
    skip_next = False
    for token in tokens[1:]:
        if skip_next:
            skip_next = False
            continue
        if token in _GIT_VALUE_OPTIONS:
            skip_next = True
            continue
        if token.startswith("-"):
            continue
        return token
    return None


def command_family(command: str) -> str | None:
    """Family key for a read-only shell command, or None if it is not one."""
    segment = leading_segment(command)
    if not segment:
        return None
    tokens = _tokens(segment)
    if not tokens:
        return None
    verb = tokens[0].rsplit("/", 1)[-1]
    cwd = working_directory(command) or "."

    if verb in LISTING_VERBS:
        return _listing_family(tokens, cwd)
    if verb in VIEWING_VERBS:
        return _viewing_family(verb, tokens, segment, cwd)
    if verb == "sed" and "-n" in tokens[1:]:
        return _viewing_family(verb, tokens, segment, cwd)
    if verb == "git":
        # repository-wide, so the directory is not part of the family
        sub = _git_subcommand(tokens)
        if sub in GIT_READ_SUBCOMMANDS:
            return f"git {sub}"
        return None
    if verb in SEARCH_VERBS or verb in LOCATION_VERBS or verb in PRESENCE_VERBS:
        return _scoped(segment, cwd)
    if verb == "command" and len(tokens) > 1 and tokens[1] in ("-v", "-V"):
        return _scoped(segment, cwd)
    return None


def inspection_family(kind: ToolKind, summary: str) -> str | None:
    """Family of an inspection call, or None for anything else.

    ``kind`` may come from the tool name (live messages) or from the summary
    itself (rehydration); both give the same answer for the same summary.
    """
    if kind in ("read", "search"):
        return summary
    if kind == "shell" and summary.startswith("$ "):
        return command_family(summary)
    return None


def is_branch_range_diff(summary: str) -> bool:
    """``git diff a..b`` / ``git log main...HEAD`` style summaries."""
    return bool(_BRANCH_RANGE_RE.search(summary))
