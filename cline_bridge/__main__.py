"""Developer CLI for inspecting collapses.

Usage:
    python -m cline_bridge collapse history.json               # envelope as JSON
    python -m cline_bridge collapse history.json --format text # task body only
    python -m cline_bridge collapse history.json --fresh       # ignore collapsed turns
    python -m cline_bridge collapse history.json --scaffold captures/scaffold.yaml

    python -m cline_bridge state collapsed.json                # rehydrated loop state
    python -m cline_bridge state body.txt --format text
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from cline_bridge.blocks import extract_task_body, is_wrapped_text
from cline_bridge.collapse import CollapseContext, collapse
from cline_bridge.config import CollapseConfig
from cline_bridge.content import field_of, message_text, normalize_role
from cline_bridge.errors import BridgeError
from cline_bridge.scaffold import DEFAULT_SCAFFOLD, load_scaffold
from cline_bridge.session import SessionRegistry
from cline_bridge.state import rehydrate


def _die(message: str) -> None:
    print(message, file=sys.stderr)
    sys.exit(1)


def _load_json(path: str) -> Any:
    file_path = Path(path)
    if not file_path.exists():
        _die(f"No such file: {file_path}")
    try:
        return json.loads(file_path.read_text())
    except ValueError as e:
        _die(f"Invalid JSON in {file_path}: {e}")


def _messages_from(data: Any) -> list[Any]:
    if isinstance(data, dict) and isinstance(data.get("messages"), list):
        return data["messages"]
    if isinstance(data, list):
        return data
    _die("Expected a JSON list of messages or an object with a 'messages' list")
    return []


def cmd_collapse(args: argparse.Namespace) -> None:
    messages = _messages_from(_load_json(args.file))
    config = CollapseConfig.from_env()
    scaffold_path = args.scaffold or config.scaffold_file
    try:
        scaffold = load_scaffold(scaffold_path) if scaffold_path else DEFAULT_SCAFFOLD
    except BridgeError as e:
        _die(str(e))

    sessions = SessionRegistry()
    if args.session and args.fresh:
        sessions.mark_fresh(args.session)
    ctx = CollapseContext(session_id=args.session, sessions=sessions, scaffold=scaffold, config=config)
    result = collapse(messages, ctx, ignore_wrapped_history=args.fresh and not args.session)

    if args.format == "text":
        print(result.transcript)
        return
    print(json.dumps(
        {
            "messages": result.messages,
            "reused_prior": result.reused_prior,
            "processed_messages": result.processed_messages,
            "suppressed": result.suppressed_count,
            "state": result.state.to_dict(),
        },
        indent=2,
        ensure_ascii=False,
    ))


def _task_body(path: str) -> str:
    file_path = Path(path)
    if not file_path.exists():
        _die(f"No such file: {file_path}")
    text = file_path.read_text()
    if file_path.suffix.lower() != ".json":
        return extract_task_body(text) or text

    messages = _messages_from(_load_json(path))
    for message in reversed(messages):
        if normalize_role(field_of(message, "role")) != "user":
            continue
        raw = message_text(message)
        if is_wrapped_text(raw):
            return extract_task_body(raw) or ""
    _die(f"No collapsed user turn found in {file_path}")
    return ""


def cmd_state(args: argparse.Namespace) -> None:
    config = CollapseConfig.from_env()
    state = rehydrate(_task_body(args.file), family_threshold=config.family_threshold)
    data = state.to_dict()
    if args.format == "json":
        print(json.dumps(data, indent=2, ensure_ascii=False))
        return
    for key, value in data.items():
        print(f"{key:<28} {value}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="cline_bridge",
        description="Collapse tool-using conversations and inspect loop state",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log loop detections and reuse decisions")
    sub = parser.add_subparsers(dest="command", help="Available commands")

    # collapse
    collapse_p = sub.add_parser("collapse", help="Collapse a JSON message list into the upstream envelope")
    collapse_p.add_argument("file", help="JSON file: list of messages or {\"messages\": [...]}")
    collapse_p.add_argument("--fresh", action="store_true", help="Ignore previously collapsed turns")
    collapse_p.add_argument("--session", help="Session id (with --fresh: mark the session fresh)")
    collapse_p.add_argument("--scaffold", help="Captured scaffold file (.yaml/.yml/.json)")
    collapse_p.add_argument("--format", choices=["json", "text"], default="json", help="Output format")

    # state
    state_p = sub.add_parser("state", help="Show loop state rehydrated from a collapsed transcript")
    state_p.add_argument("file", help="Collapsed envelope (.json) or raw task body text")
    state_p.add_argument("--format", choices=["table", "json"], default="table", help="Output format")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "collapse":
        cmd_collapse(args)
    elif args.command == "state":
        cmd_state(args)


if __name__ == "__main__":
    main()
