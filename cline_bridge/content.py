"""Canonical message content: trimmed text plus optional image attachments.

Agent runtimes record content as a plain string, as an ordered list of parts
(text, image, tool call, thinking), or not at all. Everything downstream of
this module works on ``NormalizedMessage`` and never looks at the raw shape
again.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

NO_OUTPUT_SENTINEL: str = "(no output)"
"""Literal text of a tool result that produced nothing."""

FALLBACK_TEXT: dict[str, str] = {
    "system": "(empty system prompt)",
    "user": "(empty message)",
    "assistant": "(no text)",
    "tool": NO_OUTPUT_SENTINEL,
}

_ROLE_ALIASES: dict[str, str] = {
    "system": "system",
    "developer": "system",
    "user": "user",
    "assistant": "assistant",
    "tool": "tool",
    "toolresult": "tool",
    "tool_result": "tool",
    "function": "tool",
}

TOOL_CALL_PART_TYPES: frozenset[str] = frozenset({
    "toolcall",
    "tool_call",
    "tool_use",
    "function_call",
})

TOOL_CALL_LIST_KEYS: tuple[str, ...] = ("toolCalls", "tool_calls")


@dataclass(frozen=True)
class ImageAttachment:
    """An image carried into the collapsed user turn (data: or http(s) URL)."""

    url: str

    def as_part(self) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": self.url}}


@dataclass
class NormalizedMessage:
    """Message reduced to role, text and images; tool-call metadata stripped."""

    role: str
    text: str
    images: list[ImageAttachment] = field(default_factory=list)
    tool_call_id: str | None = None
    has_text: bool = True
    """False when ``text`` is the role fallback rather than real content."""
    had_tool_calls: bool = False


def field_of(obj: Any, key: str, default: Any = None) -> Any:
    """Read ``key`` from a mapping or an attribute-style message object."""
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def normalize_role(raw: Any) -> str:
    role = _ROLE_ALIASES.get(str(raw or "").strip().lower())
    return role or "user"


def part_type(part: Any) -> str:
    return str(field_of(part, "type", "") or "").strip().lower()


def is_tool_call_part(part: Any) -> bool:
    return part_type(part) in TOOL_CALL_PART_TYPES


def _part_text(part: Any) -> str | None:
    if isinstance(part, str):
        return part
    if part_type(part) in ("text", "input_text", "output_text"):
        text = field_of(part, "text")
        return text if isinstance(text, str) else None
    return None


def image_from_part(part: Any) -> ImageAttachment | None:
    """Read an image part in pi-ai, OpenAI or Anthropic shape."""
    kind = part_type(part)
    if kind == "image_url":
        ref = field_of(part, "image_url")
        url = field_of(ref, "url") if not isinstance(ref, str) else ref
        return ImageAttachment(url) if isinstance(url, str) and url else None
    if kind == "image":
        data = field_of(part, "data")
        mime = field_of(part, "mimeType") or field_of(part, "mime_type") or "image/png"
        source = field_of(part, "source")
        if not data and source is not None:
            data = field_of(source, "data")
            mime = field_of(source, "media_type") or mime
            if not data and isinstance(field_of(source, "url"), str):
                return ImageAttachment(field_of(source, "url"))
        if isinstance(data, str) and data:
            if data.startswith("data:"):
                return ImageAttachment(data)
            return ImageAttachment(f"data:{mime};base64,{data}")
    return None


def message_text(message: Any) -> str:
    """Raw text of a message (text parts joined by newlines), untrimmed."""
    content = field_of(message, "content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = [t for t in (_part_text(p) for p in content) if t]
        return "\n".join(texts)
    return ""


def has_tool_calls(message: Any) -> bool:
    for key in TOOL_CALL_LIST_KEYS:
        calls = field_of(message, key)
        if isinstance(calls, list) and calls:
            return True
    content = field_of(message, "content")
    if isinstance(content, list):
        return any(is_tool_call_part(p) for p in content)
    return False


def tool_call_id_of(message: Any) -> str | None:
    for key in ("toolCallId", "tool_call_id"):
        value = field_of(message, key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def normalize_message(message: Any) -> NormalizedMessage:
    """Reduce one message to canonical text + images.

    Never raises: null or unrecognized content yields the role fallback.
    """
    role = normalize_role(field_of(message, "role"))
    fallback = FALLBACK_TEXT[role]
    content = field_of(message, "content")
    texts: list[str] = []
    images: list[ImageAttachment] = []

    if isinstance(content, str):
        stripped = content.strip()
        if stripped:
            texts.append(stripped)
    elif isinstance(content, list):
        for part in content:
            text = _part_text(part)
            if text is not None:
                stripped = text.strip()
                if stripped:
                    texts.append(stripped)
                continue
            if role == "user":
                image = image_from_part(part)
                if image is not None:
                    images.append(image)
    elif content is not None:
        logger.debug("Unrecognized %s content type %s; using fallback", role, type(content).__name__)

    has_text = bool(texts)
    text = "\n".join(texts) if has_text else fallback
    return NormalizedMessage(
        role=role,
        text=text,
        images=images,
        tool_call_id=tool_call_id_of(message),
        has_text=has_text,
        had_tool_calls=has_tool_calls(message),
    )
