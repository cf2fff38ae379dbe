"""Send a collapsed conversation to the Cline endpoint through litellm.

The endpoint is OpenAI-compatible but only accepts one system message and
one user turn, so every call collapses the history first.

Usage::

    from cline_bridge import acall_collapsed
    from cline_bridge.credentials import OAuthCredentials

    creds = OAuthCredentials(access="workos:...", refresh="...", expires=...)
    result = await acall_collapsed("x-ai/grok-code-fast-1", history, credentials=creds)
    print(result.content)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

import litellm

from cline_bridge.catalog import ProviderSettings
from cline_bridge.collapse import CollapseContext, CollapseResult, collapse
from cline_bridge.credentials import OAuthCredentials, api_key_for, is_expired
from cline_bridge.errors import CredentialsError, wrap_error

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120


@dataclass
class CollapsedCallResult:
    """Result of one upstream call.

    Attributes:
        content: Text of the model's reply.
        usage: Token counts (prompt_tokens, completion_tokens, total_tokens).
        model: Model id as sent upstream.
        finish_reason: "stop", "length", ... Empty string if unavailable.
        collapse: The collapse that produced the request.
        raw_response: The litellm response object. Excluded from repr.
    """

    content: str
    usage: dict[str, Any]
    model: str
    finish_reason: str = ""
    collapse: CollapseResult | None = field(default=None, repr=False)
    raw_response: Any = field(default=None, repr=False)


def _litellm_model(model: str) -> str:
    """Route through litellm's OpenAI-compatible adapter."""
    return model if model.startswith("openai/") else f"openai/{model}"


def _extract_usage(response: Any) -> dict[str, Any]:
    usage = getattr(response, "usage", None)
    return {
        "prompt_tokens": getattr(usage, "prompt_tokens", 0) or 0,
        "completion_tokens": getattr(usage, "completion_tokens", 0) or 0,
        "total_tokens": getattr(usage, "total_tokens", 0) or 0,
    }


def _check_credentials(credentials: OAuthCredentials) -> str:
    if is_expired(credentials):
        raise CredentialsError("Cline access token has expired; refresh credentials first")
    return api_key_for(credentials)


def _prepare_call_kwargs(
    model: str,
    messages: list[dict[str, Any]],
    *,
    api_key: str,
    settings: ProviderSettings,
    timeout: int,
    kwargs: dict[str, Any],
) -> dict[str, Any]:
    """Build kwargs shared by call_collapsed and acall_collapsed."""
    return {
        "model": _litellm_model(model),
        "messages": messages,
        "api_base": settings.api_base,
        "api_key": api_key,
        "extra_headers": settings.headers(),
        "timeout": timeout,
        **kwargs,
    }


def _build_result(response: Any, model: str, collapsed: CollapseResult) -> CollapsedCallResult:
    choice = response.choices[0]
    content: str = choice.message.content or ""
    finish_reason: str = choice.finish_reason or ""
    usage = _extract_usage(response)
    logger.debug(
        "Upstream call: model=%s tokens=%d finish=%s suppressed=%d",
        model,
        usage["total_tokens"],
        finish_reason,
        collapsed.suppressed_count,
    )
    return CollapsedCallResult(
        content=content,
        usage=usage,
        model=model,
        finish_reason=finish_reason,
        collapse=collapsed,
        raw_response=response,
    )


async def acall_collapsed(
    model: str,
    messages: Sequence[Any],
    *,
    credentials: OAuthCredentials,
    context: CollapseContext | None = None,
    settings: ProviderSettings | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> CollapsedCallResult:
    """Collapse ``messages`` and send them upstream.

    Args:
        model: Cline model id, e.g. ``"x-ai/grok-code-fast-1"``.
        messages: Full conversation history in any supported shape.
        credentials: Stored OAuth credentials.
        context: Session/scaffold/config for the collapse.
        settings: Endpoint and client headers (default: ``ProviderSettings.from_env()``).
        timeout: Request timeout in seconds.
        **kwargs: Passed through to ``litellm.acompletion`` (temperature, ...).

    Raises:
        CredentialsError: Missing or expired access token.
        UpstreamError: Any upstream failure, classified by subtype.
    """
    api_key = _check_credentials(credentials)
    settings = settings or ProviderSettings.from_env()
    collapsed = collapse(messages, context)
    call_kwargs = _prepare_call_kwargs(
        model,
        collapsed.messages,
        api_key=api_key,
        settings=settings,
        timeout=timeout,
        kwargs=kwargs,
    )
    try:
        response = await litellm.acompletion(**call_kwargs)
    except Exception as e:
        raise wrap_error(e) from e
    return _build_result(response, model, collapsed)


def call_collapsed(
    model: str,
    messages: Sequence[Any],
    *,
    credentials: OAuthCredentials,
    context: CollapseContext | None = None,
    settings: ProviderSettings | None = None,
    timeout: int = DEFAULT_TIMEOUT,
    **kwargs: Any,
) -> CollapsedCallResult:
    """Sync variant of :func:`acall_collapsed` using ``litellm.completion``."""
    api_key = _check_credentials(credentials)
    settings = settings or ProviderSettings.from_env()
    collapsed = collapse(messages, context)
    call_kwargs = _prepare_call_kwargs(
        model,
        collapsed.messages,
        api_key=api_key,
        settings=settings,
        timeout=timeout,
        kwargs=kwargs,
    )
    try:
        response = litellm.completion(**call_kwargs)
    except Exception as e:
        raise wrap_error(e) from e
    return _build_result(response, model, collapsed)
