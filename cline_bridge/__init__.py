"""Conversation collapsing middleware for the Cline upstream endpoint.

The Cline endpoint only accepts one system message and one user turn. This
package folds a growing, tool-using conversation into that shape, keeps the
transcript idempotent across turns, and replaces looping tool results with
corrective stop instructions.

Usage:
    from cline_bridge import CollapseContext, SessionRegistry, collapse

    sessions = SessionRegistry()
    sessions.mark_fresh(session_id)            # on session start / model switch

    result = collapse(history, CollapseContext(session_id=session_id, sessions=sessions))
    upstream_messages = result.messages        # [system?, user]

    # Or send it in one go
    from cline_bridge import acall_collapsed

    reply = await acall_collapsed("x-ai/grok-code-fast-1", history, credentials=creds)
"""

from cline_bridge.catalog import (
    CatalogChange,
    ModelCost,
    ModelInfo,
    ProviderDescription,
    ProviderSettings,
    build_provider_description,
    describe_catalog_change,
    diff_catalog,
    merge_catalog,
    model_name_from_id,
    parse_free_model_ids,
    validate_models,
)
from cline_bridge.client import CollapsedCallResult, acall_collapsed, call_collapsed
from cline_bridge.collapse import CollapseContext, CollapseResult, collapse, collapse_messages
from cline_bridge.config import CollapseConfig
from cline_bridge.credentials import (
    OAuthCredentials,
    api_key_for,
    credentials_from_token_payload,
    decode_login_code,
    is_expired,
)
from cline_bridge.errors import (
    BridgeError,
    CatalogError,
    CredentialsError,
    ScaffoldError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamModelNotFoundError,
    UpstreamQuotaExhaustedError,
    UpstreamRateLimitError,
    UpstreamTransientError,
    classify_error,
    wrap_error,
)
from cline_bridge.loop_detection import Decision, LoopDetector
from cline_bridge.scaffold import DEFAULT_SCAFFOLD, Scaffold, load_scaffold, render_scaffold
from cline_bridge.session import SessionRegistry
from cline_bridge.state import PriorState, rehydrate

__all__ = [
    "BridgeError",
    "CatalogChange",
    "CatalogError",
    "CollapseConfig",
    "CollapseContext",
    "CollapseResult",
    "CollapsedCallResult",
    "CredentialsError",
    "DEFAULT_SCAFFOLD",
    "Decision",
    "LoopDetector",
    "ModelCost",
    "ModelInfo",
    "OAuthCredentials",
    "PriorState",
    "ProviderDescription",
    "ProviderSettings",
    "Scaffold",
    "ScaffoldError",
    "SessionRegistry",
    "UpstreamAuthError",
    "UpstreamError",
    "UpstreamModelNotFoundError",
    "UpstreamQuotaExhaustedError",
    "UpstreamRateLimitError",
    "UpstreamTransientError",
    "acall_collapsed",
    "api_key_for",
    "build_provider_description",
    "call_collapsed",
    "classify_error",
    "collapse",
    "collapse_messages",
    "credentials_from_token_payload",
    "decode_login_code",
    "describe_catalog_change",
    "diff_catalog",
    "is_expired",
    "load_scaffold",
    "merge_catalog",
    "model_name_from_id",
    "parse_free_model_ids",
    "rehydrate",
    "render_scaffold",
    "validate_models",
    "wrap_error",
]
