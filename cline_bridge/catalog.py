"""Free-model catalog merge and provider description.

Fetching the free-model list and the OpenRouter metadata, and caching the
result on disk, belong to the host. This module holds the pure parts: pull
free model ids out of the published source, merge them with OpenRouter
metadata, describe what changed since the last known catalog, and build the
provider description the host registers.

Usage::

    from cline_bridge.catalog import (
        build_provider_description, merge_catalog, parse_free_model_ids,
    )

    ids = parse_free_model_ids(picker_source)
    models = merge_catalog(ids, openrouter_payload["data"])
    provider = build_provider_description(models)
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from cline_bridge.errors import CatalogError

logger = logging.getLogger(__name__)

API_BASE_ENV = "CLINE_BRIDGE_API_BASE"
DEFAULT_API_BASE = "https://api.cline.bot/api/v1"
CLIENT_VERSION = "3.57.1"
PROVIDER_NAME = "cline"
PROVIDER_API = "openai-completions"

MERGE_CONTEXT_WINDOW = 128_000
MERGE_MAX_TOKENS = 8_192
VALIDATED_CONTEXT_WINDOW = 128_000
VALIDATED_MAX_TOKENS = 16_384

_FREE_MODELS_RE = re.compile(r"export\s+const\s+freeModels\s*=\s*\[([\s\S]*?)\]\s*\n")
_MODEL_ID_RE = re.compile(r"id:\s*[\"']([^\"']+)[\"']")
_NAME_SPLIT_RE = re.compile(r"[-_]")


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------


class ModelCost(BaseModel):
    """Per-million-token prices; always zero for free models."""

    model_config = ConfigDict(populate_by_name=True)

    input: float = 0
    output: float = 0
    cache_read: float = Field(default=0, alias="cacheRead")
    cache_write: float = Field(default=0, alias="cacheWrite")


class ModelInfo(BaseModel):
    """A model as registered with the host."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    reasoning: bool = False
    input: list[str] = ["text"]
    cost: ModelCost = ModelCost()
    context_window: int = Field(default=VALIDATED_CONTEXT_WINDOW, alias="contextWindow")
    max_tokens: int = Field(default=VALIDATED_MAX_TOKENS, alias="maxTokens")
    compat: dict[str, Any] | None = None


class ProviderDescription(BaseModel):
    """What the host needs to register the provider."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = PROVIDER_NAME
    base_url: str = Field(default=DEFAULT_API_BASE, alias="baseUrl")
    auth_header: bool = Field(default=True, alias="authHeader")
    api: str = PROVIDER_API
    headers: dict[str, str]
    models: list[ModelInfo]


@dataclass(frozen=True)
class ProviderSettings:
    """Upstream endpoint and client identification."""

    api_base: str = DEFAULT_API_BASE
    client_version: str = CLIENT_VERSION

    def headers(self) -> dict[str, str]:
        return {
            "HTTP-Referer": "https://cline.bot",
            "X-Title": "Cline",
            "X-Client-Type": "extension",
            "X-Client-Version": self.client_version,
            "X-Core-Version": self.client_version,
            "User-Agent": f"Cline/{self.client_version}",
        }

    @classmethod
    def from_env(cls) -> "ProviderSettings":
        api_base = os.environ.get(API_BASE_ENV, "").strip().rstrip("/")
        return cls(api_base=api_base or DEFAULT_API_BASE)


# ---------------------------------------------------------------------------
# Free model list
# ---------------------------------------------------------------------------


def parse_free_model_ids(source: str) -> list[str]:
    """Model ids from an ``export const freeModels = [...]`` array literal.

    Returns an empty list when the array is not found.
    """
    match = _FREE_MODELS_RE.search(source)
    if not match:
        logger.warning("freeModels array not found in source (%d chars)", len(source))
        return []
    return _MODEL_ID_RE.findall(match.group(1))


def model_name_from_id(model_id: str) -> str:
    """``"vendor/some-model_x"`` -> ``"Some Model X"``."""
    parts = model_id.split("/")
    base = parts[1] if len(parts) > 1 and parts[1] else parts[0]
    return " ".join(word[:1].upper() + word[1:] for word in _NAME_SPLIT_RE.split(base))


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------


def _is_reasoning(info: dict[str, Any]) -> bool:
    params = info.get("supported_parameters") or []
    if isinstance(params, list) and ("include_reasoning" in params or "reasoning" in params):
        return True
    architecture = info.get("architecture") or {}
    return isinstance(architecture, dict) and architecture.get("instruct_type") == "reasoning"


def _has_image_input(info: dict[str, Any]) -> bool:
    architecture = info.get("architecture") or {}
    modality = architecture.get("modality") if isinstance(architecture, dict) else None
    return isinstance(modality, str) and "image" in modality


def merge_catalog(free_ids: list[str], openrouter_models: list[Any]) -> list[ModelInfo]:
    """One ``ModelInfo`` per free id, enriched by OpenRouter metadata when found.

    Ids missing from the metadata still get an entry with safe defaults.
    """
    by_id: dict[str, dict[str, Any]] = {}
    for entry in openrouter_models or []:
        if isinstance(entry, dict) and isinstance(entry.get("id"), str):
            by_id.setdefault(entry["id"], entry)

    models: list[ModelInfo] = []
    for model_id in free_ids:
        info = by_id.get(model_id)
        if info is None:
            logger.debug("No OpenRouter metadata for %s; using defaults", model_id)
            models.append(ModelInfo(
                id=model_id,
                name=f"{model_name_from_id(model_id)} (Cline)",
                context_window=MERGE_CONTEXT_WINDOW,
                max_tokens=MERGE_MAX_TOKENS,
            ))
            continue
        top_provider = info.get("top_provider") or {}
        max_tokens = top_provider.get("max_completion_tokens") if isinstance(top_provider, dict) else None
        models.append(ModelInfo(
            id=model_id,
            name=f"{info.get('name') or model_name_from_id(model_id)} (Cline)",
            reasoning=_is_reasoning(info),
            input=["text", "image"] if _has_image_input(info) else ["text"],
            context_window=info.get("context_length") or MERGE_CONTEXT_WINDOW,
            max_tokens=max_tokens or MERGE_MAX_TOKENS,
        ))
    return models


def validate_models(raw: Any) -> list[ModelInfo]:
    """Coerce loosely shaped model entries (e.g. from a cache file).

    Raises:
        CatalogError: If ``raw`` is not a list.
    """
    if not isinstance(raw, list):
        raise CatalogError(f"Model list must be a list, got {type(raw).__name__}")
    out: list[ModelInfo] = []
    for entry in raw:
        if isinstance(entry, ModelInfo):
            out.append(entry)
            continue
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), str) or not entry["id"]:
            logger.warning("Skipping model entry without an id: %r", entry)
            continue
        input_kinds = entry.get("input")
        cost = entry.get("cost")
        out.append(ModelInfo(
            id=entry["id"],
            name=entry.get("name") or entry["id"],
            reasoning=bool(entry.get("reasoning")),
            input=input_kinds if isinstance(input_kinds, list) else ["text"],
            cost=ModelCost.model_validate(cost) if isinstance(cost, dict) else ModelCost(),
            context_window=entry.get("contextWindow") or entry.get("context_window") or VALIDATED_CONTEXT_WINDOW,
            max_tokens=entry.get("maxTokens") or entry.get("max_tokens") or VALIDATED_MAX_TOKENS,
            compat=entry.get("compat"),
        ))
    return out


# ---------------------------------------------------------------------------
# Change notifications
# ---------------------------------------------------------------------------


@dataclass
class CatalogChange:
    added: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    total: int = 0
    first_load: bool = False

    @property
    def changed(self) -> bool:
        return self.first_load or bool(self.added or self.removed)


def _ids(models: list[Any]) -> list[str]:
    out: list[str] = []
    for model in models:
        model_id = model.id if isinstance(model, ModelInfo) else (model or {}).get("id")
        if isinstance(model_id, str):
            out.append(model_id)
    return out


def diff_catalog(previous: list[Any], current: list[Any]) -> CatalogChange:
    """Compare the last known catalog with a freshly merged one by id."""
    old_ids = _ids(previous)
    new_ids = _ids(current)
    old_set, new_set = set(old_ids), set(new_ids)
    return CatalogChange(
        added=[i for i in new_ids if i not in old_set],
        removed=[i for i in old_ids if i not in new_set],
        total=len(new_ids),
        first_load=not old_ids and bool(new_ids),
    )


def describe_catalog_change(change: CatalogChange) -> tuple[str, Literal["info", "warning"]] | None:
    """User notification (text, level) for a catalog refresh, or None if unchanged."""
    if change.total == 0:
        return "Cline: No free models available. Check network or Cline status.", "warning"
    if change.first_load:
        return f"Cline: {change.total} models available", "info"
    if change.added and change.removed:
        return (
            f"Cline: {len(change.added)} new, {len(change.removed)} removed ({change.total} total)",
            "info",
        )
    if change.added:
        return f"Cline: {len(change.added)} new models added ({change.total} total)", "info"
    if change.removed:
        return f"Cline: {len(change.removed)} models removed ({change.total} total)", "info"
    return None


# ---------------------------------------------------------------------------
# Provider description
# ---------------------------------------------------------------------------


def build_provider_description(
    models: list[Any],
    settings: ProviderSettings | None = None,
) -> ProviderDescription:
    """Provider registration payload with validated models."""
    settings = settings or ProviderSettings()
    return ProviderDescription(
        base_url=settings.api_base,
        headers=settings.headers(),
        models=validate_models(list(models)),
    )
