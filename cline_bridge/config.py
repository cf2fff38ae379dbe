"""Typed runtime configuration for cline_bridge."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

logger = logging.getLogger(__name__)

FAMILY_THRESHOLD_ENV = "CLINE_BRIDGE_FAMILY_THRESHOLD"
GLOBAL_THRESHOLD_ENV = "CLINE_BRIDGE_GLOBAL_THRESHOLD"
SUMMARY_MAX_CHARS_ENV = "CLINE_BRIDGE_SUMMARY_MAX_CHARS"
SCAFFOLD_FILE_ENV = "CLINE_BRIDGE_SCAFFOLD_FILE"

DEFAULT_FAMILY_THRESHOLD: int = 4
"""Inspections of one family allowed before the family is suppressed."""

DEFAULT_GLOBAL_THRESHOLD: int = 8
"""Inspections of any family allowed since the last edit before the loop note fires."""

DEFAULT_SUMMARY_MAX_CHARS: int = 240
"""Maximum argument-dump length in generic invocation summaries."""


def _int_from_env(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(
            "Invalid %s=%r; expected a positive integer. Defaulting to %d.",
            name,
            raw,
            default,
        )
        return default
    if value < 1:
        logger.warning(
            "Invalid %s=%r; expected a positive integer. Defaulting to %d.",
            name,
            raw,
            default,
        )
        return default
    return value


@dataclass(frozen=True)
class CollapseConfig:
    """Loop-detection policy resolved once and passed explicitly through calls."""

    family_threshold: int = DEFAULT_FAMILY_THRESHOLD
    global_threshold: int = DEFAULT_GLOBAL_THRESHOLD
    summary_max_chars: int = DEFAULT_SUMMARY_MAX_CHARS
    scaffold_file: str | None = None

    @classmethod
    def from_env(cls) -> "CollapseConfig":
        """Build typed config from environment variables."""
        scaffold_file = os.environ.get(SCAFFOLD_FILE_ENV, "").strip() or None
        return cls(
            family_threshold=_int_from_env(FAMILY_THRESHOLD_ENV, DEFAULT_FAMILY_THRESHOLD),
            global_threshold=_int_from_env(GLOBAL_THRESHOLD_ENV, DEFAULT_GLOBAL_THRESHOLD),
            summary_max_chars=_int_from_env(SUMMARY_MAX_CHARS_ENV, DEFAULT_SUMMARY_MAX_CHARS),
            scaffold_file=scaffold_file,
        )
