"""Per-session "ignore wrapped history" flags.

A collapsed turn left in the history by an earlier session, or by a
different model before a switch, must not be reused. The host session layer
marks a session fresh at start and on model/provider switch; the next
successful collapse for that session consumes the flag.

Usage::

    sessions = SessionRegistry()
    sessions.mark_fresh("sess-1")          # session_start / model_select

    ctx = CollapseContext(session_id="sess-1", sessions=sessions)
    result = collapse(messages, ctx)
    # flag consumed: later collapses reuse the collapsed turn again
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Thread-safe map of session id -> "ignore wrapped history" flag."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._fresh: set[str] = set()

    def mark_fresh(self, session_id: str) -> None:
        with self._lock:
            self._fresh.add(session_id)
        logger.debug("Session %s marked fresh", session_id)

    def is_fresh(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._fresh

    def clear(self, session_id: str) -> None:
        """Drop the flag (session end, or after a successful collapse)."""
        with self._lock:
            self._fresh.discard(session_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._fresh)

    @contextmanager
    def collapse_scope(self, session_id: str | None) -> Iterator[bool]:
        """Yield the session's flag; clear it when the block completes.

        If the block raises, the flag is left set so the retry still starts
        from an empty transcript.
        """
        if session_id is None:
            yield False
            return
        fresh = self.is_fresh(session_id)
        yield fresh
        if fresh:
            self.clear(session_id)
            logger.debug("Session %s flag consumed", session_id)
