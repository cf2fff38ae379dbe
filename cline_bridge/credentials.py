"""OAuth credentials as stored by the host.

The authorization-code exchange, the local callback listener and the
refresh request are the host's job. This module only interprets what they
return and turns it into the API key sent upstream.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import time
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from cline_bridge.errors import CredentialsError

logger = logging.getLogger(__name__)

ACCESS_PREFIX = "workos:"
DEFAULT_EXPIRY_SKEW_MS = 60_000


class OAuthCredentials(BaseModel):
    """Access token, refresh token and expiry (epoch milliseconds)."""

    access: str
    refresh: str = ""
    expires: int = 0


def api_key_for(credentials: OAuthCredentials) -> str:
    """API key for the upstream call (the prefixed access token).

    Raises:
        CredentialsError: If the access token is empty.
    """
    access = credentials.access.strip()
    if not access or access == ACCESS_PREFIX:
        raise CredentialsError("Cline credentials have no access token; log in again")
    if not access.startswith(ACCESS_PREFIX):
        access = ACCESS_PREFIX + access
    return access


def is_expired(
    credentials: OAuthCredentials,
    now_ms: int | None = None,
    skew_ms: int = DEFAULT_EXPIRY_SKEW_MS,
) -> bool:
    """True when the token expires within ``skew_ms`` of ``now_ms``.

    An expiry of 0 means unknown and is never treated as expired.
    """
    if credentials.expires <= 0:
        return False
    now = int(time.time() * 1000) if now_ms is None else now_ms
    return credentials.expires - skew_ms <= now


def _expiry_ms(value: Any) -> int:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return int(value)
    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return int(datetime.fromisoformat(text).timestamp() * 1000)
        except ValueError as e:
            raise CredentialsError(f"Unparseable token expiry: {value!r}", original=e) from e
    raise CredentialsError(f"Token response has no usable expiry: {value!r}")


def credentials_from_token_payload(
    payload: Any,
    previous: OAuthCredentials | None = None,
) -> OAuthCredentials:
    """Credentials from a token or refresh response.

    Accepts the ``{"success": true, "data": {...}}`` envelope or the bare
    ``data`` object. A missing refresh token keeps the previous one.

    Raises:
        CredentialsError: If the payload is unsuccessful or incomplete.
    """
    if isinstance(payload, dict) and "success" in payload:
        if not payload.get("success") or not isinstance(payload.get("data"), dict):
            raise CredentialsError("Invalid token response")
        payload = payload["data"]
    if not isinstance(payload, dict):
        raise CredentialsError(f"Token response must be an object, got {type(payload).__name__}")
    token = payload.get("accessToken")
    if not isinstance(token, str) or not token:
        raise CredentialsError("Token response has no accessToken")
    refresh = payload.get("refreshToken") or (previous.refresh if previous else "")
    return OAuthCredentials(
        access=ACCESS_PREFIX + token,
        refresh=refresh,
        expires=_expiry_ms(payload.get("expiresAt")),
    )


def decode_login_code(code: str) -> OAuthCredentials | None:
    """Credentials embedded directly in a base64 JSON login code.

    Returns None when the code is an ordinary authorization code that still
    has to be exchanged.
    """
    try:
        decoded = json.loads(base64.b64decode(code.strip(), validate=False).decode("utf-8"))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if not isinstance(decoded, dict) or not decoded.get("accessToken") or not decoded.get("expiresAt"):
        return None
    try:
        return credentials_from_token_payload(decoded)
    except CredentialsError:
        logger.debug("Login code decoded but was not a usable token payload")
        return None
