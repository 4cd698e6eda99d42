from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
import time
from typing import Any


SESSION_TTL_SECONDS = 60 * 60 * 12

_LOCK = threading.Lock()
_SESSIONS: dict[str, dict[str, Any]] = {}
_REVOKED_TOKENS: dict[str, float] = {}


def require_session_secret() -> str:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw


_SESSION_SECRET = require_session_secret().encode("utf-8")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(encoded: str) -> bytes:
    return base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))


def _sign(encoded: str) -> bytes:
    return hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()


def create_session(payload: dict[str, Any]) -> str:
    session_payload = dict(payload)
    session_payload["expiresAt"] = time.time() + SESSION_TTL_SECONDS
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    token = f"{encoded}.{_b64encode(_sign(encoded))}"
    with _LOCK:
        _SESSIONS[token] = session_payload
    return token


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    now = time.time()
    try:
        encoded, encoded_sig = token.split(".", 1)
        if not hmac.compare_digest(_sign(encoded), _b64decode(encoded_sig)):
            return None
        decoded_session = json.loads(_b64decode(encoded).decode("utf-8"))
    except (ValueError, UnicodeDecodeError):
        return None

    if not isinstance(decoded_session, dict):
        return None

    expires_at = float(decoded_session.get("expiresAt") or 0.0)
    with _LOCK:
        if now >= expires_at:
            _SESSIONS.pop(token, None)
            return None
        for revoked_token, revoked_exp in list(_REVOKED_TOKENS.items()):
            if now >= revoked_exp:
                _REVOKED_TOKENS.pop(revoked_token, None)
        if token in _REVOKED_TOKENS:
            _SESSIONS.pop(token, None)
            return None
        _SESSIONS[token] = decoded_session
        return dict(decoded_session)


def remove_session(token: str | None) -> None:
    if not token:
        return
    now = time.time()
    try:
        encoded = token.split(".", 1)[0]
        decoded = json.loads(_b64decode(encoded).decode("utf-8"))
        expires_at = float(decoded.get("expiresAt") or 0.0)
    except (ValueError, UnicodeDecodeError, AttributeError):
        expires_at = now + SESSION_TTL_SECONDS
    with _LOCK:
        _SESSIONS.pop(token, None)
        if expires_at > now:
            _REVOKED_TOKENS[token] = expires_at
