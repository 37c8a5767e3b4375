from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import threading
import time
from pathlib import Path
from typing import Any


SESSION_TTL_SECONDS = 60 * 60 * 12

_BASE_DIR = Path(__file__).resolve().parent.parent
_DATA_DIR = Path(os.environ.get("INVENTORY_DATA_DIR") or (_BASE_DIR / "data"))
_REVOKED_TOKENS_PATH = _DATA_DIR / "revoked_sessions.json"
_LOCK = threading.Lock()
_SESSIONS: dict[str, dict[str, Any]] = {}


def _require_session_secret() -> bytes:
    raw = (os.environ.get("SESSION_SIGNING_SECRET") or "").strip()
    if len(raw) < 32:
        raise RuntimeError("SESSION_SIGNING_SECRET must be set and at least 32 characters long.")
    return raw.encode("utf-8")


_SESSION_SECRET = _require_session_secret()


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(encoded: str) -> bytes:
    return base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))


def _sign(encoded: str) -> bytes:
    return hmac.new(_SESSION_SECRET, encoded.encode("ascii"), hashlib.sha256).digest()


def _load_revoked_tokens_unlocked() -> dict[str, float]:
    if not _REVOKED_TOKENS_PATH.exists():
        return {}
    try:
        payload = json.loads(_REVOKED_TOKENS_PATH.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    if not isinstance(payload, dict):
        return {}
    out: dict[str, float] = {}
    for token, expires_at in payload.items():
        try:
            out[str(token)] = float(expires_at)
        except (TypeError, ValueError):
            continue
    return out


def _save_revoked_tokens_unlocked(tokens: dict[str, float]) -> None:
    _DATA_DIR.mkdir(parents=True, exist_ok=True)
    _REVOKED_TOKENS_PATH.write_text(json.dumps(tokens, ensure_ascii=True, indent=2), encoding="utf-8")


def create_session(payload: dict[str, Any]) -> str:
    session_payload = dict(payload)
    session_payload["expiresAt"] = time.time() + SESSION_TTL_SECONDS
    body = json.dumps(session_payload, ensure_ascii=True, separators=(",", ":")).encode("utf-8")
    encoded = _b64encode(body)
    token = f"{encoded}.{_b64encode(_sign(encoded))}"
    with _LOCK:
        _SESSIONS[token] = session_payload
    return token


def _decode_token(token: str) -> dict[str, Any] | None:
    try:
        encoded, encoded_sig = token.split(".", 1)
        if not hmac.compare_digest(_sign(encoded), _b64decode(encoded_sig)):
            return None
        decoded = json.loads(_b64decode(encoded).decode("utf-8"))
    except (ValueError, UnicodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def get_session(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    decoded = _decode_token(token)
    if decoded is None:
        return None

    now = time.time()
    try:
        expires_at = float(decoded.get("expiresAt") or 0.0)
    except (TypeError, ValueError):
        return None
    if now >= expires_at:
        with _LOCK:
            _SESSIONS.pop(token, None)
        return None

    with _LOCK:
        revoked = _load_revoked_tokens_unlocked()
        expired = [key for key, revoked_exp in revoked.items() if now >= revoked_exp]
        for key in expired:
            revoked.pop(key, None)
        if expired:
            _save_revoked_tokens_unlocked(revoked)
        if token in revoked:
            _SESSIONS.pop(token, None)
            return None
        # Cache for this process; cross-process validation remains token-based.
        _SESSIONS[token] = decoded
    return dict(decoded)


def remove_session(token: str | None) -> None:
    if not token:
        return
    now = time.time()
    decoded = _decode_token(token)
    try:
        expires_at = float((decoded or {}).get("expiresAt") or 0.0)
    except (TypeError, ValueError):
        expires_at = 0.0
    if decoded is None:
        expires_at = now + SESSION_TTL_SECONDS
    with _LOCK:
        _SESSIONS.pop(token, None)
        if expires_at <= now:
            return
        revoked = _load_revoked_tokens_unlocked()
        revoked[token] = expires_at
        _save_revoked_tokens_unlocked(revoked)
