"""
Random token generation, peppered hashing and timestamp helpers.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

TOKEN_BYTES = 32


def generate_plain_token(num_bytes: int = TOKEN_BYTES) -> str:
    """URL-safe random token with the base64 padding removed."""
    raw = secrets.token_bytes(num_bytes)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def token_hash(plain: str, secret: str, algo: str = "sha256") -> str:
    """
    Keyed hash of a one-time token. Only this value is ever stored.
    """
    if algo not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported token hash algorithm: {algo}")
    return hmac.new(secret.encode("utf-8"), plain.encode("utf-8"), algo).hexdigest()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format(dt: datetime) -> str:
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def now_iso(now: Optional[datetime] = None) -> str:
    return _format(now or _utcnow())


def add_minutes_iso(minutes: int, now: Optional[datetime] = None) -> str:
    return _format((now or _utcnow()) + timedelta(minutes=minutes))


def parse_iso(value) -> Optional[datetime]:
    """Parse a store timestamp. Naive values are taken as UTC. Returns None if unparsable."""
    if not value or not isinstance(value, str):
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "TOKEN_BYTES",
    "generate_plain_token",
    "token_hash",
    "now_iso",
    "add_minutes_iso",
    "parse_iso",
]
