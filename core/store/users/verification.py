"""
One-time account tokens (email verification and password reset).

A token is ISSUED (used=false, not expired) until it is CONSUMED (used=true,
used_at set). EXPIRED is derived at read time from expires_at and is never
stored. Only the keyed hash of the plaintext is ever persisted.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from core.config import Settings
from core.store.base import StoreClient, StoreTransportError, error_message
from core.store.users.tokens import add_minutes_iso, generate_plain_token, now_iso, parse_iso, token_hash

log = logging.getLogger(__name__)

COLLECTION = "verification_tokens"
EMAIL_VERIFY = "email_verify"
PASSWORD_RESET = "password_reset"

INVALID_MESSAGE = "Invalid or expired verification token"
UNLINKED_MESSAGE = "Token not linked to a user"
ACTIVATION_FAILED_MESSAGE = "Could not activate user account"
INTERNAL_MESSAGE = "Internal server error"
SUCCESS_MESSAGE = "Account verified successfully"


class VerificationError(RuntimeError):
    """A verification token could not be issued."""


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    user_id: Optional[str]
    message: str


@dataclass(frozen=True)
class Claim:
    """A token row this process has exclusively marked used."""

    token_id: Any
    user_id: str


def _failed(message: str) -> VerificationResult:
    return VerificationResult(success=False, user_id=None, message=message)


def _user_ref(row: Dict[str, Any]) -> Optional[str]:
    user = row.get("user")
    if isinstance(user, dict):
        user = user.get("id")
    return user or None


def _claimed_one(result, token_id) -> bool:
    """True when the conditional update touched exactly this token row."""
    keys = result.rows()
    if not keys or len(keys) != 1:
        return False
    key = keys[0]
    if isinstance(key, dict):
        key = key.get("id")
    return str(key) == str(token_id)


async def issue_verification_token(
    store: StoreClient,
    settings: Settings,
    user_id: str,
    purpose: str = EMAIL_VERIFY,
    now: Optional[datetime] = None,
    expiry_minutes: Optional[int] = None,
) -> str:
    """
    Create a verification token record for `user_id` and return the plaintext.
    Raises VerificationError if the store rejects the record.
    """
    if expiry_minutes is None:
        expiry_minutes = settings.token_expiry_minutes
    plain = generate_plain_token(settings.token_bytes)
    record = {
        "user": user_id,
        "token_hash": token_hash(plain, settings.token_hash_secret, settings.token_hash_algo),
        "purpose": purpose,
        "expires_at": add_minutes_iso(expiry_minutes, now),
        "used": False,
    }
    result = await store.create_item(COLLECTION, record)
    if not result.ok:
        msg = error_message(result, "Could not create verification token")
        log.error("Verification token creation failed user_id=%s status=%s error=%s", user_id, result.status, msg)
        raise VerificationError(msg)
    return plain


async def invalidate_unused_tokens(
    store: StoreClient,
    user_id: str,
    purpose: str,
    now: Optional[datetime] = None,
) -> None:
    """Mark every unused `purpose` token of the user as used. Best effort."""
    try:
        result = await store.patch_items_where(
            COLLECTION,
            {"user": user_id, "purpose": purpose, "used": False},
            {"used": True, "used_at": now_iso(now)},
        )
    except StoreTransportError:
        log.warning("Could not invalidate %s tokens for user_id=%s (store unreachable)", purpose, user_id)
        return
    if not result.ok:
        log.warning("Could not invalidate %s tokens for user_id=%s status=%s", purpose, user_id, result.status)


async def release_claim(store: StoreClient, token_id) -> None:
    try:
        result = await store.patch_item(COLLECTION, token_id, {"used": False, "used_at": None})
    except StoreTransportError:
        log.error("Could not release verification token id=%s after a failed update", token_id)
        return
    if not result.ok:
        log.error("Could not release verification token id=%s status=%s", token_id, result.status)


async def claim_token(
    store: StoreClient,
    settings: Settings,
    plain_token: str,
    purpose: str,
    now: datetime,
    invalid_message: str = INVALID_MESSAGE,
) -> Tuple[Optional[Claim], Optional[VerificationResult]]:
    """
    Find an unused, unexpired `purpose` token for `plain_token` and mark it used
    with a conditional update. Returns (claim, None) or (None, failure).

    The "not found", "already used", "wrong purpose" and "expired" cases all
    fail with `invalid_message` so callers cannot probe token state.
    """
    digest = token_hash(plain_token, settings.token_hash_secret, settings.token_hash_algo)

    try:
        lookup = await store.list_items(
            COLLECTION,
            {"token_hash": digest, "used": False, "purpose": purpose},
            limit=1,
        )
        if not lookup.ok:
            log.warning("Token lookup failed purpose=%s status=%s", purpose, lookup.status)
            return None, _failed(invalid_message)

        rows = lookup.rows()
        if not rows or not isinstance(rows[0], dict):
            return None, _failed(invalid_message)
        row = rows[0]

        expires_at = parse_iso(row.get("expires_at"))
        if expires_at is None or expires_at <= now:
            return None, _failed(invalid_message)

        user_id = _user_ref(row)
        if not user_id:
            log.error("Token id=%s has no linked user", row.get("id"))
            return None, _failed(UNLINKED_MESSAGE)

        claim = await store.patch_items_where(
            COLLECTION,
            {"id": row.get("id"), "used": False},
            {"used": True, "used_at": now_iso(now)},
        )
        if not claim.ok or not _claimed_one(claim, row.get("id")):
            log.warning("Token id=%s was not claimed (status=%s)", row.get("id"), claim.status)
            return None, _failed(invalid_message)
    except StoreTransportError:
        log.error("Token check aborted purpose=%s: record store unreachable", purpose)
        return None, _failed(INTERNAL_MESSAGE)

    return Claim(token_id=row.get("id"), user_id=user_id), None


async def _mark_profile_verified(store: StoreClient, user_id: str) -> None:
    try:
        result = await store.patch_profiles_by_user(user_id, {"status": "verified"})
    except StoreTransportError:
        log.info("Profile status update skipped for user_id=%s (store unreachable)", user_id)
        return
    if not result.ok:
        log.info("Profile status update skipped for user_id=%s status=%s", user_id, result.status)


async def consume(
    store: StoreClient,
    settings: Settings,
    plain_token: str,
    purpose: str = EMAIL_VERIFY,
    now: Optional[datetime] = None,
) -> VerificationResult:
    """Validate a one-time token and activate the linked account."""
    now = now or datetime.now(timezone.utc)
    claim, failure = await claim_token(store, settings, plain_token, purpose, now)
    if failure is not None:
        return failure
    user_id = claim.user_id

    try:
        activation = await store.patch_user(user_id, {"status": "active"})
    except StoreTransportError:
        log.error("Account activation aborted user_id=%s: record store unreachable", user_id)
        await release_claim(store, claim.token_id)
        return _failed(INTERNAL_MESSAGE)
    if not activation.ok:
        log.error("Account activation failed user_id=%s status=%s", user_id, activation.status)
        await release_claim(store, claim.token_id)
        return _failed(ACTIVATION_FAILED_MESSAGE)

    await _mark_profile_verified(store, user_id)

    log.info("Account verified user_id=%s", user_id)
    return VerificationResult(success=True, user_id=user_id, message=SUCCESS_MESSAGE)


__all__ = [
    "ACTIVATION_FAILED_MESSAGE",
    "COLLECTION",
    "EMAIL_VERIFY",
    "INTERNAL_MESSAGE",
    "INVALID_MESSAGE",
    "PASSWORD_RESET",
    "SUCCESS_MESSAGE",
    "UNLINKED_MESSAGE",
    "Claim",
    "VerificationError",
    "VerificationResult",
    "claim_token",
    "consume",
    "invalidate_unused_tokens",
    "issue_verification_token",
    "release_claim",
]
