"""
Password reset tokens.

Reset tokens share the verification_tokens collection with purpose
password_reset, so they get the same hashing, expiry and single-use claim.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from core.config import Settings
from core.store.base import StoreClient, StoreTransportError
from core.store.users.verification import (
    INTERNAL_MESSAGE,
    PASSWORD_RESET,
    VerificationResult,
    claim_token,
    invalidate_unused_tokens,
    issue_verification_token,
    release_claim,
)

log = logging.getLogger(__name__)

RESET_INVALID_MESSAGE = "Invalid or expired reset token"
PASSWORD_UPDATE_FAILED_MESSAGE = "Could not update password"
RESET_SUCCESS_MESSAGE = "Password reset successfully. You can now log in with your new password."


async def create_password_reset_token(
    store: StoreClient,
    settings: Settings,
    user_id: str,
    now: Optional[datetime] = None,
) -> str:
    """
    Invalidate the user's outstanding reset tokens and issue a new one.
    Raises VerificationError if the store rejects the new record.
    """
    await invalidate_unused_tokens(store, user_id, PASSWORD_RESET, now)
    return await issue_verification_token(
        store,
        settings,
        user_id,
        purpose=PASSWORD_RESET,
        now=now,
        expiry_minutes=settings.reset_token_expiry_minutes,
    )


async def reset_password(
    store: StoreClient,
    settings: Settings,
    plain_token: str,
    new_password: str,
    now: Optional[datetime] = None,
) -> VerificationResult:
    """
    Spend a reset token and set the new password.

    The static session token is cleared in the same write, so sessions opened
    with the old password stop resolving.
    """
    now = now or datetime.now(timezone.utc)
    claim, failure = await claim_token(
        store, settings, plain_token, PASSWORD_RESET, now, invalid_message=RESET_INVALID_MESSAGE
    )
    if failure is not None:
        return failure
    user_id = claim.user_id

    try:
        update = await store.patch_user(user_id, {"password": new_password, "token": None})
    except StoreTransportError:
        log.error("Password update aborted user_id=%s: record store unreachable", user_id)
        await release_claim(store, claim.token_id)
        return VerificationResult(success=False, user_id=None, message=INTERNAL_MESSAGE)
    if not update.ok:
        log.error("Password update failed user_id=%s status=%s", user_id, update.status)
        await release_claim(store, claim.token_id)
        return VerificationResult(success=False, user_id=None, message=PASSWORD_UPDATE_FAILED_MESSAGE)

    await invalidate_unused_tokens(store, user_id, PASSWORD_RESET, now)

    log.info("Password reset user_id=%s", user_id)
    return VerificationResult(success=True, user_id=user_id, message=RESET_SUCCESS_MESSAGE)


__all__ = [
    "PASSWORD_UPDATE_FAILED_MESSAGE",
    "RESET_INVALID_MESSAGE",
    "RESET_SUCCESS_MESSAGE",
    "create_password_reset_token",
    "reset_password",
]
