"""
User-related record store helpers, split by responsibility.
"""
from core.store.users.tokens import (
    add_minutes_iso,
    generate_plain_token,
    now_iso,
    parse_iso,
    token_hash,
)
from core.store.users.sessions import (
    SESSION_FIELDS,
    Identity,
    SessionResult,
    resolve_session,
)
from core.store.users.verification import (
    EMAIL_VERIFY,
    INTERNAL_MESSAGE,
    PASSWORD_RESET,
    VerificationError,
    VerificationResult,
    consume,
    issue_verification_token,
)
from core.store.users.password_reset import (
    PASSWORD_UPDATE_FAILED_MESSAGE,
    create_password_reset_token,
    reset_password,
)

__all__ = [
    "add_minutes_iso",
    "generate_plain_token",
    "now_iso",
    "parse_iso",
    "token_hash",
    "SESSION_FIELDS",
    "Identity",
    "SessionResult",
    "resolve_session",
    "EMAIL_VERIFY",
    "INTERNAL_MESSAGE",
    "PASSWORD_RESET",
    "VerificationError",
    "VerificationResult",
    "consume",
    "issue_verification_token",
    "PASSWORD_UPDATE_FAILED_MESSAGE",
    "create_password_reset_token",
    "reset_password",
]
