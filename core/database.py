"""
Facade over the record store helpers used by the routes.
"""
from core.store.base import HttpResult, StoreClient, StoreTransportError, error_message, http_json
from core.store.users import (
    EMAIL_VERIFY,
    INTERNAL_MESSAGE,
    PASSWORD_RESET,
    PASSWORD_UPDATE_FAILED_MESSAGE,
    Identity,
    SessionResult,
    VerificationError,
    VerificationResult,
    consume,
    create_password_reset_token,
    generate_plain_token,
    issue_verification_token,
    reset_password,
    resolve_session,
)

__all__ = [
    "HttpResult",
    "StoreClient",
    "StoreTransportError",
    "error_message",
    "http_json",
    "EMAIL_VERIFY",
    "INTERNAL_MESSAGE",
    "PASSWORD_RESET",
    "PASSWORD_UPDATE_FAILED_MESSAGE",
    "Identity",
    "SessionResult",
    "VerificationError",
    "VerificationResult",
    "consume",
    "create_password_reset_token",
    "generate_plain_token",
    "issue_verification_token",
    "reset_password",
    "resolve_session",
]
