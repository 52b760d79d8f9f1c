"""
Static session token lookup.

A session is the `token` column on the user record: the presented credential
must equal it exactly and the account must be active. Nothing is cached and
nothing is written; every call re-reads the store.
"""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from core.store.base import StoreClient, StoreTransportError

log = logging.getLogger(__name__)

SESSION_FIELDS = ("id", "email", "first_name", "last_name", "status", "token", "role.name", "role.id")

VALIDATION_FAILED = "Failed to validate token"
TOKEN_NOT_FOUND = "Token not found"
ACCOUNT_NOT_ACTIVE = "User account is not active"


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    first_name: str
    last_name: str
    status: str
    role: str
    role_id: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Identity":
        role = row.get("role")
        if isinstance(role, dict):
            role_name = role.get("name") or ""
            role_id = role.get("id") or ""
        else:
            role_name = role or ""
            role_id = ""
        return cls(
            id=row.get("id"),
            email=row.get("email") or "",
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            status=row.get("status") or "",
            role=str(role_name),
            role_id=str(role_id),
        )

    def as_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "status": self.status,
            "role": self.role,
            "role_id": self.role_id,
        }


@dataclass(frozen=True)
class SessionResult:
    authenticated: bool
    user: Optional[Identity] = None
    status: Optional[str] = None
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"success": self.authenticated, "authenticated": self.authenticated}
        if self.user is not None:
            out["user"] = self.user.as_dict()
        if self.status is not None:
            out["status"] = self.status
        if self.error is not None:
            out["error"] = self.error
        return out


async def resolve_session(store: StoreClient, credential: Optional[str]) -> SessionResult:
    """
    Map a presented static token to the active user it belongs to.
    A missing credential is a normal guest, not an error.
    """
    if not credential:
        return SessionResult(authenticated=False)

    try:
        result = await store.list_users({"token": credential}, SESSION_FIELDS, limit=1)
    except StoreTransportError:
        log.warning("Session lookup could not reach the record store")
        return SessionResult(authenticated=False, error=VALIDATION_FAILED)

    if not result.ok:
        log.error("Session lookup failed status=%s body=%s", result.status, result.body[:200])
        return SessionResult(authenticated=False, error=VALIDATION_FAILED)

    rows = result.rows()
    if rows is None:
        log.error("Session lookup returned an unparsable body: %s", result.body[:200])
        return SessionResult(authenticated=False, error=VALIDATION_FAILED)

    # The store's equality filter may be collation-insensitive; require an exact match here.
    row = rows[0] if rows and isinstance(rows[0], dict) else None
    stored = str(row.get("token") or "") if row is not None else ""
    if row is None or not hmac.compare_digest(stored.encode("utf-8"), credential.encode("utf-8")):
        log.info("No user matches the presented session token")
        return SessionResult(authenticated=False, error=TOKEN_NOT_FOUND)

    status = row.get("status") or ""
    if status != "active":
        log.info("Session refused for user_id=%s status=%s", row.get("id"), status)
        return SessionResult(authenticated=False, status=status, error=ACCOUNT_NOT_ACTIVE)

    return SessionResult(authenticated=True, user=Identity.from_row(row))


__all__ = [
    "ACCOUNT_NOT_ACTIVE",
    "SESSION_FIELDS",
    "TOKEN_NOT_FOUND",
    "VALIDATION_FAILED",
    "Identity",
    "SessionResult",
    "resolve_session",
]
