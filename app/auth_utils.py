"""
Helpers for session cookies, credential extraction and per-request collaborators.
"""
from __future__ import annotations

from typing import Optional

from fastapi import Request
from fastapi.responses import Response

from core.config import Settings
from core.database import SessionResult, StoreClient, resolve_session

BEARER_PREFIX = "Bearer "


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> StoreClient:
    return request.app.state.store


def extract_credential(request, cookie_name: str, allow_header: bool = True) -> Optional[str]:
    """Session cookie first, then `Authorization: Bearer <token>`. Empty values count as absent."""
    token = request.cookies.get(cookie_name)
    if token:
        return token
    if not allow_header:
        return None
    auth_header = request.headers.get("authorization") or ""
    if auth_header.startswith(BEARER_PREFIX):
        return auth_header[len(BEARER_PREFIX):].strip() or None
    return None


async def get_current_user(request: Request) -> SessionResult:
    """Resolve whoever is making this request (cookie or bearer header)."""
    settings = get_settings(request)
    credential = extract_credential(request, settings.session_cookie_name)
    return await resolve_session(get_store(request), credential)


def set_session_cookie(response: Response, settings: Settings, token: str) -> None:
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        max_age=settings.session_cookie_max_age,
        samesite="lax",
        secure=settings.secure_cookies,
        path="/",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
    )
