"""
Process configuration, read once from the environment at startup.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import List, Mapping, Optional

INSECURE_HASH_SECRET = "CHANGE_THIS_PEPPER_SECRET"


def _first(env: Mapping[str, str], *names: str, default: str = "") -> str:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return default


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw in (None, ""):
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    store_url: str = ""
    store_token: str = ""
    store_timeout: float = 20.0

    token_bytes: int = 32
    token_hash_algo: str = "sha256"
    token_hash_secret: str = INSECURE_HASH_SECRET
    token_expiry_minutes: int = 1440
    reset_token_expiry_minutes: int = 60

    session_cookie_name: str = "session"
    session_cookie_max_age: int = 30 * 24 * 60 * 60
    secure_cookies: bool = False

    public_base_url: str = "http://localhost:8000"
    verify_page_path: str = "/auth/verify"
    reset_page_path: str = "/auth/reset-password"

    student_role_id: str = ""
    landlord_role_id: str = ""
    default_role_id: str = ""

    email_user: str = ""
    email_password: str = ""
    email_from: str = ""
    smtp_server: str = "smtp.gmail.com"
    smtp_port: int = 587

    def warnings(self) -> List[str]:
        """Human-readable problems an operator should fix before going live."""
        out = []
        if not self.store_url:
            out.append("STORE_URL is not set. Record store calls will fail.")
        if not self.store_token:
            out.append("STORE_TOKEN is not set. Admin operations will fail.")
        if self.token_hash_secret == INSECURE_HASH_SECRET:
            out.append("TOKEN_HASH_SECRET is using the insecure default.")
        return out


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """
    Build Settings from environment variables (os.environ unless given).
    Call once at process start and pass the result around.
    """
    env = os.environ if environ is None else environ

    public_base_url = env.get("PUBLIC_BASE_URL", "") or "http://localhost:8000"
    secure_cookies = (
        env.get("COOKIE_SECURE", "").lower() in ("1", "true", "yes")
        or public_base_url.lower().startswith("https://")
    )
    student_role_id = env.get("STUDENT_ROLE_ID", "")

    return Settings(
        store_url=_first(env, "STORE_URL", "DIRECTUS_URL").rstrip("/"),
        store_token=_first(env, "STORE_TOKEN", "DIRECTUS_TOKEN", "DIRECTUS_ADMIN_TOKEN"),
        store_timeout=_float(env, "STORE_TIMEOUT_SECONDS", 20.0),
        token_bytes=_int(env, "TOKEN_BYTES", 32),
        token_hash_algo=env.get("TOKEN_HASH_ALGO", "") or "sha256",
        token_hash_secret=env.get("TOKEN_HASH_SECRET", "") or INSECURE_HASH_SECRET,
        token_expiry_minutes=_int(env, "TOKEN_EXPIRY_MINUTES", 1440),
        reset_token_expiry_minutes=_int(env, "RESET_TOKEN_EXPIRY_MINUTES", 60),
        session_cookie_name=env.get("SESSION_COOKIE_NAME", "") or "session",
        session_cookie_max_age=_int(env, "SESSION_COOKIE_MAX_AGE", 30 * 24 * 60 * 60),
        secure_cookies=secure_cookies,
        public_base_url=public_base_url.rstrip("/"),
        verify_page_path=env.get("VERIFY_PAGE_PATH", "") or "/auth/verify",
        reset_page_path=env.get("RESET_PAGE_PATH", "") or "/auth/reset-password",
        student_role_id=student_role_id,
        landlord_role_id=env.get("LANDLORD_ROLE_ID", ""),
        default_role_id=env.get("DEFAULT_ROLE_ID", "") or student_role_id,
        email_user=env.get("EMAIL_USER", ""),
        email_password=env.get("EMAIL_PASSWORD", ""),
        email_from=env.get("EMAIL_FROM", ""),
        smtp_server=env.get("SMTP_SERVER", "") or "smtp.gmail.com",
        smtp_port=_int(env, "SMTP_PORT", 587),
    )


__all__ = ["INSECURE_HASH_SECRET", "Settings", "load_settings"]
