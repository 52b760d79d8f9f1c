import logging
from typing import Optional
from urllib.parse import quote

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, RedirectResponse

from app.auth_utils import (
    clear_session_cookie,
    extract_credential,
    get_current_user,
    get_settings,
    get_store,
    set_session_cookie,
)
from app.email_utils import send_password_reset_email, send_verification_email
from core.database import (
    INTERNAL_MESSAGE,
    PASSWORD_UPDATE_FAILED_MESSAGE,
    Identity,
    StoreTransportError,
    VerificationError,
    consume,
    create_password_reset_token,
    error_message,
    generate_plain_token,
    issue_verification_token,
    reset_password,
    resolve_session,
)

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth")

LOGIN_ME_FIELDS = ("id", "email", "first_name", "last_name", "role.name", "role.id")
LOGIN_STATUS_FIELDS = ("id", "email", "status", "role.name", "role.id")
RESET_LOOKUP_FIELDS = ("id", "email", "first_name")
SIGNUP_TEXT_FIELDS = ("email", "password", "confirm_password", "first_name", "last_name", "user_type")
MIN_PASSWORD_LENGTH = 8
RESET_REQUESTED_MESSAGE = "If an account with that email exists, a password reset link has been sent"


async def _json_body(request: Request) -> dict:
    """Request body as a dict; anything unparsable counts as empty."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _data(result):
    """The `data` member of a store response body, if any."""
    parsed = result.json()
    return parsed.get("data") if isinstance(parsed, dict) else None


def _non_string_field(body: dict, names) -> Optional[str]:
    """First of `names` present in the body with a non-string value."""
    for name in names:
        value = body.get(name)
        if value is not None and not isinstance(value, str):
            return name
    return None


def _bad_field(name: str) -> JSONResponse:
    return JSONResponse({"success": False, "error": f"Invalid value for {name}"}, status_code=400)


def _is_valid_email(email: str) -> bool:
    email = (email or "").strip()
    if not email:
        return False
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _not_active(status: str) -> JSONResponse:
    return JSONResponse(
        {
            "success": False,
            "error": f"Account status is '{status}'. Please verify your email address to activate your account.",
            "status": status,
            "needs_verification": True,
        },
        status_code=403,
    )


def _role_for(settings, user_type: str) -> str:
    if user_type in ("landlord", "property_owner"):
        return settings.landlord_role_id or settings.default_role_id
    if user_type == "student":
        return settings.student_role_id or settings.default_role_id
    return settings.default_role_id


def _verify_redirect(settings, query: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.verify_page_path}?{query}", status_code=303)


@router.get("/session")
async def session(request: Request):
    # Never a 4xx/5xx for "not logged in".
    result = await get_current_user(request)
    return JSONResponse(result.as_dict(), status_code=200)


@router.post("/validate-token")
async def validate_token(request: Request):
    settings = get_settings(request)
    token = extract_credential(request, settings.session_cookie_name)
    if not token:
        token = (await _json_body(request)).get("token")
    if not token or not isinstance(token, str):
        return JSONResponse({"success": False, "error": "Token is required"}, status_code=400)

    result = await resolve_session(get_store(request), token)
    if not result.authenticated:
        body = {"success": False, "error": result.error}
        if result.status is not None:
            body["status"] = result.status
        return JSONResponse(body, status_code=401)

    return JSONResponse({"success": True, "user": result.user.as_dict()})


@router.get("/verify")
async def verify_link(request: Request):
    settings = get_settings(request)
    token = request.query_params.get("t") or request.query_params.get("token")
    if not token:
        return _verify_redirect(settings, "error=missing_token")

    result = await consume(get_store(request), settings, token)
    if result.success:
        return _verify_redirect(settings, "success=true")
    return _verify_redirect(settings, f"error={quote(result.message, safe='')}")


@router.post("/verify")
async def verify_api(request: Request):
    token = (await _json_body(request)).get("token")
    if not token or not isinstance(token, str):
        return JSONResponse({"success": False, "error": "Missing verification token"}, status_code=400)

    result = await consume(get_store(request), get_settings(request), token)
    if not result.success:
        return JSONResponse({"success": False, "error": result.message}, status_code=400)
    return JSONResponse({"success": True, "message": result.message, "user_id": result.user_id})


@router.post("/logout")
async def logout(request: Request):
    # The static token on the user record is left untouched.
    response = JSONResponse({"success": True, "message": "Logged out successfully"})
    clear_session_cookie(response, get_settings(request))
    return response


@router.post("/login")
async def login(request: Request):
    settings = get_settings(request)
    store = get_store(request)
    body = await _json_body(request)
    bad = _non_string_field(body, ("email", "password"))
    if bad:
        return _bad_field(bad)
    email = body.get("email")
    password = body.get("password")
    if not email or not password:
        return JSONResponse({"success": False, "error": "Email and password are required"}, status_code=400)

    try:
        auth = await store.login(email, password)
        if not auth.ok:
            msg = error_message(auth, "Invalid email or password")
            log.info("Store login refused email=%s status=%s", email, auth.status)
            # The store refuses non-active accounts; tell those users to verify instead.
            try:
                check = await store.list_users({"email": email}, LOGIN_STATUS_FIELDS, limit=1)
                rows = check.rows() if check.ok else None
            except StoreTransportError:
                rows = None
            if rows and isinstance(rows[0], dict) and rows[0].get("status") != "active":
                return _not_active(rows[0].get("status") or "unknown")
            return JSONResponse({"success": False, "error": msg}, status_code=401)

        auth_data = _data(auth) or {}
        access_token = auth_data.get("access_token") if isinstance(auth_data, dict) else None
        if not access_token:
            return JSONResponse({"success": False, "error": "Authentication failed - access token missing"}, status_code=500)

        me_result = await store.fetch_me(access_token, LOGIN_ME_FIELDS)
        me = _data(me_result) if me_result.ok else None
        if not isinstance(me, dict) or not me.get("id"):
            return JSONResponse(
                {"success": False, "error": error_message(me_result, "Could not fetch user")}, status_code=500
            )

        # Status is read with the operator credential; the user's own role may not expose it.
        status_result = await store.list_users({"id": me["id"]}, LOGIN_STATUS_FIELDS, limit=1)
        rows = status_result.rows() if status_result.ok else None
        if rows and isinstance(rows[0], dict):
            me = {**me, **{k: v for k, v in rows[0].items() if v}}
        else:
            log.warning("Could not read status for user_id=%s status=%s", me["id"], status_result.status)
        status = me.get("status") or "unknown"
        if status != "active":
            return _not_active(status)

        static_token = generate_plain_token(settings.token_bytes)
        update = await store.patch_user(me["id"], {"token": static_token})
        if not update.ok:
            msg = error_message(update, "Could not update user token")
            log.error("Saving static token failed user_id=%s status=%s error=%s", me["id"], update.status, msg)
            return JSONResponse({"success": False, "error": msg}, status_code=500)
    except StoreTransportError:
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)

    log.info("Login successful user_id=%s", me["id"])
    response = JSONResponse(
        {
            "success": True,
            "message": "Login successful",
            "static_token": static_token,
            "user": Identity.from_row(me).as_dict(),
        }
    )
    set_session_cookie(response, settings, static_token)
    return response


@router.post("/signup")
async def signup(request: Request):
    settings = get_settings(request)
    store = get_store(request)
    body = await _json_body(request)
    bad = _non_string_field(body, SIGNUP_TEXT_FIELDS)
    if bad:
        return _bad_field(bad)
    email = (body.get("email") or "").strip()
    password = body.get("password") or ""
    first_name = body.get("first_name") or None

    if not email or not password:
        return JSONResponse({"success": False, "error": "Email and password are required"}, status_code=400)
    if not _is_valid_email(email):
        return JSONResponse({"success": False, "error": "Invalid email address"}, status_code=400)
    if len(password) < MIN_PASSWORD_LENGTH:
        return JSONResponse(
            {"success": False, "error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"},
            status_code=400,
        )
    if password != body.get("confirm_password"):
        return JSONResponse({"success": False, "error": "Passwords do not match"}, status_code=400)

    role_id = _role_for(settings, body.get("user_type") or "")
    if not role_id:
        return JSONResponse(
            {"success": False, "error": "Server configuration error: role ids are not configured"}, status_code=500
        )

    try:
        created = await store.create_user(
            {
                "email": email,
                "password": password,
                "first_name": first_name,
                "last_name": body.get("last_name") or None,
                "role": role_id,
                "status": "unverified",
            }
        )
    except StoreTransportError:
        return JSONResponse({"success": False, "error": "Internal server error"}, status_code=500)
    if not created.ok:
        msg = error_message(created, "Could not create user")
        log.warning("User creation failed email=%s status=%s error=%s", email, created.status, msg)
        return JSONResponse({"success": False, "error": msg}, status_code=400)

    user = _data(created)
    user_id = user.get("id") if isinstance(user, dict) else None
    if not user_id:
        return JSONResponse({"success": False, "error": "User created but no ID returned"}, status_code=500)

    verification_sent = False
    try:
        plain = await issue_verification_token(store, settings, user_id)
    except (VerificationError, StoreTransportError):
        log.warning("Verification token not issued for user_id=%s; the account needs manual verification", user_id)
    else:
        link = f"{settings.public_base_url}{router.prefix}/verify?t={quote(plain, safe='')}"
        try:
            await run_in_threadpool(send_verification_email, settings, email, first_name, link)
            verification_sent = True
        except Exception:
            log.exception("Verification email failed for user_id=%s", user_id)

    return JSONResponse(
        {"success": True, "user_id": user_id, "verification_sent": verification_sent},
        status_code=201,
    )


def _reset_requested() -> JSONResponse:
    # Identical for known and unknown addresses.
    return JSONResponse({"success": True, "message": RESET_REQUESTED_MESSAGE})


@router.post("/forgot-password")
async def forgot_password(request: Request):
    settings = get_settings(request)
    store = get_store(request)
    email = (await _json_body(request)).get("email")
    if not isinstance(email, str) or not _is_valid_email(email):
        return JSONResponse({"success": False, "error": "Please provide a valid email address"}, status_code=400)
    email = email.strip()

    try:
        found = await store.list_users({"email": email}, RESET_LOOKUP_FIELDS, limit=1)
        rows = found.rows() if found.ok else None
        user = rows[0] if rows and isinstance(rows[0], dict) else None
        if not user or not user.get("id"):
            log.info("Password reset requested for an address with no account")
            return _reset_requested()
        plain = await create_password_reset_token(store, settings, user["id"])
    except (VerificationError, StoreTransportError):
        log.warning("Password reset token not issued; replying with the generic message")
        return _reset_requested()

    link = f"{settings.public_base_url}{settings.reset_page_path}?t={quote(plain, safe='')}"
    try:
        await run_in_threadpool(send_password_reset_email, settings, email, user.get("first_name") or None, link)
    except Exception:
        log.exception("Password reset email failed for user_id=%s", user["id"])
    return _reset_requested()


@router.post("/reset-password")
async def reset_password_api(request: Request):
    body = await _json_body(request)
    token = body.get("token")
    if not token or not isinstance(token, str):
        return JSONResponse({"success": False, "error": "Missing reset token"}, status_code=400)
    bad = _non_string_field(body, ("password", "confirm_password"))
    if bad:
        return _bad_field(bad)
    password = body.get("password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        return JSONResponse(
            {"success": False, "error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"},
            status_code=400,
        )
    if password != body.get("confirm_password"):
        return JSONResponse({"success": False, "error": "Passwords do not match"}, status_code=400)

    result = await reset_password(get_store(request), get_settings(request), token, password)
    if not result.success:
        status_code = 500 if result.message in (INTERNAL_MESSAGE, PASSWORD_UPDATE_FAILED_MESSAGE) else 400
        return JSONResponse({"success": False, "error": result.message}, status_code=status_code)
    return JSONResponse({"success": True, "message": result.message, "user_id": result.user_id})
