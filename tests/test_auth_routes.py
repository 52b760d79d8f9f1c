from datetime import datetime, timezone
from urllib.parse import parse_qs, urlsplit

from app.routes import auth
from core.store.base import StoreTransportError
from core.store.users.tokens import add_minutes_iso, token_hash


def _issue(fake_store, settings, plain="T", minutes=1440):
    fake_store.add_token(
        "vt-1",
        user="u1",
        token_hash=token_hash(plain, settings.token_hash_secret),
        expires_at=add_minutes_iso(minutes, datetime.now(timezone.utc)),
    )


# ---- /session ----

def test_session_without_credentials_is_200_guest(client, fake_store):
    resp = client.get("/api/auth/session")
    assert resp.status_code == 200
    assert resp.json() == {"success": False, "authenticated": False}
    assert fake_store.calls == []


def test_session_with_cookie(client, fake_store):
    fake_store.add_user(token="abc")
    client.cookies.set("session", "abc")
    resp = client.get("/api/auth/session")
    assert resp.status_code == 200
    body = resp.json()
    assert body["authenticated"] is True
    assert body["user"]["id"] == "u1"
    assert body["user"]["role"] == "Student"


def test_session_with_bearer_header(client, fake_store):
    fake_store.add_user(token="abc")
    resp = client.get("/api/auth/session", headers={"Authorization": "Bearer abc"})
    assert resp.json()["authenticated"] is True


def test_session_pending_user_is_200_with_status(client, fake_store):
    fake_store.add_user(token="abc", status="pending")
    client.cookies.set("session", "abc")
    resp = client.get("/api/auth/session")
    assert resp.status_code == 200
    assert resp.json()["authenticated"] is False
    assert resp.json()["status"] == "pending"


def test_session_store_down_is_still_200(client, fake_store):
    fake_store.fail_on[("GET", "/users")] = StoreTransportError("refused")
    client.cookies.set("session", "abc")
    resp = client.get("/api/auth/session")
    assert resp.status_code == 200
    assert resp.json() == {"success": False, "authenticated": False, "error": "Failed to validate token"}


# ---- /validate-token ----

def test_validate_token_requires_token(client):
    resp = client.post("/api/auth/validate-token", json={})
    assert resp.status_code == 400
    assert resp.json() == {"success": False, "error": "Token is required"}


def test_validate_token_from_body(client, fake_store):
    fake_store.add_user(token="abc")
    resp = client.post("/api/auth/validate-token", json={"token": "abc"})
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    assert resp.json()["user"]["email"] == "u@example.com"


def test_validate_token_wrong_token_is_401(client, fake_store):
    fake_store.add_user(token="abc")
    resp = client.post("/api/auth/validate-token", json={"token": "abd"})
    assert resp.status_code == 401
    assert resp.json()["success"] is False


def test_validate_token_inactive_is_401_with_status(client, fake_store):
    fake_store.add_user(token="abc", status="suspended")
    resp = client.post("/api/auth/validate-token", headers={"Authorization": "Bearer abc"})
    assert resp.status_code == 401
    assert resp.json()["status"] == "suspended"


# ---- /verify ----

def test_verify_link_end_to_end(client, settings, fake_store):
    fake_store.add_user(user_id="u1", status="unverified")
    _issue(fake_store, settings)

    resp = client.get("/api/auth/verify?t=T", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth/verify?success=true"
    assert fake_store.users["u1"]["status"] == "active"

    again = client.get("/api/auth/verify?t=T", follow_redirects=False)
    assert again.status_code == 303
    location = urlsplit(again.headers["location"])
    assert location.path == "/auth/verify"
    assert parse_qs(location.query) == {"error": ["Invalid or expired verification token"]}


def test_verify_link_accepts_token_param(client, settings, fake_store):
    fake_store.add_user(user_id="u1", status="unverified")
    _issue(fake_store, settings)
    resp = client.get("/api/auth/verify?token=T", follow_redirects=False)
    assert resp.headers["location"] == "/auth/verify?success=true"


def test_verify_link_missing_token(client):
    resp = client.get("/api/auth/verify", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth/verify?error=missing_token"


def test_verify_api_success_and_replay(client, settings, fake_store):
    fake_store.add_user(user_id="u1", status="unverified")
    _issue(fake_store, settings)

    resp = client.post("/api/auth/verify", json={"token": "T"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "message": "Account verified successfully", "user_id": "u1"}

    replay = client.post("/api/auth/verify", json={"token": "T"})
    assert replay.status_code == 400
    assert replay.json() == {"success": False, "error": "Invalid or expired verification token"}


def test_verify_api_missing_token(client):
    resp = client.post("/api/auth/verify", content=b"not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Missing verification token"


# ---- /logout ----

def test_logout_clears_cookie_only(client, fake_store):
    fake_store.add_user(token="abc")
    resp = client.post("/api/auth/logout")
    assert resp.status_code == 200
    assert resp.json()["success"] is True
    set_cookie = resp.headers["set-cookie"]
    assert set_cookie.startswith("session=")
    assert "Max-Age=0" in set_cookie
    assert fake_store.users["u1"]["token"] == "abc"
    assert fake_store.calls == []


# ---- /login ----

def test_login_issues_static_token_and_cookie(client, settings, fake_store):
    fake_store.add_user(email="u@example.com", password="Passw0rd1", token=None)
    resp = client.post("/api/auth/login", json={"email": "u@example.com", "password": "Passw0rd1"})

    assert resp.status_code == 200
    body = resp.json()
    static_token = body["static_token"]
    assert fake_store.users["u1"]["token"] == static_token
    assert body["user"]["status"] == "active"
    assert resp.cookies.get("session") == static_token
    assert "httponly" in resp.headers["set-cookie"].lower()


def test_login_then_session_resolves(client, fake_store):
    fake_store.add_user(email="u@example.com", password="Passw0rd1")
    token = client.post("/api/auth/login", json={"email": "u@example.com", "password": "Passw0rd1"}).json()["static_token"]
    resp = client.get("/api/auth/session", headers={"Authorization": f"Bearer {token}"})
    assert resp.json()["authenticated"] is True


def test_login_unverified_account_is_403(client, fake_store):
    fake_store.add_user(email="u@example.com", password="Passw0rd1", status="unverified")
    resp = client.post("/api/auth/login", json={"email": "u@example.com", "password": "Passw0rd1"})
    assert resp.status_code == 403
    assert resp.json()["status"] == "unverified"
    assert resp.json()["needs_verification"] is True


def test_login_bad_password_is_401(client, fake_store):
    fake_store.add_user(email="u@example.com", password="Passw0rd1")
    resp = client.post("/api/auth/login", json={"email": "u@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert resp.json()["error"] == "Invalid user credentials."


def test_login_requires_fields(client):
    assert client.post("/api/auth/login", json={"email": "u@example.com"}).status_code == 400


def test_login_store_down_is_500(client, fake_store):
    fake_store.fail_on[("POST", "/auth/login")] = StoreTransportError("refused")
    resp = client.post("/api/auth/login", json={"email": "u@example.com", "password": "x"})
    assert resp.status_code == 500
    assert resp.json() == {"success": False, "error": "Internal server error"}


# ---- /signup ----

def _signup_payload(**overrides):
    payload = {
        "email": "new@example.com",
        "password": "Passw0rd1",
        "confirm_password": "Passw0rd1",
        "first_name": "Nia",
        "last_name": "New",
        "user_type": "landlord",
    }
    payload.update(overrides)
    return payload


def test_signup_creates_unverified_user_and_sends_link(client, settings, fake_store, monkeypatch):
    sent = {}
    monkeypatch.setattr(
        auth, "send_verification_email", lambda s, to, name, link: sent.update(to=to, name=name, link=link)
    )

    resp = client.post("/api/auth/signup", json=_signup_payload())
    assert resp.status_code == 201
    user_id = resp.json()["user_id"]
    assert resp.json()["verification_sent"] is True
    assert fake_store.users[user_id]["status"] == "unverified"
    assert fake_store.users[user_id]["role"] == "role-landlord"

    assert sent["to"] == "new@example.com"
    assert sent["link"].startswith("https://pozi.test/api/auth/verify?t=")
    plain = parse_qs(urlsplit(sent["link"]).query)["t"][0]

    verify = client.get(f"/api/auth/verify?t={plain}", follow_redirects=False)
    assert verify.headers["location"] == "/auth/verify?success=true"
    assert fake_store.users[user_id]["status"] == "active"


def test_signup_email_failure_does_not_fail(client, fake_store, monkeypatch):
    def boom(*args):
        raise RuntimeError("Email credentials not configured.")

    monkeypatch.setattr(auth, "send_verification_email", boom)
    resp = client.post("/api/auth/signup", json=_signup_payload())
    assert resp.status_code == 201
    assert resp.json()["verification_sent"] is False


def test_signup_token_issue_failure_does_not_fail(client, fake_store, monkeypatch):
    monkeypatch.setattr(auth, "send_verification_email", lambda *a: None)
    fake_store.fail_on[("POST", "/items/verification_tokens")] = 403
    resp = client.post("/api/auth/signup", json=_signup_payload())
    assert resp.status_code == 201
    assert resp.json()["verification_sent"] is False


def test_signup_validation(client):
    assert client.post("/api/auth/signup", json=_signup_payload(email="bademail")).status_code == 400
    assert client.post("/api/auth/signup", json=_signup_payload(password="short", confirm_password="short")).status_code == 400
    resp = client.post("/api/auth/signup", json=_signup_payload(confirm_password="Different1"))
    assert resp.status_code == 400
    assert resp.json()["error"] == "Passwords do not match"


def test_signup_duplicate_email_is_400(client, fake_store, monkeypatch):
    monkeypatch.setattr(auth, "send_verification_email", lambda *a: None)
    fake_store.add_user(email="new@example.com")
    resp = client.post("/api/auth/signup", json=_signup_payload())
    assert resp.status_code == 400
    assert "unique" in resp.json()["error"]


def test_signup_rejects_non_string_fields(client, fake_store):
    for field, value in (("email", 5), ("password", 12345678), ("confirm_password", ["Passw0rd1"]), ("first_name", {})):
        resp = client.post("/api/auth/signup", json=_signup_payload(**{field: value}))
        assert resp.status_code == 400
        assert resp.json() == {"success": False, "error": f"Invalid value for {field}"}
    assert fake_store.users == {}


def test_login_rejects_non_string_fields(client, fake_store):
    fake_store.add_user(email="u@example.com", password="Passw0rd1")
    resp = client.post("/api/auth/login", json={"email": 5, "password": "Passw0rd1"})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid value for email"
    resp = client.post("/api/auth/login", json={"email": "u@example.com", "password": 12345678})
    assert resp.status_code == 400
    assert resp.json()["error"] == "Invalid value for password"
    assert fake_store.calls == []
