import json
from urllib.parse import parse_qsl, unquote, urlsplit

import pytest
from fastapi.testclient import TestClient

import app.api as api_module
from core.config import Settings
from core.database import HttpResult, StoreClient

STORE_URL = "http://store.test"


def _as_text(value) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return "" if value is None else str(value)


class FakeStore:
    """
    In-memory stand-in for the record store, used as the StoreClient request callable.
    `fail_on[(method, path_prefix)]` makes matching calls return that status or raise that exception.
    """

    def __init__(self):
        self.users = {}
        self.passwords = {}
        self.tokens = {}
        self.profiles = {}
        self.calls = []
        self.fail_on = {}
        self.case_insensitive_filters = False
        self._next_id = 1

    def _new_id(self, prefix):
        value = f"{prefix}-{self._next_id}"
        self._next_id += 1
        return value

    def add_user(self, user_id="u1", email="u@example.com", token=None, status="active", password=None, **extra):
        row = {
            "id": user_id,
            "email": email,
            "first_name": extra.pop("first_name", "Una"),
            "last_name": extra.pop("last_name", "User"),
            "status": status,
            "token": token,
            "role": extra.pop("role", {"id": "role-student", "name": "Student"}),
        }
        row.update(extra)
        self.users[user_id] = row
        if password:
            self.passwords[email] = password
        return row

    def add_token(self, token_id, **fields):
        row = {"id": token_id, "used": False, "used_at": None, "purpose": "email_verify"}
        row.update(fields)
        self.tokens[token_id] = row
        return row

    def _eq(self, stored, wanted: str) -> bool:
        stored = _as_text(stored)
        if self.case_insensitive_filters:
            return stored.lower() == wanted.lower()
        return stored == wanted

    def _select(self, rows, query):
        filters = {}
        limit = None
        for key, value in parse_qsl(query):
            if key.startswith("filter["):
                field = key[len("filter["):].split("]", 1)[0]
                filters[field] = value
            elif key == "limit":
                limit = int(value)
        found = [r for r in rows if all(self._eq(r.get(f), v) for f, v in filters.items())]
        return found[:limit] if limit is not None else found

    @staticmethod
    def _ok(data, status=200):
        return HttpResult(status=status, body=json.dumps({"data": data}))

    @staticmethod
    def _error(status, message):
        return HttpResult(status=status, body=json.dumps({"errors": [{"message": message}]}))

    async def __call__(self, method, url, payload=None, headers=None, timeout=20.0):
        parts = urlsplit(url)
        path = parts.path
        self.calls.append((method, path, payload, dict(headers or {})))

        for (fail_method, prefix), outcome in self.fail_on.items():
            if method == fail_method and path.startswith(prefix):
                if isinstance(outcome, Exception):
                    raise outcome
                return self._error(outcome, "forced failure")

        if path == "/auth/login" and method == "POST":
            user = next((u for u in self.users.values() if u["email"] == payload["email"]), None)
            if not user or self.passwords.get(user["email"]) != payload["password"] or user["status"] != "active":
                return self._error(401, "Invalid user credentials.")
            return self._ok({"access_token": f"at-{user['id']}"})

        if path == "/users/me" and method == "GET":
            user_id = (headers or {}).get("Authorization", "")[len("Bearer at-"):]
            user = self.users.get(user_id)
            if not user:
                return self._error(401, "Invalid token")
            return self._ok({k: user[k] for k in ("id", "email", "first_name", "last_name", "role")})

        if path == "/users":
            if method == "GET":
                return self._ok(self._select(list(self.users.values()), parts.query))
            if method == "POST":
                if any(u["email"] == payload["email"] for u in self.users.values()):
                    return self._error(400, 'Value for field "email" in collection "directus_users" has to be unique.')
                user_id = self._new_id("user")
                self.users[user_id] = {"id": user_id, "token": None, **payload}
                self.passwords[payload["email"]] = payload.get("password")
                return self._ok(self.users[user_id])

        if path.startswith("/users/") and method == "PATCH":
            user_id = unquote(path[len("/users/"):])
            if user_id not in self.users:
                return self._error(404, "Not found")
            data = dict(payload)
            if "password" in data:
                self.passwords[self.users[user_id]["email"]] = data.pop("password")
            self.users[user_id].update(data)
            return self._ok(self.users[user_id])

        if path == "/items/verification_tokens":
            if method == "GET":
                return self._ok(self._select(list(self.tokens.values()), parts.query))
            if method == "POST":
                token_id = self._new_id("vt")
                self.tokens[token_id] = {"id": token_id, "used_at": None, **payload}
                return self._ok(self.tokens[token_id])
            if method == "PATCH":
                conditions = payload["query"]["filter"]
                keys = []
                for row in self.tokens.values():
                    if all(row.get(f) == cond["_eq"] for f, cond in conditions.items()):
                        row.update(payload["data"])
                        keys.append(row["id"])
                return self._ok(keys)

        if path.startswith("/items/verification_tokens/") and method == "PATCH":
            token_id = unquote(path.rsplit("/", 1)[1])
            if token_id not in self.tokens:
                return self._error(404, "Not found")
            self.tokens[token_id].update(payload)
            return self._ok(self.tokens[token_id])

        if path == "/items/profiles" and method == "PATCH":
            for key, data in zip(payload["keys"], payload["data"]):
                self.profiles.setdefault(key["user"], {}).update(data)
            return self._ok([])

        return self._error(404, f"No route for {method} {path}")


@pytest.fixture
def settings():
    return Settings(
        store_url=STORE_URL,
        store_token="admin-token",
        token_hash_secret="test-pepper",
        session_cookie_name="session",
        student_role_id="role-student",
        landlord_role_id="role-landlord",
        default_role_id="role-student",
        public_base_url="https://pozi.test",
    )


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def store(settings, fake_store):
    return StoreClient(settings, request=fake_store)


@pytest.fixture
def client(monkeypatch, settings, store):
    monkeypatch.setattr(api_module.app.state, "settings", settings)
    monkeypatch.setattr(api_module.app.state, "store", store)
    return TestClient(api_module.app)
