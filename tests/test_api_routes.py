"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> request validation ->
bearer-token dependency -> AuthSessionService -> UserStore -> error envelope.
Unit testing the route functions directly would miss the exception handlers
that turn AuthError subclasses into status codes.

Coverage:
  - End-to-end: register 201, five bad logins 401, locked 423, unlock, login
    200, pre-login refresh token rejected
  - Refresh rotation and logout revocation over HTTP
  - /me and /users auth + admin policy; no secret fields in responses
  - Token failures share one error body
  - Validation errors return the 422 envelope
  - Only name and email are trimmed; passwords keep their whitespace
  - The login rate limit answers 429 with Retry-After

Fixtures used (from conftest.py):
  - api_client: (client, clock) -- fresh DB per test, fake clock shared with the service
"""

from __future__ import annotations

from types import SimpleNamespace

from fastapi.testclient import TestClient

from api.limiter import limiter

PASSWORD = "Passw0rd!"
_SECRET_FIELDS = {"password", "password_hash", "refresh_token_hash", "refresh_token_expires_at", "login_failures"}


def _register(client: TestClient, email: str = "alice@x.com", role: str | None = None, name: str = "Alice"):
    body = {"name": name, "email": email, "password": PASSWORD}
    if role:
        body["role"] = role
    return client.post("/api/v1/auth/register", json=body)


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestEndToEnd:
    def test_register_lockout_unlock_and_rotation(self, api_client) -> None:
        client, clock = api_client

        resp = _register(client)
        assert resp.status_code == 201
        first = resp.json()
        assert first["access_token"] and first["refresh_token"]
        assert first["token_type"] == "bearer"
        assert resp.headers["cache-control"] == "no-store"

        for _ in range(5):
            resp = client.post("/api/v1/auth/login", json={"email": "alice@x.com", "password": "wrong"})
            assert resp.status_code == 401
            assert resp.json()["error"]["code"] == "bad_credentials"

        resp = client.post("/api/v1/auth/login", json={"email": "alice@x.com", "password": PASSWORD})
        assert resp.status_code == 423
        assert resp.json()["error"]["code"] == "account_locked"
        assert resp.headers["retry-after"] == "900"

        clock.advance(15 * 60 + 1)
        resp = client.post("/api/v1/auth/login", json={"email": "alice@x.com", "password": PASSWORD})
        assert resp.status_code == 200
        second = resp.json()
        assert second["refresh_token"] != first["refresh_token"]

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 401


class TestRegisterRoute:
    def test_duplicate_email(self, api_client) -> None:
        client, _ = api_client
        assert _register(client).status_code == 201
        resp = _register(client, email="ALICE@x.com")
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_admin_bootstrap(self, api_client) -> None:
        client, _ = api_client
        resp = _register(client, email="root@x.com", role="admin", name="Root")
        assert resp.status_code == 201
        assert resp.json()["user"]["role"] == "admin"
        resp = _register(client, email="mallory@x.com", role="admin", name="Mallory")
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_response_has_no_secret_fields(self, api_client) -> None:
        client, _ = api_client
        user = _register(client).json()["user"]
        assert set(user) == {"id", "name", "email", "role", "created_at", "updated_at"}
        assert not _SECRET_FIELDS & set(user)

    def test_validation_error_envelope(self, api_client) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/auth/register", json={"name": "A", "email": "not-an-email", "password": "short"}
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_unknown_role_rejected(self, api_client) -> None:
        client, _ = api_client
        assert _register(client, role="superuser").status_code == 422


class TestLoginRoute:
    def test_unknown_email_matches_wrong_password(self, api_client) -> None:
        client, _ = api_client
        _register(client)
        unknown = client.post("/api/v1/auth/login", json={"email": "nobody@x.com", "password": PASSWORD})
        wrong = client.post("/api/v1/auth/login", json={"email": "alice@x.com", "password": "wrong"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()

    def test_email_is_case_insensitive(self, api_client) -> None:
        client, _ = api_client
        _register(client)
        resp = client.post("/api/v1/auth/login", json={"email": "ALICE@X.COM", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "alice@x.com"


class TestRefreshAndLogout:
    def test_refresh_is_single_use(self, api_client) -> None:
        client, _ = api_client
        token = _register(client).json()["refresh_token"]
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": token})
        assert resp.status_code == 200
        assert resp.json()["refresh_token"] != token
        again = client.post("/api/v1/auth/refresh", json={"refresh_token": token})
        assert again.status_code == 401

    def test_logout_revokes_refresh_but_not_access(self, api_client) -> None:
        client, _ = api_client
        tokens = _register(client).json()
        resp = client.post("/api/v1/auth/logout", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["message"]

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401
        assert client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"])).status_code == 200

    def test_logout_requires_auth(self, api_client) -> None:
        client, _ = api_client
        assert client.post("/api/v1/auth/logout").status_code == 401

    def test_token_failures_share_one_body(self, api_client) -> None:
        client, clock = api_client
        tokens = _register(client).json()
        head, payload, sig = tokens["access_token"].split(".")
        tampered = f"{head}.{payload}.{'A' if sig[0] != 'A' else 'B'}{sig[1:]}"

        bad_signature = client.get("/api/v1/auth/me", headers=_bearer(tampered))
        malformed = client.get("/api/v1/auth/me", headers=_bearer("garbage"))
        wrong_kind = client.get("/api/v1/auth/me", headers=_bearer(tokens["refresh_token"]))
        clock.advance(15 * 60)
        expired = client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))

        for resp in (bad_signature, malformed, wrong_kind, expired):
            assert resp.status_code == 401
            assert resp.json() == malformed.json()
            assert resp.json()["error"]["code"] == "unauthorized"


class TestMeAndUsers:
    def test_me_unauthenticated(self, api_client) -> None:
        client, _ = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_me(self, api_client) -> None:
        client, _ = api_client
        tokens = _register(client).json()
        resp = client.get("/api/v1/auth/me", headers=_bearer(tokens["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["email"] == "alice@x.com"
        assert not _SECRET_FIELDS & set(resp.json())

    def test_users_admin_only(self, api_client) -> None:
        client, _ = api_client
        admin = _register(client, email="root@x.com", role="admin", name="Root").json()
        user = _register(client).json()

        assert client.get("/api/v1/auth/users", headers=_bearer(user["access_token"])).status_code == 403

        resp = client.get("/api/v1/auth/users", headers=_bearer(admin["access_token"]))
        assert resp.status_code == 200
        assert [u["email"] for u in resp.json()] == ["alice@x.com", "root@x.com"]
        for row in resp.json():
            assert not _SECRET_FIELDS & set(row)


class TestWhitespaceHandling:
    def test_password_whitespace_is_preserved(self, api_client) -> None:
        client, _ = api_client
        padded = "  Passw0rd!  "
        resp = client.post(
            "/api/v1/auth/register",
            json={"name": "  Alice  ", "email": "  Alice@X.com ", "password": padded},
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["name"] == "Alice"
        assert resp.json()["user"]["email"] == "alice@x.com"

        ok = client.post("/api/v1/auth/login", json={"email": "alice@x.com", "password": padded})
        assert ok.status_code == 200
        stripped = client.post("/api/v1/auth/login", json={"email": "alice@x.com", "password": "Passw0rd!"})
        assert stripped.status_code == 401

    def test_spaces_count_toward_password_length(self, api_client) -> None:
        client, _ = api_client
        resp = client.post(
            "/api/v1/auth/register", json={"name": "Alice", "email": "alice@x.com", "password": "  abcd  "}
        )
        assert resp.status_code == 201


class TestLoginRateLimit:
    def test_exceeding_login_limit_returns_429(self, api_client, monkeypatch) -> None:
        client, _ = api_client
        monkeypatch.setattr("api.limiter.get_settings", lambda: SimpleNamespace(login_rate_limit="2/minute"))
        limiter.reset()
        try:
            body = {"email": "nobody@x.com", "password": "wrong"}
            assert client.post("/api/v1/auth/login", json=body).status_code == 401
            assert client.post("/api/v1/auth/login", json=body).status_code == 401

            resp = client.post("/api/v1/auth/login", json=body)
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"
            assert resp.headers["retry-after"] == "60"
        finally:
            limiter.reset()
