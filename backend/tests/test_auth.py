"""
Auth API: register, login, logout, refresh and profile.
"""
from uuid import uuid4

from fastapi.testclient import TestClient

from conftest import PASSWORD, register
from giftregistry.core.config import settings
from giftregistry.core.security import create_access_token, create_refresh_token
from giftregistry.main import app


def _email() -> str:
    return f"user-{uuid4().hex}@example.com"


class TestAuthRegister:
    """Registration."""

    def test_register_success(self):
        client = TestClient(app)
        email = _email()

        response = client.post(
            "/auth/register",
            json={"email": email, "password": PASSWORD, "first_name": " Test ", "last_name": "User"},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["email"] == email
        assert data["first_name"] == "Test"
        assert data["display_name"] == "Test User"
        assert data["notification_preferences"] == {"in_app": True, "email": True}
        assert "hashed_password" not in data

    def test_register_sets_session(self):
        client = TestClient(app)
        register(client)
        assert client.get("/auth/me").status_code == 200

    def test_register_duplicate_email(self):
        client = TestClient(app)
        email = _email()
        register(client, email=email)

        response = TestClient(app).post("/auth/register", json={"email": email.upper(), "password": PASSWORD})

        assert response.status_code == 400
        assert response.json()["field"] == "email"

    def test_register_invalid_email(self):
        response = TestClient(app).post("/auth/register", json={"email": "not-an-email", "password": PASSWORD})
        assert response.status_code == 400
        assert response.json()["field"] == "email"

    def test_register_weak_password(self):
        for password in ("short", "alllowercase1", "NODIGITSHERE"):
            response = TestClient(app).post("/auth/register", json={"email": _email(), "password": password})
            assert response.status_code == 400
            assert response.json()["field"] == "password"

    def test_register_missing_fields(self):
        response = TestClient(app).post("/auth/register", json={"email": _email()})
        assert response.status_code == 400


class TestAuthLogin:
    """Login."""

    def test_login_success(self):
        email = _email()
        register(TestClient(app), email=email)
        client = TestClient(app)

        response = client.post("/auth/login", json={"email": email, "password": PASSWORD})

        assert response.status_code == 200
        assert response.json()["email"] == email
        assert client.get("/auth/me").json()["email"] == email

    def test_login_wrong_password(self):
        email = _email()
        register(TestClient(app), email=email)

        response = TestClient(app).post("/auth/login", json={"email": email, "password": "WrongPass456!"})

        assert response.status_code == 401
        assert response.json() == {"error": "Invalid email or password"}

    def test_login_nonexistent_user(self):
        response = TestClient(app).post("/auth/login", json={"email": _email(), "password": PASSWORD})
        assert response.status_code == 401

    def test_login_sets_cookies(self):
        email = _email()
        register(TestClient(app), email=email)

        response = TestClient(app).post("/auth/login", json={"email": email, "password": PASSWORD})

        set_cookie = response.headers.get("set-cookie", "")
        assert "access_token=" in set_cookie
        assert "refresh_token=" in set_cookie
        assert "HttpOnly" in set_cookie

    def test_login_cookie_flags_prod(self):
        prev_env = settings.environment
        settings.environment = "prod"
        try:
            email = _email()
            register(TestClient(app), email=email)
            res = TestClient(app).post("/auth/login", json={"email": email, "password": PASSWORD})
            set_cookie = res.headers.get("set-cookie", "")
            assert "Secure" in set_cookie
            assert "samesite=none" in set_cookie.lower()
        finally:
            settings.environment = prev_env


class TestAuthSession:
    """Logout, refresh and bearer tokens."""

    def test_logout_clears_cookies(self):
        client = TestClient(app)
        register(client)

        response = client.post("/auth/logout")

        assert response.status_code == 204
        assert "access_token=" in response.headers.get("set-cookie", "")
        assert client.get("/auth/me").status_code == 401

    def test_me_requires_token(self):
        assert TestClient(app).get("/auth/me").status_code == 401

    def test_me_invalid_token(self):
        res = TestClient(app).get("/auth/me", headers={"Authorization": "Bearer invalid.token.here"})
        assert res.status_code == 401

    def test_me_with_bearer_token(self):
        profile = register(TestClient(app))
        token = create_access_token(str(profile["id"]))

        res = TestClient(app).get("/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert res.status_code == 200
        assert res.json()["id"] == profile["id"]

    def test_me_expired_token(self):
        profile = register(TestClient(app))
        expired = create_access_token(str(profile["id"]), expires_delta_minutes=-1)

        res = TestClient(app).get("/auth/me", headers={"Authorization": f"Bearer {expired}"})

        assert res.status_code == 401

    def test_refresh_token_flow(self):
        client = TestClient(app)
        register(client)

        res = client.post("/auth/refresh")

        assert res.status_code == 204
        refreshed = res.headers.get("set-cookie", "")
        assert "access_token=" in refreshed
        assert "refresh_token=" in refreshed

    def test_refresh_token_invalid(self):
        bad_refresh = create_refresh_token("1", expires_delta_minutes=-1)
        client = TestClient(app, cookies={"refresh_token": bad_refresh})
        assert client.post("/auth/refresh").status_code == 401

    def test_refresh_without_cookie(self):
        assert TestClient(app).post("/auth/refresh").status_code == 401


class TestProfileUpdate:
    """PUT /auth/me."""

    def test_update_names(self):
        client = TestClient(app)
        register(client)

        res = client.put("/auth/me", json={"full_name": "Pat Example"})

        assert res.status_code == 200
        assert res.json()["display_name"] == "Pat Example"

    def test_update_notification_preferences(self):
        client = TestClient(app)
        register(client)

        res = client.put("/auth/me", json={"notification_preferences": {"in_app": True, "email": False}})

        assert res.status_code == 200
        assert res.json()["notification_preferences"] == {"in_app": True, "email": False}
        assert client.get("/auth/me").json()["notification_preferences"]["email"] is False

    def test_update_requires_auth(self):
        assert TestClient(app).put("/auth/me", json={"full_name": "X"}).status_code == 401
