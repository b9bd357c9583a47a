"""
tests/test_api_routes.py -- Integration tests for the auth and profile routes.

Covers:
  - POST /api/v1/auth/authenticate: 201 new / 200 existing / 400 invalid email / 422 missing field
  - POST /api/v1/auth/token: happy path, status codes per failure, Cache-Control
  - POST /api/v1/auth/token/refresh: happy path and every rejection
  - GET/POST/PATCH /api/v1/users/{id}/profile: bearer auth, self-only, create
    once (201, then 409), partial update, 404, 409
  - 502 when the email cannot be sent, uniform error envelope
"""

from __future__ import annotations

import uuid

import pytest

from auth.errors import EmailDispatchError


def _login(client, sender, email: str) -> tuple[str, dict]:
    """Run authenticate + token for email; return (user_id, token body)."""
    resp = client.post("/api/v1/auth/authenticate", json={"email": email})
    assert resp.status_code in (200, 201)
    user_id = resp.json()["user_id"]
    code = sender.last_code_for(email)
    resp = client.post("/api/v1/auth/token", json={"code": code}, headers={"X-User-Id": user_id})
    assert resp.status_code == 200, resp.text
    return user_id, resp.json()


def _wrong(code: int) -> int:
    return 1000 if code != 1000 else 1001


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# authenticate
# ---------------------------------------------------------------------------


class TestAuthenticate:
    def test_new_email_returns_201(self, api_client):
        client, sender = api_client
        resp = client.post("/api/v1/auth/authenticate", json={"email": "route-new@example.com"})
        assert resp.status_code == 201
        assert uuid.UUID(resp.json()["user_id"])
        assert sender.sent[-1][0] == "route-new@example.com"

    def test_known_email_returns_200_same_id(self, api_client):
        client, _ = api_client
        first = client.post("/api/v1/auth/authenticate", json={"email": "route-known@example.com"})
        second = client.post("/api/v1/auth/authenticate", json={"email": "route-known@example.com"})
        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["user_id"] == first.json()["user_id"]

    def test_response_never_contains_code(self, api_client):
        client, sender = api_client
        resp = client.post("/api/v1/auth/authenticate", json={"email": "route-secret@example.com"})
        assert set(resp.json()) == {"user_id"}
        assert str(sender.last_code_for("route-secret@example.com")) not in resp.text

    def test_invalid_email_returns_400(self, api_client):
        client, _ = api_client
        resp = client.post("/api/v1/auth/authenticate", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_email"

    def test_missing_email_returns_422(self, api_client):
        client, _ = api_client
        resp = client.post("/api/v1/auth/authenticate", json={})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_email_failure_returns_502(self, api_client, monkeypatch):
        client, sender = api_client

        def _fail(to_email, subject, body):
            raise EmailDispatchError("smtp down")

        monkeypatch.setattr(sender, "send", _fail)
        resp = client.post("/api/v1/auth/authenticate", json={"email": "route-nomail@example.com"})
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "failed_to_send_code"
        assert "smtp" not in resp.text


# ---------------------------------------------------------------------------
# token
# ---------------------------------------------------------------------------


class TestGetTokens:
    def test_happy_path(self, api_client):
        client, sender = api_client
        user_id, body = _login(client, sender, "route-token@example.com")
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 900
        assert body["access_token"].count(".") == 2
        assert len(body["refresh_token"]) == 64

    def test_no_store_header(self, api_client):
        client, sender = api_client
        resp = client.post("/api/v1/auth/authenticate", json={"email": "route-cache@example.com"})
        user_id = resp.json()["user_id"]
        code = sender.last_code_for("route-cache@example.com")
        resp = client.post("/api/v1/auth/token", json={"code": code}, headers={"X-User-Id": user_id})
        assert resp.headers["Cache-Control"] == "no-store"

    def test_wrong_code_401_then_right_code_200(self, api_client):
        client, sender = api_client
        user_id = client.post("/api/v1/auth/authenticate", json={"email": "route-wrong@example.com"}).json()["user_id"]
        code = sender.last_code_for("route-wrong@example.com")

        resp = client.post("/api/v1/auth/token", json={"code": _wrong(code)}, headers={"X-User-Id": user_id})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "code_mismatch"

        resp = client.post("/api/v1/auth/token", json={"code": code}, headers={"X-User-Id": user_id})
        assert resp.status_code == 200

    def test_code_reuse_returns_401(self, api_client):
        client, sender = api_client
        user_id = client.post("/api/v1/auth/authenticate", json={"email": "route-reuse@example.com"}).json()["user_id"]
        code = sender.last_code_for("route-reuse@example.com")
        client.post("/api/v1/auth/token", json={"code": code}, headers={"X-User-Id": user_id})

        resp = client.post("/api/v1/auth/token", json={"code": code}, headers={"X-User-Id": user_id})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "code_not_found"

    @pytest.mark.parametrize("code", [0, 999, 10000])
    def test_out_of_range_code_returns_400(self, api_client, code):
        client, _ = api_client
        resp = client.post("/api/v1/auth/token", json={"code": code}, headers={"X-User-Id": str(uuid.uuid4())})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_code"

    @pytest.mark.parametrize("header", ["", "not-a-uuid", "1234"])
    def test_bad_user_id_returns_400(self, api_client, header):
        client, _ = api_client
        resp = client.post("/api/v1/auth/token", json={"code": 1234}, headers={"X-User-Id": header})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_user_id"

    def test_unknown_user_without_code_returns_401(self, api_client):
        client, _ = api_client
        resp = client.post("/api/v1/auth/token", json={"code": 1234}, headers={"X-User-Id": str(uuid.uuid4())})
        assert resp.status_code == 401

    def test_non_integer_code_returns_422(self, api_client):
        client, _ = api_client
        resp = client.post("/api/v1/auth/token", json={"code": "abcd"}, headers={"X-User-Id": str(uuid.uuid4())})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# token/refresh
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_happy_path(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-refresh@example.com")
        resp = client.post(
            "/api/v1/auth/token/refresh",
            json={"refresh_token": tokens["refresh_token"]},
            headers={"X-User-Id": user_id},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["access_token"].count(".") == 2
        assert "refresh_token" not in body
        assert resp.headers["Cache-Control"] == "no-store"

    def test_empty_token_returns_400(self, api_client):
        client, _ = api_client
        resp = client.post(
            "/api/v1/auth/token/refresh", json={"refresh_token": ""}, headers={"X-User-Id": str(uuid.uuid4())}
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "empty_refresh_token"

    def test_bad_user_id_returns_401(self, api_client):
        client, _ = api_client
        resp = client.post("/api/v1/auth/token/refresh", json={"refresh_token": "x"}, headers={"X-User-Id": "nope"})
        assert resp.status_code == 401

    def test_unknown_user_returns_404(self, api_client):
        client, _ = api_client
        resp = client.post(
            "/api/v1/auth/token/refresh", json={"refresh_token": "x"}, headers={"X-User-Id": str(uuid.uuid4())}
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "user_not_found"

    def test_wrong_token_returns_403(self, api_client):
        client, sender = api_client
        user_id, _ = _login(client, sender, "route-badrefresh@example.com")
        resp = client.post(
            "/api/v1/auth/token/refresh", json={"refresh_token": "wrong"}, headers={"X-User-Id": user_id}
        )
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_token_of_other_user_returns_403(self, api_client):
        client, sender = api_client
        _, alice = _login(client, sender, "route-alice@example.com")
        bob_id, _ = _login(client, sender, "route-bob@example.com")
        resp = client.post(
            "/api/v1/auth/token/refresh",
            json={"refresh_token": alice["refresh_token"]},
            headers={"X-User-Id": bob_id},
        )
        assert resp.status_code == 403

    def test_relogin_revokes_old_refresh_token(self, api_client):
        client, sender = api_client
        user_id, old = _login(client, sender, "route-relogin@example.com")
        _login(client, sender, "route-relogin@example.com")
        resp = client.post(
            "/api/v1/auth/token/refresh",
            json={"refresh_token": old["refresh_token"]},
            headers={"X-User-Id": user_id},
        )
        assert resp.status_code == 403


# ---------------------------------------------------------------------------
# profile
# ---------------------------------------------------------------------------


class TestProfile:
    def test_requires_bearer_token(self, api_client):
        client, _ = api_client
        resp = client.get(f"/api/v1/users/{uuid.uuid4()}/profile")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.json()["error"]["code"] == "not_authenticated"

    def test_rejects_garbage_token(self, api_client):
        client, _ = api_client
        resp = client.get(f"/api/v1/users/{uuid.uuid4()}/profile", headers=_bearer("a.b.c"))
        assert resp.status_code == 401

    def test_profile_lifecycle(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-profile@example.com")
        headers = _bearer(tokens["access_token"])
        url = f"/api/v1/users/{user_id}/profile"

        resp = client.get(url, headers=headers)
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "profile_not_found"

        payload = {"first_name": "Ada", "last_name": "Lovelace", "username": "ada_l"}
        resp = client.post(url, json=payload, headers=headers)
        assert resp.status_code == 201
        assert resp.json() == payload

        resp = client.get(url, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == payload

    def test_second_create_returns_409(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-twice@example.com")
        headers = _bearer(tokens["access_token"])
        url = f"/api/v1/users/{user_id}/profile"
        assert client.post(url, json={"first_name": "T", "username": "twice_1"}, headers=headers).status_code == 201

        resp = client.post(url, json={"first_name": "U", "username": "twice_2"}, headers=headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "profile_exists"
        assert client.get(url, headers=headers).json()["username"] == "twice_1"

    def test_create_requires_username_and_first_name(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-required@example.com")
        headers = _bearer(tokens["access_token"])
        url = f"/api/v1/users/{user_id}/profile"
        assert client.post(url, json={"first_name": "R"}, headers=headers).status_code == 422
        assert client.post(url, json={"username": "required_r"}, headers=headers).status_code == 422

    def test_patch_changes_only_given_fields(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-patch@example.com")
        headers = _bearer(tokens["access_token"])
        url = f"/api/v1/users/{user_id}/profile"
        client.post(url, json={"first_name": "Grace", "last_name": "Murray", "username": "ghopper"}, headers=headers)

        resp = client.patch(url, json={"last_name": "Hopper"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"first_name": "Grace", "last_name": "Hopper", "username": "ghopper"}

        resp = client.patch(url, json={"username": "amazing_grace"}, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == {"first_name": "Grace", "last_name": "Hopper", "username": "amazing_grace"}
        assert client.get(url, headers=headers).json() == resp.json()

    def test_empty_patch_returns_current_profile(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-emptypatch@example.com")
        headers = _bearer(tokens["access_token"])
        url = f"/api/v1/users/{user_id}/profile"
        payload = {"first_name": "E", "last_name": None, "username": "empty_patch"}
        client.post(url, json=payload, headers=headers)

        resp = client.patch(url, json={}, headers=headers)
        assert resp.status_code == 200
        assert resp.json() == payload

    def test_patch_before_create_returns_404(self, api_client):
        client, sender = api_client
        user_id, tokens = _login(client, sender, "route-earlypatch@example.com")
        resp = client.patch(
            f"/api/v1/users/{user_id}/profile", json={"first_name": "Early"}, headers=_bearer(tokens["access_token"])
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "profile_not_found"

    def test_other_users_profile_is_forbidden(self, api_client):
        client, sender = api_client
        _, carol = _login(client, sender, "route-carol@example.com")
        dave_id, _ = _login(client, sender, "route-dave@example.com")
        headers = _bearer(carol["access_token"])
        url = f"/api/v1/users/{dave_id}/profile"
        assert client.get(url, headers=headers).status_code == 403
        assert client.post(url, json={"first_name": "C", "username": "carol_c"}, headers=headers).status_code == 403
        assert client.patch(url, json={"first_name": "C"}, headers=headers).status_code == 403

    def test_username_taken_returns_409(self, api_client):
        client, sender = api_client
        erin_id, erin = _login(client, sender, "route-erin@example.com")
        frank_id, frank = _login(client, sender, "route-frank@example.com")
        erin_url, frank_url = f"/api/v1/users/{erin_id}/profile", f"/api/v1/users/{frank_id}/profile"
        payload = {"first_name": "E", "username": "contested"}
        assert client.post(erin_url, json=payload, headers=_bearer(erin["access_token"])).status_code == 201

        resp = client.post(frank_url, json=payload, headers=_bearer(frank["access_token"]))
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"

        frank_headers = _bearer(frank["access_token"])
        resp = client.post(frank_url, json={"first_name": "F", "username": "frank_f"}, headers=frank_headers)
        assert resp.status_code == 201

        resp = client.patch(frank_url, json={"username": "contested"}, headers=frank_headers)
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "username_taken"
        assert client.get(frank_url, headers=frank_headers).json()["username"] == "frank_f"

    @pytest.mark.parametrize("method", ["post", "patch"])
    def test_invalid_username_returns_422(self, api_client, method):
        client, sender = api_client
        user_id, tokens = _login(client, sender, f"route-badname-{method}@example.com")
        resp = getattr(client, method)(
            f"/api/v1/users/{user_id}/profile",
            json={"first_name": "G", "username": "has spaces"},
            headers=_bearer(tokens["access_token"]),
        )
        assert resp.status_code == 422
