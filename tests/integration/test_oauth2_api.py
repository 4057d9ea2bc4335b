"""Integration tests for the OAuth2 HTTP endpoints."""

from urllib.parse import parse_qs, urlsplit

import pytest
from fastapi.testclient import TestClient

from idp_gateway.core.oauth2.pkce import PKCEValidator

from conftest import CONFIDENTIAL_SECRET, DEMO_REDIRECT, FrozenClock

pytestmark = pytest.mark.integration

PREFIX = "/api/v1/oauth2"

pkce = PKCEValidator()
VERIFIER = pkce.generate_verifier()
CHALLENGE = pkce.generate_challenge(VERIFIER)


def query_of(location: str) -> dict[str, list[str]]:
    return parse_qs(urlsplit(location).query)


def login(test_client: TestClient, state: str = "xyz") -> str:
    """Run authorize and the upstream callback; return the client's code."""
    response = test_client.get(
        f"{PREFIX}/authorize",
        params={
            "client_id": "demo",
            "redirect_uri": DEMO_REDIRECT,
            "response_type": "code",
            "state": state,
            "code_challenge": CHALLENGE,
            "code_challenge_method": "S256",
        },
        follow_redirects=False,
    )
    assert response.status_code == 302, response.text
    session_token = query_of(response.headers["location"])["state"][0]

    response = test_client.get(
        f"{PREFIX}/callback",
        params={"state": session_token, "code": "upstream-code"},
        follow_redirects=False,
    )
    assert response.status_code == 302, response.text
    location = response.headers["location"]
    assert location.startswith(DEMO_REDIRECT)
    assert query_of(location)["state"] == [state]
    return query_of(location)["code"][0]


def redeem(test_client: TestClient, code: str) -> dict:
    response = test_client.post(
        f"{PREFIX}/token",
        data={
            "grant_type": "authorization_code",
            "client_id": "demo",
            "code": code,
            "redirect_uri": DEMO_REDIRECT,
            "code_verifier": VERIFIER,
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestAuthorizationCodeFlow:
    """End-to-end authorization code flow with PKCE."""

    def test_full_flow(self, test_client: TestClient) -> None:
        code = login(test_client)

        response = test_client.post(
            f"{PREFIX}/token",
            data={
                "grant_type": "authorization_code",
                "client_id": "demo",
                "code": code,
                "redirect_uri": DEMO_REDIRECT,
                "code_verifier": VERIFIER,
            },
        )

        assert response.status_code == 200
        assert response.headers["cache-control"] == "no-store"
        body = response.json()
        assert body["token_type"] == "Bearer"
        assert body["expires_in"] == 3600
        assert {"access_token", "refresh_token", "id_token"} <= body.keys()

    def test_code_is_single_use(self, test_client: TestClient) -> None:
        code = login(test_client)
        redeem(test_client, code)

        response = test_client.post(
            f"{PREFIX}/token",
            data={
                "grant_type": "authorization_code",
                "client_id": "demo",
                "code": code,
                "redirect_uri": DEMO_REDIRECT,
                "code_verifier": VERIFIER,
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_authorize_rejects_unregistered_redirect(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{PREFIX}/authorize",
            params={
                "client_id": "demo",
                "redirect_uri": "http://evil/cb",
                "code_challenge": CHALLENGE,
                "code_challenge_method": "S256",
            },
            follow_redirects=False,
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_authorize_unknown_client(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{PREFIX}/authorize",
            params={"client_id": "nobody", "redirect_uri": DEMO_REDIRECT},
            follow_redirects=False,
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_callback_denied_upstream(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{PREFIX}/authorize",
            params={
                "client_id": "demo",
                "redirect_uri": DEMO_REDIRECT,
                "state": "xyz",
                "code_challenge": CHALLENGE,
                "code_challenge_method": "S256",
            },
            follow_redirects=False,
        )
        session_token = query_of(response.headers["location"])["state"][0]

        response = test_client.get(
            f"{PREFIX}/callback",
            params={"state": session_token, "error": "access_denied"},
            follow_redirects=False,
        )

        assert response.status_code == 302
        assert query_of(response.headers["location"]) == {
            "error": ["access_denied"],
            "state": ["xyz"],
        }

    def test_callback_unknown_session(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{PREFIX}/callback",
            params={"state": "forged", "code": "upstream-code"},
            follow_redirects=False,
        )

        assert response.status_code == 400

    def test_token_errors(self, test_client: TestClient) -> None:
        response = test_client.post(
            f"{PREFIX}/token", data={"grant_type": "password", "client_id": "demo"}
        )
        assert response.status_code == 400
        assert response.json()["error"] == "unsupported_grant_type"
        assert response.headers["cache-control"] == "no-store"

        response = test_client.post(
            f"{PREFIX}/token",
            data={
                "grant_type": "refresh_token",
                "client_id": "backend",
                "client_secret": "wrong",
                "refresh_token": "x",
            },
        )
        assert response.status_code == 401
        assert response.json()["error"] == "invalid_client"

    def test_confidential_client_secret(self, test_client: TestClient) -> None:
        response = test_client.get(
            f"{PREFIX}/authorize",
            params={
                "client_id": "backend",
                "redirect_uri": "https://app.example.com/callback",
                "state": "s1",
            },
            follow_redirects=False,
        )
        session_token = query_of(response.headers["location"])["state"][0]
        response = test_client.get(
            f"{PREFIX}/callback",
            params={"state": session_token, "code": "upstream-code"},
            follow_redirects=False,
        )
        code = query_of(response.headers["location"])["code"][0]

        response = test_client.post(
            f"{PREFIX}/token",
            data={
                "grant_type": "authorization_code",
                "client_id": "backend",
                "client_secret": CONFIDENTIAL_SECRET,
                "code": code,
                "redirect_uri": "https://app.example.com/callback",
            },
        )

        assert response.status_code == 200


class TestTokenManagement:
    """Refresh, introspection, revocation and userinfo over HTTP."""

    def test_refresh(self, test_client: TestClient) -> None:
        tokens = redeem(test_client, login(test_client))

        response = test_client.post(
            f"{PREFIX}/token",
            data={
                "grant_type": "refresh_token",
                "client_id": "demo",
                "refresh_token": tokens["refresh_token"],
            },
        )

        assert response.status_code == 200
        assert response.json()["access_token"] != tokens["access_token"]

    def test_introspect_and_revoke(self, test_client: TestClient) -> None:
        tokens = redeem(test_client, login(test_client))

        response = test_client.post(
            f"{PREFIX}/introspect", data={"token": tokens["access_token"]}
        )
        body = response.json()
        assert response.status_code == 200
        assert body["active"] is True
        assert body["client_id"] == "demo"
        assert body["token_type"] == "access_token"

        response = test_client.post(
            f"{PREFIX}/revoke",
            data={"token": tokens["access_token"], "token_type_hint": "access_token"},
        )
        assert response.status_code == 200

        response = test_client.post(
            f"{PREFIX}/introspect", data={"token": tokens["access_token"]}
        )
        assert response.json() == {"active": False}

    def test_revoke_unknown_token_is_ok(self, test_client: TestClient) -> None:
        response = test_client.post(f"{PREFIX}/revoke", data={"token": "garbage"})

        assert response.status_code == 200

    def test_revoked_refresh_token_cannot_refresh(self, test_client: TestClient) -> None:
        tokens = redeem(test_client, login(test_client))
        test_client.post(
            f"{PREFIX}/revoke",
            data={"token": tokens["refresh_token"], "token_type_hint": "refresh_token"},
        )

        response = test_client.post(
            f"{PREFIX}/token",
            data={
                "grant_type": "refresh_token",
                "client_id": "demo",
                "refresh_token": tokens["refresh_token"],
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_grant"

    def test_introspect_expired(self, test_client: TestClient, clock: FrozenClock) -> None:
        tokens = redeem(test_client, login(test_client))

        clock.advance(hours=2)

        response = test_client.post(
            f"{PREFIX}/introspect",
            data={"token": tokens["access_token"], "token_type_hint": "access_token"},
        )
        assert response.json() == {"active": False}

    def test_userinfo(self, test_client: TestClient) -> None:
        tokens = redeem(test_client, login(test_client))

        response = test_client.get(
            f"{PREFIX}/userinfo",
            headers={"Authorization": f"Bearer {tokens['access_token']}"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["email"] == "user@example.com"
        assert body["email_verified"] is True
        assert "picture" not in body

    def test_userinfo_requires_bearer(self, test_client: TestClient) -> None:
        response = test_client.get(f"{PREFIX}/userinfo")

        assert response.status_code == 401
        assert response.headers["www-authenticate"].startswith("Bearer")

    def test_userinfo_rejects_refresh_token(self, test_client: TestClient) -> None:
        tokens = redeem(test_client, login(test_client))

        response = test_client.get(
            f"{PREFIX}/userinfo",
            headers={"Authorization": f"Bearer {tokens['refresh_token']}"},
        )

        assert response.status_code == 401
        assert response.json()["error"] == "invalid_token"


class TestJsonBodies:
    """The token and introspection endpoints also take JSON objects."""

    def test_code_redeemed_with_json(self, test_client: TestClient) -> None:
        code = login(test_client)

        response = test_client.post(
            f"{PREFIX}/token",
            json={
                "grant_type": "authorization_code",
                "client_id": "demo",
                "code": code,
                "redirect_uri": DEMO_REDIRECT,
                "code_verifier": VERIFIER,
            },
        )

        assert response.status_code == 200, response.text
        assert response.headers["cache-control"] == "no-store"
        assert response.json()["token_type"] == "Bearer"

    def test_refresh_and_introspect_with_json(self, test_client: TestClient) -> None:
        tokens = redeem(test_client, login(test_client))

        response = test_client.post(
            f"{PREFIX}/token",
            json={
                "grant_type": "refresh_token",
                "client_id": "demo",
                "refresh_token": tokens["refresh_token"],
                "unused_extension": "ignored",
            },
        )
        assert response.status_code == 200, response.text

        response = test_client.post(
            f"{PREFIX}/introspect",
            json={"token": tokens["refresh_token"], "token_type_hint": "refresh_token"},
        )
        assert response.status_code == 200
        assert response.json()["active"] is True
        assert response.json()["token_type"] == "refresh_token"

    def test_malformed_json_is_invalid_request(self, test_client: TestClient) -> None:
        response = test_client.post(
            f"{PREFIX}/token",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"
        assert response.headers["cache-control"] == "no-store"

    def test_json_array_is_invalid_request(self, test_client: TestClient) -> None:
        response = test_client.post(f"{PREFIX}/introspect", json=["token"])

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"

    def test_missing_grant_type(self, test_client: TestClient) -> None:
        json_response = test_client.post(f"{PREFIX}/token", json={"client_id": "demo"})
        form_response = test_client.post(f"{PREFIX}/token", data={"client_id": "demo"})

        for response in (json_response, form_response):
            assert response.status_code == 400
            body = response.json()
            assert body["error"] == "invalid_request"
            assert "grant_type" in body["error_description"]

    def test_missing_introspection_token(self, test_client: TestClient) -> None:
        response = test_client.post(f"{PREFIX}/introspect", data={})

        assert response.status_code == 400
        assert response.json()["error"] == "invalid_request"


class TestDiscoveryAndHealth:
    """Metadata and health endpoints."""

    def test_metadata(self, test_client: TestClient) -> None:
        response = test_client.get(f"{PREFIX}/.well-known/oauth-authorization-server")

        body = response.json()
        assert response.status_code == 200
        assert body["issuer"] == "oauth-service"
        assert body["token_endpoint"].endswith("/api/v1/oauth2/token")
        assert body["code_challenge_methods_supported"] == ["S256", "plain"]
        assert body["grant_types_supported"] == ["authorization_code", "refresh_token"]

    def test_health(self, test_client: TestClient) -> None:
        login(test_client)

        response = test_client.get("/api/v1/health")

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "healthy"
        assert body["components"]["session_store"]["status"] == "healthy"
        assert body["pending_codes"] == 1
        assert body["pending_sessions"] == 0
