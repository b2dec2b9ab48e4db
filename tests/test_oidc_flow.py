from __future__ import annotations

import time
from typing import Optional
from unittest.mock import patch
from urllib.parse import parse_qs, urlparse

import jwt
from fastapi.testclient import TestClient

from b2cauth.api.app import create_app
from b2cauth.auth.handlers import CORRELATION_SALT, SIGN_OUT_STATE_SALT
from b2cauth.auth.session import sign_payload, unsign_payload
from tests.conftest import AUTHORITY, SESSION_SECRET

CORRELATION_COOKIE = ".b2c.correlation.AzureADB2COpenID"
SESSION_COOKIE = ".b2c.AzureADB2CCookie"


def _set_cookie_value(r, name: str) -> Optional[str]:
    for header in r.headers.get_list("set-cookie"):
        if header.startswith(f"{name}="):
            return header.split(";", 1)[0].split("=", 1)[1].strip('"')
    return None


def _set_cookie_header(r, name: str) -> str:
    return next(h for h in r.headers.get_list("set-cookie") if h.startswith(f"{name}="))


def _start_sign_in(client: TestClient, return_url: str = "/orders"):
    r = client.get("/AzureADB2C/Account/SignIn/AzureADB2C", params={"ReturnUrl": return_url})
    assert r.status_code == 302
    loc = urlparse(r.headers["location"])
    return r, loc, {k: v[0] for k, v in parse_qs(loc.query).items()}


def test_sign_in_redirects_to_b2c_authorize_endpoint(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    r, loc, params = _start_sign_in(client)

    assert fake_discovery == [AUTHORITY]
    assert f"{loc.scheme}://{loc.netloc}{loc.path}" == (
        "https://contoso.b2clogin.com/tfp/contoso.onmicrosoft.com/B2C_1_susi/oauth2/v2.0/authorize"
    )
    assert params["client_id"] == "client-123"
    assert params["redirect_uri"] == "https://app.example.com/signin-oidc"
    assert params["response_type"] == "code"
    assert params["scope"] == "openid profile"
    assert params["code_challenge_method"] == "S256"
    assert params["state"] and params["nonce"]
    assert r.headers["cache-control"] == "no-store"

    header = _set_cookie_header(r, CORRELATION_COOKIE)
    assert "Path=/signin-oidc" in header
    assert "HttpOnly" in header
    corr = unsign_payload(SESSION_SECRET, CORRELATION_SALT, _set_cookie_value(r, CORRELATION_COOKIE), 600)
    assert corr["state"] == params["state"]
    assert corr["nonce"] == params["nonce"]
    assert corr["redirect_uri"] == "/orders"
    assert corr["policy"] == "B2C_1_susi"


def test_sign_in_ignores_external_return_url(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    r, _loc, _params = _start_sign_in(client, return_url="https://evil.example.com/")

    corr = unsign_payload(SESSION_SECRET, CORRELATION_SALT, _set_cookie_value(r, CORRELATION_COOKIE), 600)
    assert corr["redirect_uri"] == "/"


def test_unknown_scheme_is_404(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    r = client.get("/AzureADB2C/Account/SignIn/unknown")
    assert r.status_code == 404
    assert fake_discovery == []


def test_callback_signs_in_with_cookie_scheme(make_config, fake_discovery) -> None:
    app = create_app(make_config())
    r, _loc, params = _start_sign_in(TestClient(app, follow_redirects=False))
    correlation = _set_cookie_value(r, CORRELATION_COOKIE)

    claims = {
        "sub": "user-1",
        "name": "Ada Lovelace",
        "emails": ["Ada@Example.com"],
        "tfp": "B2C_1_susi",
        "exp": int(time.time()) + 1800,
    }
    with patch("b2cauth.auth.oidc.exchange_code_for_tokens") as mock_exchange, patch(
        "b2cauth.auth.oidc.validate_id_token"
    ) as mock_validate:
        mock_exchange.return_value = {"id_token": "header.payload.sig"}
        mock_validate.return_value = claims

        client = TestClient(app, follow_redirects=False)
        cb = client.get(
            "/signin-oidc",
            params={"code": "auth-code", "state": params["state"]},
            headers={"Cookie": f"{CORRELATION_COOKIE}={correlation}"},
        )

        assert cb.status_code == 302
        assert cb.headers["location"] == "/orders"
        _, kwargs = mock_exchange.call_args
        assert kwargs["code"] == "auth-code"
        assert kwargs["redirect_uri"] == "https://app.example.com/signin-oidc"
        assert kwargs["code_verifier"]
        _, kwargs = mock_validate.call_args
        assert kwargs["expected_nonce"] == params["nonce"]
        assert kwargs["client_id"] == "client-123"

    session = _set_cookie_value(cb, SESSION_COOKIE)
    assert session
    max_age = int(_set_cookie_header(cb, SESSION_COOKIE).split("Max-Age=", 1)[1].split(";", 1)[0])
    assert 0 < max_age <= 1800
    assert "Max-Age=0" in _set_cookie_header(cb, CORRELATION_COOKIE)

    me = TestClient(app).get("/api/auth/me", headers={"Cookie": f"{SESSION_COOKIE}={session}"})
    assert me.status_code == 200
    user = me.json()["user"]
    assert user["subject"] == "user-1"
    assert user["name"] == "Ada Lovelace"
    assert user["email"] == "ada@example.com"
    assert user["scheme"] == "AzureADB2COpenID"


def test_callback_with_wrong_state_goes_to_error_page(make_config, fake_discovery) -> None:
    app = create_app(make_config())
    r, _loc, _params = _start_sign_in(TestClient(app, follow_redirects=False))
    correlation = _set_cookie_value(r, CORRELATION_COOKIE)

    with patch("b2cauth.auth.oidc.exchange_code_for_tokens") as mock_exchange:
        cb = TestClient(app, follow_redirects=False).get(
            "/signin-oidc",
            params={"code": "auth-code", "state": "forged"},
            headers={"Cookie": f"{CORRELATION_COOKIE}={correlation}"},
        )
        assert mock_exchange.called is False

    assert cb.status_code == 302
    assert cb.headers["location"] == "/AzureADB2C/Account/Error"
    assert _set_cookie_value(cb, SESSION_COOKIE) is None


def test_callback_without_correlation_cookie_goes_to_error_page(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    cb = client.get("/signin-oidc", params={"code": "auth-code", "state": "x"})
    assert cb.status_code == 302
    assert cb.headers["location"] == "/AzureADB2C/Account/Error"


def test_forgot_password_error_redirects_to_reset_password(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    cb = client.get(
        "/signin-oidc",
        params={
            "error": "access_denied",
            "error_description": "AADB2C90118: The user has forgotten their password.",
        },
    )
    assert cb.status_code == 302
    assert cb.headers["location"] == "/AzureADB2C/Account/ResetPassword/AzureADB2C"


def test_cancelled_user_flow_redirects_home(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    cb = client.get(
        "/signin-oidc",
        params={"error": "access_denied", "error_description": "AADB2C90091: The user has cancelled."},
    )
    assert cb.status_code == 302
    assert cb.headers["location"] == "/"


def test_reset_password_challenges_with_reset_policy(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    r = client.get("/AzureADB2C/Account/ResetPassword/AzureADB2C")

    assert r.status_code == 302
    reset_authority = "https://contoso.b2clogin.com/tfp/contoso.onmicrosoft.com/B2C_1_reset/v2.0"
    assert fake_discovery == [reset_authority]
    assert "/B2C_1_reset/oauth2/v2.0/authorize" in r.headers["location"]
    corr = unsign_payload(SESSION_SECRET, CORRELATION_SALT, _set_cookie_value(r, CORRELATION_COOKIE), 600)
    assert corr["policy"] == "B2C_1_reset"


def test_edit_profile_without_policy_is_404(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config(edit_profile_policy_id=None)), follow_redirects=False)
    r = client.get("/AzureADB2C/Account/EditProfile/AzureADB2C")
    assert r.status_code == 404
    assert fake_discovery == []


def test_sign_out_redirects_to_end_session_and_clears_cookie(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    r = client.get("/AzureADB2C/Account/SignOut/AzureADB2C")

    assert r.status_code == 302
    loc = urlparse(r.headers["location"])
    assert loc.path.endswith("/B2C_1_susi/oauth2/v2.0/logout")
    params = {k: v[0] for k, v in parse_qs(loc.query).items()}
    assert params["post_logout_redirect_uri"] == "https://app.example.com/signout-callback-oidc"
    assert "Max-Age=0" in _set_cookie_header(r, SESSION_COOKIE)

    back = client.get("/signout-callback-oidc", params={"state": params["state"]})
    assert back.status_code == 302
    assert back.headers["location"] == "/AzureADB2C/Account/SignedOut"


def test_signed_out_callback_with_bad_state_goes_home(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    forged = sign_payload("another-secret", SIGN_OUT_STATE_SALT, {"redirect_uri": "/admin"})
    back = client.get("/signout-callback-oidc", params={"state": forged})
    assert back.status_code == 302
    assert back.headers["location"] == "/"


def test_protected_page_challenges_anonymous_users(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config()), follow_redirects=False)
    r = client.get("/")

    assert r.status_code == 302
    assert r.headers["location"].startswith(
        "https://contoso.b2clogin.com/tfp/contoso.onmicrosoft.com/B2C_1_susi/oauth2/v2.0/authorize?"
    )


def test_callback_with_unusable_signing_key_goes_to_error_page(monkeypatch, make_config, fake_discovery) -> None:
    app = create_app(make_config())
    r, _loc, params = _start_sign_in(TestClient(app, follow_redirects=False))
    correlation = _set_cookie_value(r, CORRELATION_COOKIE)
    id_token = jwt.encode({"sub": "user-1"}, "x" * 32, algorithm="HS256", headers={"kid": "key-1"})
    monkeypatch.setattr("b2cauth.auth.oidc.get_jwks", lambda _uri: {"keys": [{"kid": "key-1", "kty": "RSA"}]})

    with patch("b2cauth.auth.oidc.exchange_code_for_tokens", return_value={"id_token": id_token}):
        cb = TestClient(app, follow_redirects=False).get(
            "/signin-oidc",
            params={"code": "auth-code", "state": params["state"]},
            headers={"Cookie": f"{CORRELATION_COOKIE}={correlation}"},
        )

    assert cb.status_code == 302
    assert cb.headers["location"] == "/AzureADB2C/Account/Error"
    assert "Max-Age=0" in _set_cookie_header(cb, CORRELATION_COOKIE)
    assert _set_cookie_value(cb, SESSION_COOKIE) is None


def test_callback_without_session_secret_is_a_json_500(make_config, fake_discovery) -> None:
    client = TestClient(create_app(make_config(session_secret=None)), follow_redirects=False)
    cb = client.get("/signin-oidc", params={"code": "auth-code", "state": "x"})

    assert cb.status_code == 500
    assert "AUTH_SESSION_SECRET" in cb.json()["detail"]
