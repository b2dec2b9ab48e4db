"""
Pytest config.

Tests import the local `b2cauth/` package from the repo root; pin the repo root on sys.path
so a global `pytest` entrypoint collects them without an editable install.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest


def _ensure_repo_root_on_syspath() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    repo_root_str = str(repo_root)
    if repo_root_str not in sys.path:
        sys.path.insert(0, repo_root_str)


_ensure_repo_root_on_syspath()

from b2cauth.auth import oidc  # noqa: E402
from b2cauth.auth.config import AuthConfig, load_auth_config  # noqa: E402

AUTHORITY = "https://contoso.b2clogin.com/tfp/contoso.onmicrosoft.com/B2C_1_susi/v2.0"
SESSION_SECRET = "test-secret-key-for-testing-purposes-only"


@pytest.fixture(autouse=True)
def _reset_caches() -> None:
    """Config and discovery documents are process-wide caches; start every test clean."""
    load_auth_config.cache_clear()
    oidc.clear_caches()
    yield
    load_auth_config.cache_clear()
    oidc.clear_caches()


@pytest.fixture
def make_config() -> Callable[..., AuthConfig]:
    def _make(**overrides: Any) -> AuthConfig:
        values: Dict[str, Any] = dict(
            instance="https://contoso.b2clogin.com/tfp/",
            client_id="client-123",
            client_secret="client-secret",
            domain="contoso.onmicrosoft.com",
            sign_up_sign_in_policy_id="B2C_1_susi",
            reset_password_policy_id="B2C_1_reset",
            edit_profile_policy_id="B2C_1_edit",
            callback_path="/signin-oidc",
            signed_out_callback_path="/signout-callback-oidc",
            scopes=["openid", "profile"],
            public_base_url="https://app.example.com",
            session_secret=SESSION_SECRET,
            session_ttl_seconds=3600,
            cookie_secure=False,
        )
        values.update(overrides)
        return AuthConfig(**values)

    return _make


def discovery_for(authority: str) -> Dict[str, Any]:
    base = authority.rsplit("/v2.0", 1)[0]
    return {
        "issuer": "https://contoso.b2clogin.com/tenant-id/v2.0/",
        "authorization_endpoint": f"{base}/oauth2/v2.0/authorize",
        "token_endpoint": f"{base}/oauth2/v2.0/token",
        "end_session_endpoint": f"{base}/oauth2/v2.0/logout",
        "jwks_uri": f"{base}/discovery/v2.0/keys",
    }


@pytest.fixture
def fake_discovery(monkeypatch: pytest.MonkeyPatch):
    """Serve discovery documents without network; records the authorities asked for."""
    calls = []

    def _fake(authority: str) -> Dict[str, Any]:
        calls.append(authority)
        return discovery_for(authority)

    monkeypatch.setattr("b2cauth.auth.oidc.get_discovery", _fake)
    return calls
