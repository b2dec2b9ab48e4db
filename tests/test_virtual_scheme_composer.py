from __future__ import annotations

import pytest

from b2cauth.auth.composer import (
    DEFAULT_COOKIE_SCHEME,
    DEFAULT_OPENID_CONNECT_SCHEME,
    DEFAULT_SCHEME,
    VirtualSchemeComposer,
    add_azure_ad_b2c,
)
from b2cauth.auth.errors import DuplicateSchemeError, InvalidSchemeNameError
from b2cauth.auth.forwarding import OptionsForwarder
from b2cauth.auth.handlers import CookieAuthenticationHandler, OpenIdConnectHandler, VirtualSchemeHandler
from b2cauth.auth.host import AuthenticationHost
from b2cauth.auth.models import B2COptions, CookieOptions, OpenIdConnectOptions, VirtualSchemeOptions


def _noop(_o: B2COptions) -> None:
    return None


def test_register_declares_virtual_scheme_with_default_and_challenge() -> None:
    host = AuthenticationHost()
    VirtualSchemeComposer(host).register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)

    scheme = host.get_scheme("b2c")
    assert scheme.display_name == "B2C"
    assert scheme.handler_type is VirtualSchemeHandler

    forward = host.options.get(VirtualSchemeOptions, "b2c")
    assert forward.default == "b2c-cookie"
    assert forward.challenge == "b2c-oidc"
    assert forward.target_for("authenticate") == "b2c-cookie"
    assert forward.target_for("sign_out") == "b2c-cookie"

    assert host.get_scheme("b2c-oidc").handler_type is OpenIdConnectHandler
    assert host.get_scheme("b2c-cookie").handler_type is CookieAuthenticationHandler
    assert host.registry.resolve("b2c").openid_connect_scheme == "b2c-oidc"


def test_end_to_end_oidc_options_sign_in_with_mapped_cookie_scheme() -> None:
    host = AuthenticationHost()
    VirtualSchemeComposer(host).register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)

    assert host.options.get(OpenIdConnectOptions, "b2c-oidc").sign_in_scheme == "b2c-cookie"


@pytest.mark.parametrize(
    "names",
    [
        ("b2c", "same", "same"),
        ("b2c", "b2c", "b2c-cookie"),
        ("b2c", "b2c-oidc", "b2c"),
        ("", "b2c-oidc", "b2c-cookie"),
        ("b2c", "   ", "b2c-cookie"),
    ],
)
def test_invalid_scheme_names_are_rejected(names) -> None:
    host = AuthenticationHost()
    with pytest.raises(InvalidSchemeNameError):
        VirtualSchemeComposer(host).register(*names, "B2C", _noop)
    assert len(host.registry) == 0
    assert host.schemes() == []


def test_duplicate_virtual_scheme_raises_and_changes_nothing() -> None:
    host = AuthenticationHost()
    composer = VirtualSchemeComposer(host)
    composer.register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)
    before = [s.name for s in host.schemes()]

    with pytest.raises(DuplicateSchemeError):
        composer.register("b2c", "b2c-oidc-2", "b2c-cookie-2", "B2C again", _noop)

    assert [s.name for s in host.schemes()] == before
    assert len(host.registry) == 1
    assert host.registry.resolve("b2c").cookie_scheme == "b2c-cookie"


def test_concrete_schemes_cannot_be_shared_between_virtual_schemes() -> None:
    host = AuthenticationHost()
    composer = VirtualSchemeComposer(host)
    composer.register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)

    with pytest.raises(InvalidSchemeNameError):
        composer.register("partners", "partners-oidc", "b2c-cookie", "Partners", _noop)
    assert "partners" not in host.registry

    with pytest.raises(InvalidSchemeNameError):
        composer.register("partners", "b2c", "partners-cookie", "Partners", _noop)
    assert not host.has_scheme("partners")


def test_existing_concrete_scheme_is_reused() -> None:
    host = AuthenticationHost()
    host.add_cookie("b2c-cookie", "App cookie")

    VirtualSchemeComposer(host).register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)

    assert host.get_scheme("b2c-cookie").display_name == "App cookie"
    assert host.options.get(CookieOptions, "b2c-cookie").cookie_name == ".b2c.b2c-cookie"


@pytest.mark.parametrize(
    "existing, add",
    [
        ("b2c-oidc", AuthenticationHost.add_cookie),
        ("b2c-cookie", AuthenticationHost.add_openid_connect),
    ],
)
def test_existing_scheme_of_wrong_kind_is_rejected(existing, add) -> None:
    host = AuthenticationHost()
    add(host, existing)

    with pytest.raises(InvalidSchemeNameError):
        VirtualSchemeComposer(host).register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)
    assert "b2c" not in host.registry
    assert not host.has_scheme("b2c")


def test_configure_callback_runs_lazily_once() -> None:
    host = AuthenticationHost()
    calls = []

    def _configure(o: B2COptions) -> None:
        calls.append(1)
        o.client_id = "client-123"
        o.domain = "contoso.onmicrosoft.com"
        o.sign_up_sign_in_policy_id = "B2C_1_susi"

    VirtualSchemeComposer(host).register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _configure)
    assert calls == []

    oidc_opts = host.options.get(OpenIdConnectOptions, "b2c-oidc")
    host.options.get(CookieOptions, "b2c-cookie")
    host.options.get(OpenIdConnectOptions, "b2c-oidc")

    assert calls == [1]
    assert oidc_opts.client_id == "client-123"
    assert oidc_opts.authority.endswith("/contoso.onmicrosoft.com/B2C_1_susi/v2.0")


def test_forwarder_is_attached_once_per_host() -> None:
    host = AuthenticationHost()
    VirtualSchemeComposer(host).register("b2c", "b2c-oidc", "b2c-cookie", "B2C", _noop)
    VirtualSchemeComposer(host).register("partners", "partners-oidc", "partners-cookie", "Partners", _noop)

    forwarder = host.try_add_service(OptionsForwarder, lambda: None)
    assert isinstance(forwarder, OptionsForwarder)
    assert host.options.get(OpenIdConnectOptions, "partners-oidc").sign_in_scheme == "partners-cookie"
    assert host.options.get(OpenIdConnectOptions, "b2c-oidc").sign_in_scheme == "b2c-cookie"


def test_add_azure_ad_b2c_uses_default_names() -> None:
    host = AuthenticationHost()
    mapping = add_azure_ad_b2c(host, _noop)

    assert mapping.virtual_scheme == DEFAULT_SCHEME == "AzureADB2C"
    assert mapping.openid_connect_scheme == DEFAULT_OPENID_CONNECT_SCHEME == "AzureADB2COpenID"
    assert mapping.cookie_scheme == DEFAULT_COOKIE_SCHEME == "AzureADB2CCookie"
    assert host.get_scheme(DEFAULT_SCHEME).display_name == "AzureADB2C"


def test_frozen_host_rejects_registration() -> None:
    host = AuthenticationHost()
    add_azure_ad_b2c(host, _noop)
    host.freeze()

    with pytest.raises(RuntimeError):
        VirtualSchemeComposer(host).register("late", "late-oidc", "late-cookie", "Late", _noop)
