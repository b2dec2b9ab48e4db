from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

DEFAULT_INSTANCE = "https://login.microsoftonline.com/tfp/"
DEFAULT_CALLBACK_PATH = "/signin-oidc"
DEFAULT_SIGNED_OUT_CALLBACK_PATH = "/signout-callback-oidc"
DEFAULT_COOKIE_TTL_SECONDS = 14 * 24 * 3600


@dataclass(frozen=True)
class SchemeMapping:
    """One virtual scheme and the two concrete schemes that implement it."""

    virtual_scheme: str
    openid_connect_scheme: str
    cookie_scheme: str


@dataclass
class B2COptions:
    """User-facing options for one virtual B2C scheme."""

    instance: str = DEFAULT_INSTANCE
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    domain: Optional[str] = None  # e.g. contoso.onmicrosoft.com
    sign_up_sign_in_policy_id: Optional[str] = None
    reset_password_policy_id: Optional[str] = None
    edit_profile_policy_id: Optional[str] = None

    callback_path: str = DEFAULT_CALLBACK_PATH
    signed_out_callback_path: str = DEFAULT_SIGNED_OUT_CALLBACK_PATH
    response_type: str = "code"
    scopes: List[str] = field(default_factory=lambda: ["openid", "profile"])
    public_base_url: Optional[str] = None  # Falls back to the request's base URL

    # Cookie side
    cookie_name: Optional[str] = None  # default: .b2c.<cookie scheme>
    cookie_path: str = "/"
    expire_time_span: int = DEFAULT_COOKIE_TTL_SECONDS
    cookie_secure: bool = False
    session_secret: Optional[str] = None

    @property
    def default_policy(self) -> Optional[str]:
        return self.sign_up_sign_in_policy_id

    @property
    def authority(self) -> Optional[str]:
        if not self.domain or not self.sign_up_sign_in_policy_id:
            return None
        return f"{self.instance.rstrip('/')}/{self.domain}/{self.sign_up_sign_in_policy_id}/v2.0"


@dataclass
class OpenIdConnectOptions:
    authority: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    response_type: str = "code"
    callback_path: str = DEFAULT_CALLBACK_PATH
    signed_out_callback_path: str = DEFAULT_SIGNED_OUT_CALLBACK_PATH
    scopes: List[str] = field(default_factory=lambda: ["openid"])
    sign_in_scheme: Optional[str] = None
    use_token_lifetime: bool = False
    name_claim_type: str = "name"
    public_base_url: Optional[str] = None
    state_secret: Optional[str] = None  # Signs the correlation cookie / sign-out state
    correlation_ttl_seconds: int = 15 * 60
    cookie_secure: bool = False

    # B2C policies
    default_policy: Optional[str] = None
    reset_password_policy_id: Optional[str] = None
    edit_profile_policy_id: Optional[str] = None

    # Where remote failures land
    reset_password_path: Optional[str] = None
    error_path: str = "/"

    def authority_for(self, policy: Optional[str]) -> Optional[str]:
        """
        Authority for a specific B2C policy (user flow).

        B2C encodes the policy in the authority path, so switching to the password-reset or
        profile-edit flow means swapping the default policy segment.
        """
        if not self.authority or not policy or not self.default_policy:
            return self.authority
        if policy.lower() == self.default_policy.lower():
            return self.authority
        pattern = re.compile("/" + re.escape(self.default_policy) + "/", re.IGNORECASE)
        return pattern.sub(lambda _m: f"/{policy}/", self.authority, count=1)


@dataclass
class CookieOptions:
    cookie_name: Optional[str] = None
    cookie_path: str = "/"
    expire_time_span: int = DEFAULT_COOKIE_TTL_SECONDS
    cookie_secure: bool = False
    session_secret: Optional[str] = None
    same_site: str = "lax"
    login_path: Optional[str] = None
    logout_path: Optional[str] = None
    access_denied_path: Optional[str] = None
    return_url_parameter: str = "ReturnUrl"


@dataclass
class VirtualSchemeOptions:
    """Per-action forwarding targets; unset actions fall back to `default`."""

    default: Optional[str] = None
    authenticate: Optional[str] = None
    challenge: Optional[str] = None
    forbid: Optional[str] = None
    sign_in: Optional[str] = None
    sign_out: Optional[str] = None

    def target_for(self, action: str) -> Optional[str]:
        return getattr(self, action, None) or self.default


@dataclass(frozen=True)
class AuthUser:
    """Signed-in user as persisted in the session cookie (no tokens)."""

    scheme: str
    subject: str
    name: Optional[str] = None
    email: Optional[str] = None
    policy: Optional[str] = None


@dataclass
class AuthProperties:
    redirect_uri: Optional[str] = None
    items: Dict[str, Any] = field(default_factory=dict)
    expires_in: Optional[int] = None  # seconds; overrides the cookie lifetime when set


@dataclass(frozen=True)
class AuthenticateResult:
    scheme: Optional[str]
    user: Optional[AuthUser] = None
    failure: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.user is not None

    @classmethod
    def success(cls, scheme: str, user: AuthUser) -> "AuthenticateResult":
        return cls(scheme=scheme, user=user)

    @classmethod
    def no_result(cls, scheme: Optional[str]) -> "AuthenticateResult":
        return cls(scheme=scheme)

    @classmethod
    def fail(cls, scheme: Optional[str], failure: str) -> "AuthenticateResult":
        return cls(scheme=scheme, failure=failure)
