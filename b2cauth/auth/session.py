from __future__ import annotations

import json
import logging
import time
from dataclasses import asdict
from typing import Any, Dict, Optional

from itsdangerous import BadSignature, BadTimeSignature, URLSafeTimedSerializer

from b2cauth.auth.models import AuthUser, CookieOptions

logger = logging.getLogger(__name__)

SESSION_SALT = "b2cauth-session-v1"


def _serializer(secret: Optional[str], salt: str) -> Optional[URLSafeTimedSerializer]:
    if not secret:
        return None
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


def sign_payload(secret: Optional[str], salt: str, payload: Dict[str, Any]) -> Optional[str]:
    s = _serializer(secret, salt)
    if s is None:
        return None
    return s.dumps(json.dumps(payload, separators=(",", ":"), sort_keys=True))


def unsign_payload(secret: Optional[str], salt: str, value: Optional[str], max_age: int) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    s = _serializer(secret, salt)
    if s is None:
        return None
    try:
        data = json.loads(s.loads(value, max_age=max_age))
    except (BadSignature, BadTimeSignature, ValueError) as e:
        logger.debug("Rejected signed payload (salt=%s): %s", salt, type(e).__name__)
        return None
    return data if isinstance(data, dict) else None


def encode_user(options: CookieOptions, user: AuthUser, *, expires_in: Optional[int] = None) -> Optional[str]:
    payload: Dict[str, Any] = asdict(user)
    if expires_in is not None:
        payload["exp"] = int(time.time()) + int(expires_in)
    # Keep cookie small and non-sensitive (no tokens).
    return sign_payload(options.session_secret, SESSION_SALT, payload)


def decode_user(options: CookieOptions, value: Optional[str]) -> Optional[AuthUser]:
    data = unsign_payload(options.session_secret, SESSION_SALT, value, options.expire_time_span)
    if data is None:
        return None
    exp = data.get("exp")
    if exp is not None and float(exp) <= time.time():
        return None
    scheme = str(data.get("scheme") or "").strip()
    subject = str(data.get("subject") or "").strip()
    if not scheme or not subject:
        return None
    return AuthUser(
        scheme=scheme,
        subject=subject,
        name=str(data["name"]) if data.get("name") else None,
        email=str(data["email"]) if data.get("email") else None,
        policy=str(data["policy"]) if data.get("policy") else None,
    )


def session_cookie_kwargs(options: CookieOptions, value: str, *, max_age: Optional[int] = None) -> dict:
    return {
        "key": options.cookie_name,
        "value": value,
        "max_age": options.expire_time_span if max_age is None else max_age,
        "httponly": True,
        "secure": options.cookie_secure,
        "samesite": options.same_site,
        "path": options.cookie_path,
    }


def clear_session_cookie_kwargs(options: CookieOptions) -> dict:
    return session_cookie_kwargs(options, "", max_age=0)
