from __future__ import annotations

import base64
import os
from typing import Optional
from urllib.parse import urlencode


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def random_token(nbytes: int = 32) -> str:
    return b64url(os.urandom(nbytes))


def sanitize_return_url(return_url: Optional[str], default: str = "/") -> str:
    """
    Prevent open-redirects: only local paths like `/orders?id=1` survive.
    """
    p = (return_url or "").strip().replace("\r", "").replace("\n", "")
    if not p.startswith("/") or p.startswith("//") or p.startswith("/\\"):
        return default
    return p


def with_query(path: str, **params: Optional[str]) -> str:
    q = {k: v for k, v in params.items() if v is not None}
    if not q:
        return path
    sep = "&" if "?" in path else "?"
    return f"{path}{sep}{urlencode(q)}"
