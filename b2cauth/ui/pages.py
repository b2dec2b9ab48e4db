"""
Pre-built account pages.

Pages are listed explicitly in `ACCOUNT_PAGES` (no discovery); each entry names its route
under `ACCOUNT_ROUTE_PREFIX` and the Jinja2 template that renders it.
"""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from jinja2 import Environment, FileSystemLoader

from b2cauth.auth.forwarding import ACCOUNT_ROUTE_PREFIX

_template_dir = Path(__file__).parent / "templates"
_env = Environment(
    loader=FileSystemLoader(_template_dir),
    autoescape=True,
)


@dataclass(frozen=True)
class AccountPage:
    name: str
    route: str
    template: str
    title: str


ACCOUNT_PAGES: Dict[str, AccountPage] = {
    p.name: p
    for p in (
        AccountPage(name="SignedOut", route="/SignedOut", template="signed_out.jinja2", title="Signed out"),
        AccountPage(name="AccessDenied", route="/AccessDenied", template="access_denied.jinja2", title="Access denied"),
        AccountPage(name="Error", route="/Error", template="error.jinja2", title="Error"),
    )
}

HOME_TEMPLATE = "home.jinja2"


def page_url(name: str) -> str:
    return ACCOUNT_ROUTE_PREFIX + ACCOUNT_PAGES[name].route


def render_template(template: str, **context: Any) -> str:
    context.setdefault("home_url", "/")
    return _env.get_template(template).render(**context)


def render_page(name: str, **context: Any) -> str:
    page = ACCOUNT_PAGES[name]
    context.setdefault("title", page.title)
    return render_template(page.template, **context)
