"""
Azure AD B2C authentication for FastAPI.

Design goals:
- One logical ("virtual") scheme per B2C tenant/app, backed by an OpenID Connect scheme
  (challenge) and a signed-cookie scheme (default).
- Scheme wiring happens once at startup; request-time code only reads.
- Concrete scheme options are derived lazily from the virtual scheme's options.
"""
