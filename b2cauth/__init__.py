"""Azure AD B2C authentication for FastAPI applications."""
