"""HTTP application (FastAPI)."""
