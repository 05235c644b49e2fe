"""FastAPI relay that fronts OpenAI and Supabase for client apps."""

from .main import app, create_app

__all__ = ["app", "create_app"]
