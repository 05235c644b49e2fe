"""Upstream provider adapters."""

from .openai import OpenAIProvider
from .supabase import SupabaseProvider

__all__ = ["OpenAIProvider", "SupabaseProvider"]
