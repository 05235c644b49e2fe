from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field, validator
from pydantic_settings import BaseSettings

from .secrets import load_secret_as_dict, should_use_secret_manager

logger = logging.getLogger("ai-relay.config")

SECRET_FIELDS = (
    "openai_api_key",
    "app_shared_secret",
    "supabase_anon_key",
    "supabase_service_role_key",
)


class Settings(BaseSettings):
    app_name: str = "ai-relay"
    log_level: str = "INFO"

    openai_api_key: Optional[str] = None
    openai_base_url: str = "https://api.openai.com/v1"

    app_shared_secret: Optional[str] = None
    token_header: str = Field(default="X-App-Token", description="Fallback header carrying the shared secret")

    prompt_brain: str = ""
    prompt_tech: str = ""

    supabase_url: Optional[str] = None
    supabase_anon_key: Optional[str] = None
    supabase_service_role_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("service_role_key", "supabase_service_role_key"),
    )

    # None disables the timeout: streamed completions can run for minutes.
    request_timeout_seconds: Optional[float] = None

    default_voice: str = "onyx"
    default_speech_model: str = "tts-1"
    default_speech_format: str = "mp3"
    default_transcription_model: str = "gpt-4o-mini-transcribe"
    default_image_model: str = "gpt-image-1"

    class Config:
        env_file = ".env"
        frozen = True
        populate_by_name = True

    @validator("prompt_brain", "prompt_tech", pre=True)
    def _strip_prompt(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @validator("openai_base_url", "supabase_url")
    def _strip_trailing_slash(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        return value.rstrip("/")

    @property
    def system_messages(self) -> list[dict]:
        messages = []
        if self.prompt_brain:
            messages.append({"role": "system", "content": self.prompt_brain})
        if self.prompt_tech:
            messages.append({"role": "system", "content": self.prompt_tech})
        return messages

    @property
    def supabase_configured(self) -> bool:
        return bool(self.supabase_url and self.supabase_anon_key and self.supabase_service_role_key)

    @property
    def cors_headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": "*",
            "Access-Control-Allow-Methods": "POST, OPTIONS",
            "Access-Control-Allow-Headers": f"Content-Type, Authorization, {self.token_header}",
        }


def _secret_overrides(settings: Settings) -> dict:
    """Values for secret fields left unset after loading, pulled from Secret Manager when enabled."""
    if not should_use_secret_manager():
        return {}

    project_id = os.environ.get("GCP_PROJECT_ID")
    secret_name = os.environ.get("SECRET_BUNDLE_NAME", "ai-relay-secrets")
    logger.info("Loading secrets from Secret Manager")
    bundle = load_secret_as_dict(secret_name, project_id)

    overrides = {}
    for field in SECRET_FIELDS:
        if getattr(settings, field):
            continue
        value = bundle.get(field)
        if value:
            overrides[field] = value
    return overrides


@lru_cache()
def get_settings() -> Settings:
    settings = Settings()
    overrides = _secret_overrides(settings)
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings
