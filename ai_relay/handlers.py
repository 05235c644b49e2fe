"""Stage lists for each endpoint: guard, normalize, invoke, relay."""

from __future__ import annotations

from fastapi import Response
from fastapi.responses import JSONResponse

from .auth import require_shared_secret, require_user_token
from .errors import misconfigured
from .media import to_data_url
from .normalize import (
    normalize_chat,
    normalize_image_edit,
    normalize_speech,
    normalize_transcription,
    normalize_upload,
)
from .pipeline import Pipeline, RequestContext
from .providers import OpenAIProvider, SupabaseProvider


async def require_openai_key(ctx: RequestContext) -> None:
    if not ctx.settings.openai_api_key:
        raise misconfigured("OPENAI_API_KEY")


async def require_supabase(ctx: RequestContext) -> None:
    SupabaseProvider.ensure_configured(ctx.settings)


async def invoke_chat(ctx: RequestContext) -> Response:
    return await OpenAIProvider.chat(ctx.params, ctx.settings)


async def invoke_speech(ctx: RequestContext) -> Response:
    return await OpenAIProvider.speech(ctx.params, ctx.settings)


async def invoke_transcription(ctx: RequestContext) -> Response:
    return await OpenAIProvider.transcription(ctx.params, ctx.settings)


async def invoke_image_edit(ctx: RequestContext) -> Response:
    return await OpenAIProvider.image_edit(ctx.params, ctx.settings)


async def respond_upload(ctx: RequestContext) -> Response:
    return JSONResponse(
        content={"imageUrl": to_data_url(ctx.params.base64)},
        headers=ctx.settings.cors_headers,
    )


async def invoke_delete_account(ctx: RequestContext) -> Response:
    return await SupabaseProvider.delete_account(ctx.settings, ctx.user_token)


chat_pipeline = Pipeline("/chat", [require_shared_secret, require_openai_key, normalize_chat, invoke_chat])
speech_pipeline = Pipeline("/tts", [require_shared_secret, require_openai_key, normalize_speech, invoke_speech])
transcription_pipeline = Pipeline(
    "/stt", [require_shared_secret, require_openai_key, normalize_transcription, invoke_transcription]
)
image_edit_pipeline = Pipeline(
    "/image-edit", [require_shared_secret, require_openai_key, normalize_image_edit, invoke_image_edit]
)
upload_pipeline = Pipeline("/upload", [require_shared_secret, normalize_upload, respond_upload])
delete_account_pipeline = Pipeline("/delete-account", [require_supabase, require_user_token, invoke_delete_account])
