"""Inbound request parsing and validation, one normalizer per endpoint."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from fastapi import Request
from pydantic import BaseModel, Field
from starlette.datastructures import UploadFile

from .config import Settings
from .errors import InvalidInput
from .media import decode_image
from .pipeline import RequestContext

logger = logging.getLogger("ai-relay.normalize")

CREDENTIAL_FIELDS = frozenset({"apiKey", "openaiApiKey", "api_key", "openai_api_key"})
TRANSCRIPTION_OPTIONS = ("language", "prompt", "temperature", "response_format")
UPLOAD_FIELDS = ("base64", "imageBase64", "image", "data")
DEFAULT_AUDIO_FILENAME = "audio.m4a"

FileTuple = Tuple[str, bytes, str]


class ChatParams(BaseModel):
    messages: List[Any] = Field(default_factory=list)
    options: Dict[str, Any] = Field(default_factory=dict, description="Caller fields forwarded as-is")


class SpeechParams(BaseModel):
    text: str
    voice: str
    model: str
    format: str


class TranscriptionParams(BaseModel):
    file: FileTuple
    model: str
    options: Dict[str, str] = Field(default_factory=dict)


class ImageEditParams(BaseModel):
    prompt: str
    model: str
    image_url: Optional[str] = None
    image: Optional[FileTuple] = Field(default=None, description="Inline image, unused when image_url is set")
    mask: FileTuple
    size: Optional[str] = None


class UploadParams(BaseModel):
    base64: str


async def _json_object(request: Request) -> Dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        raise InvalidInput("Invalid JSON body.")
    if body is None:
        return {}
    if not isinstance(body, dict):
        raise InvalidInput("Invalid JSON body.")
    return body


def _non_empty_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _option(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    return str(value)


def parse_chat(body: Dict[str, Any]) -> ChatParams:
    raw_messages = body.get("messages")
    messages = list(raw_messages) if isinstance(raw_messages, list) else []
    options = {
        key: value
        for key, value in body.items()
        if key != "messages" and key not in CREDENTIAL_FIELDS
    }
    return ChatParams(messages=messages, options=options)


def parse_speech(body: Dict[str, Any], settings: Settings) -> SpeechParams:
    text = body.get("text")
    if not isinstance(text, str):
        text = body.get("input")
    if not isinstance(text, str):
        text = ""
    if not text.strip():
        raise InvalidInput("Missing text.")

    return SpeechParams(
        text=text,
        voice=_option(body.get("voice"), settings.default_voice),
        model=_option(body.get("model"), settings.default_speech_model),
        format=_option(body.get("format"), settings.default_speech_format),
    )


def parse_image_edit(body: Dict[str, Any], settings: Settings) -> ImageEditParams:
    prompt = _non_empty_str(body.get("prompt"))
    if prompt is None:
        raise InvalidInput("Missing prompt.")

    image_url = _non_empty_str(body.get("imageUrl"))
    image_base64 = _non_empty_str(body.get("imageBase64"))
    if image_url is None and image_base64 is None:
        raise InvalidInput("Missing imageUrl or imageBase64.")

    mask_base64 = _non_empty_str(body.get("maskBase64"))
    if mask_base64 is None:
        raise InvalidInput("Missing maskBase64.")

    image = None
    if image_url is None:
        try:
            image = decode_image(image_base64, "image")
        except ValueError:
            raise InvalidInput("Invalid imageBase64.")
    try:
        mask = decode_image(mask_base64, "mask")
    except ValueError:
        raise InvalidInput("Invalid maskBase64.")

    size = body.get("size")
    return ImageEditParams(
        prompt=prompt,
        model=_option(body.get("model"), settings.default_image_model),
        image_url=image_url.strip() if image_url else None,
        image=image,
        mask=mask,
        size=size if isinstance(size, str) else None,
    )


async def _read_form(request: Request):
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" not in content_type:
        raise InvalidInput("Expected multipart/form-data.")
    try:
        return await request.form()
    except Exception as exc:
        logger.info(f"rejecting malformed form data: {exc}")
        raise InvalidInput("Invalid form data.") from exc


async def parse_transcription(request: Request, settings: Settings) -> TranscriptionParams:
    form = await _read_form(request)
    try:
        upload = form.get("file")
        if not isinstance(upload, UploadFile):
            raise InvalidInput("Missing audio file.")

        content = await upload.read()
        filename = upload.filename or DEFAULT_AUDIO_FILENAME
        content_type = upload.content_type or "application/octet-stream"

        model = str(form.get("model") or "").strip() or settings.default_transcription_model
        options = {}
        for name in TRANSCRIPTION_OPTIONS:
            value = form.get(name)
            if value and not isinstance(value, UploadFile):
                options[name] = str(value)
    finally:
        await form.close()

    return TranscriptionParams(file=(filename, content, content_type), model=model, options=options)


def _upload_field(body: Dict[str, Any]) -> Optional[str]:
    return next((body[name] for name in UPLOAD_FIELDS if _non_empty_str(body.get(name))), None)


async def parse_upload(request: Request) -> UploadParams:
    content_type = request.headers.get("content-type", "")
    value: Any = None

    if "application/json" in content_type:
        value = _upload_field(await _json_object(request))
    elif "multipart/form-data" in content_type:
        form = await _read_form(request)
        try:
            for name in UPLOAD_FIELDS:
                field = form.get(name)
                if isinstance(field, UploadFile):
                    field = (await field.read()).decode("utf-8", errors="replace")
                if _non_empty_str(field):
                    value = field
                    break
        finally:
            await form.close()
    else:
        raw = await request.body()
        value = raw.decode("utf-8", errors="replace")
        # Browsers post JSON strings as text/plain; unwrap quoted strings and objects.
        if value.strip().startswith(('"', "{")):
            try:
                decoded = json.loads(value)
            except ValueError:
                decoded = None
            if isinstance(decoded, str):
                value = decoded
            elif isinstance(decoded, dict):
                value = _upload_field(decoded)

    if not _non_empty_str(value):
        raise InvalidInput("Missing base64.")
    return UploadParams(base64=value.strip())


async def normalize_chat(ctx: RequestContext) -> None:
    ctx.params = parse_chat(await _json_object(ctx.request))


async def normalize_speech(ctx: RequestContext) -> None:
    ctx.params = parse_speech(await _json_object(ctx.request), ctx.settings)


async def normalize_transcription(ctx: RequestContext) -> None:
    ctx.params = await parse_transcription(ctx.request, ctx.settings)


async def normalize_image_edit(ctx: RequestContext) -> None:
    ctx.params = parse_image_edit(await _json_object(ctx.request), ctx.settings)


async def normalize_upload(ctx: RequestContext) -> None:
    ctx.params = await parse_upload(ctx.request)
