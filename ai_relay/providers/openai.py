"""OpenAI API provider adapter."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

import httpx
from fastapi import Response
from fastapi.responses import JSONResponse

from .. import upstream
from ..config import Settings
from ..errors import UpstreamError
from ..media import image_file
from ..normalize import ChatParams, ImageEditParams, SpeechParams, TranscriptionParams

logger = logging.getLogger("ai-relay.providers.openai")


class OpenAIProvider:
    """Adapter for the OpenAI chat, audio and image routes."""

    CHAT_PATH = "/chat/completions"
    SPEECH_PATH = "/audio/speech"
    TRANSCRIPTION_PATH = "/audio/transcriptions"
    IMAGE_EDIT_PATH = "/images/edits"

    @staticmethod
    def _auth_headers(settings: Settings) -> Dict[str, str]:
        return {"Authorization": f"Bearer {settings.openai_api_key}"}

    @staticmethod
    def build_chat_payload(params: ChatParams, settings: Settings) -> Dict[str, Any]:
        return {
            **params.options,
            "messages": [*settings.system_messages, *params.messages],
            "stream": True,
        }

    @staticmethod
    def build_speech_payload(params: SpeechParams) -> Dict[str, Any]:
        return {
            "model": params.model,
            "voice": params.voice,
            "input": params.text,
            "format": params.format,
        }

    @staticmethod
    async def chat(params: ChatParams, settings: Settings) -> Response:
        headers = OpenAIProvider._auth_headers(settings)
        headers["Accept"] = "text/event-stream"
        payload = OpenAIProvider.build_chat_payload(params, settings)
        logger.info(
            "proxying chat request",
            extra={"model": payload.get("model"), "messages": len(payload["messages"])},
        )
        return await upstream.relay_stream(
            settings,
            "POST",
            settings.openai_base_url + OpenAIProvider.CHAT_PATH,
            headers=headers,
            json=payload,
            default_content_type="text/event-stream",
            cors_headers=settings.cors_headers,
        )

    @staticmethod
    async def speech(params: SpeechParams, settings: Settings) -> Response:
        headers = OpenAIProvider._auth_headers(settings)
        headers["Accept"] = "audio/mpeg"
        logger.info("proxying speech request", extra={"model": params.model, "voice": params.voice})
        return await upstream.relay_stream(
            settings,
            "POST",
            settings.openai_base_url + OpenAIProvider.SPEECH_PATH,
            headers=headers,
            json=OpenAIProvider.build_speech_payload(params),
            default_content_type="audio/mpeg",
            cors_headers=settings.cors_headers,
        )

    @staticmethod
    async def transcription(params: TranscriptionParams, settings: Settings) -> Response:
        headers = OpenAIProvider._auth_headers(settings)
        data = {"model": params.model, **params.options}
        logger.info("proxying transcription request", extra={"model": params.model})
        return await upstream.relay_stream(
            settings,
            "POST",
            settings.openai_base_url + OpenAIProvider.TRANSCRIPTION_PATH,
            headers=headers,
            data=data,
            files={"file": params.file},
            default_content_type="application/json",
            cors_headers=settings.cors_headers,
        )

    @staticmethod
    async def image_edit(params: ImageEditParams, settings: Settings) -> Response:
        headers = OpenAIProvider._auth_headers(settings)

        if params.image_url:
            fetched = await upstream.fetch_bytes(settings, params.image_url)
            image = image_file(fetched.content, "image", fetched.headers.get("content-type"))
        else:
            image = params.image

        data = {"model": params.model, "prompt": params.prompt}
        if params.size is not None:
            data["size"] = params.size

        logger.info("proxying image edit request", extra={"model": params.model, "remote_image": bool(params.image_url)})
        response = await upstream.send(
            settings,
            "POST",
            settings.openai_base_url + OpenAIProvider.IMAGE_EDIT_PATH,
            headers=headers,
            data=data,
            files={"image": image, "mask": params.mask},
        )
        return OpenAIProvider.shape_image_response(response, settings)

    @staticmethod
    def shape_image_response(response: httpx.Response, settings: Settings) -> Response:
        """Reduce an images API answer to ``imageBase64`` or ``imageUrl``."""
        text = response.text
        if not response.is_success:
            logger.warning(f"OpenAI image edit error: {response.status_code}")
            raise UpstreamError(text or "Image edit failed.", status_code=response.status_code)

        try:
            payload = json.loads(text)
        except ValueError:
            logger.warning("OpenAI image edit returned a non-JSON body")
            return Response(
                content=text,
                status_code=502,
                headers=settings.cors_headers,
                media_type=response.headers.get("content-type") or "text/plain",
            )

        first: Any = None
        if isinstance(payload, dict) and isinstance(payload.get("data"), list) and payload["data"]:
            first = payload["data"][0]

        if isinstance(first, dict) and first.get("b64_json"):
            body: Any = {"imageBase64": f"data:image/png;base64,{first['b64_json']}"}
        elif isinstance(first, dict) and first.get("url"):
            body = {"imageUrl": first["url"]}
        else:
            body = payload
        return JSONResponse(content=body, status_code=response.status_code, headers=settings.cors_headers)
