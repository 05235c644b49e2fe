from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, get_settings
from .errors import GatewayError
from .handlers import (
    chat_pipeline,
    delete_account_pipeline,
    image_edit_pipeline,
    speech_pipeline,
    transcription_pipeline,
    upload_pipeline,
)

logger = logging.getLogger("ai-relay")

_STATUS_MESSAGES = {
    status.HTTP_404_NOT_FOUND: "Not found.",
    status.HTTP_405_METHOD_NOT_ALLOWED: "Method not allowed.",
}


def app_settings(request: Request) -> Settings:
    return request.app.state.settings


def _error_response(settings: Settings, status_code: int, message: str, details: Optional[str] = None) -> JSONResponse:
    content = {"error": message}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=settings.cors_headers)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())

    app = FastAPI(title=settings.app_name)
    app.state.settings = settings

    @app.middleware("http")
    async def cors(request: Request, call_next):  # type: ignore[override]
        if request.method == "OPTIONS":
            return Response(status_code=status.HTTP_204_NO_CONTENT, headers=settings.cors_headers)
        response = await call_next(request)
        for name, value in settings.cors_headers.items():
            response.headers.setdefault(name, value)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if isinstance(exc, GatewayError):
            message = str(exc.detail)
        else:
            message = _STATUS_MESSAGES.get(exc.status_code, str(exc.detail))
        return _error_response(
            settings,
            exc.status_code,
            message,
            getattr(exc, "details", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        return _error_response(settings, status.HTTP_400_BAD_REQUEST, "Invalid request.")

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"unhandled error on {request.url.path}: {exc}", exc_info=exc)
        return _error_response(settings, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error.")

    @app.get("/healthz")
    async def health() -> dict:
        return {"status": "ok"}

    @app.post("/chat")
    async def chat(request: Request, settings: Settings = Depends(app_settings)) -> Response:
        return await chat_pipeline.run(request, settings)

    @app.post("/tts")
    async def tts(request: Request, settings: Settings = Depends(app_settings)) -> Response:
        return await speech_pipeline.run(request, settings)

    @app.post("/stt")
    async def stt(request: Request, settings: Settings = Depends(app_settings)) -> Response:
        return await transcription_pipeline.run(request, settings)

    @app.post("/image-edit")
    async def image_edit(request: Request, settings: Settings = Depends(app_settings)) -> Response:
        return await image_edit_pipeline.run(request, settings)

    @app.post("/upload")
    async def upload(request: Request, settings: Settings = Depends(app_settings)) -> Response:
        return await upload_pipeline.run(request, settings)

    @app.post("/delete-account")
    async def delete_account(request: Request, settings: Settings = Depends(app_settings)) -> Response:
        return await delete_account_pipeline.run(request, settings)

    return app


app = create_app()
