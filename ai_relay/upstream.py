from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, Optional

import httpx
from fastapi.responses import StreamingResponse

from .config import Settings
from .errors import UpstreamFetchError, UpstreamUnavailable

logger = logging.getLogger("ai-relay.upstream")


def create_client(settings: Settings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.request_timeout_seconds)


def _detail(exc: httpx.HTTPError) -> str:
    return (str(exc) or "").strip() or type(exc).__name__


async def send(
    settings: Settings,
    method: str,
    url: str,
    *,
    headers: Optional[Mapping[str, str]] = None,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one buffered request; network failures become ``UpstreamUnavailable``."""
    try:
        async with create_client(settings) as client:
            response = await client.request(method, url, headers=headers, **kwargs)
    except httpx.HTTPError as exc:
        logger.warning(f"upstream request failed: {method} {url} - {_detail(exc)}")
        raise UpstreamUnavailable() from exc

    logger.info(f"upstream {method} {url} -> {response.status_code}")
    return response


async def fetch_bytes(settings: Settings, url: str) -> httpx.Response:
    try:
        async with create_client(settings) as client:
            response = await client.get(url, follow_redirects=True)
    except httpx.HTTPError as exc:
        logger.warning(f"image fetch failed: {url} - {_detail(exc)}")
        raise UpstreamFetchError() from exc

    if not response.is_success:
        logger.warning(f"image fetch returned {response.status_code}: {url}")
        raise UpstreamFetchError(status_code=response.status_code if response.status_code >= 400 else None)
    return response


class RelayResponse(StreamingResponse):
    """StreamingResponse that releases the upstream on every exit path.

    Starlette may stop iterating the body without closing it (a caller
    disconnect surfaces as ``ClientDisconnect``), so the release runs here.
    """

    def __init__(self, content: AsyncIterator[bytes], *, release: Callable[[], Awaitable[None]], **kwargs: Any):
        super().__init__(content, **kwargs)
        self._release = release

    async def __call__(self, scope, receive, send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await asyncio.shield(self._release())


async def relay_stream(
    settings: Settings,
    method: str,
    url: str,
    *,
    default_content_type: str,
    cors_headers: Mapping[str, str],
    headers: Optional[Mapping[str, str]] = None,
    **kwargs: Any,
) -> RelayResponse:
    """Forward the upstream body to the caller as it arrives.

    The client and the upstream response live in one exit stack that is
    closed when the body is exhausted, the upstream fails mid-stream, the
    caller disconnects, or opening the stream fails.
    """
    exit_stack = AsyncExitStack()
    try:
        client = await exit_stack.enter_async_context(create_client(settings))
        upstream = await exit_stack.enter_async_context(
            client.stream(method, url, headers=headers, **kwargs)
        )
    except httpx.HTTPError as exc:
        await exit_stack.aclose()
        logger.warning(f"upstream stream failed: {method} {url} - {_detail(exc)}")
        raise UpstreamUnavailable() from exc
    except BaseException:
        await exit_stack.aclose()
        raise

    logger.info(f"relaying {method} {url} -> {upstream.status_code}")
    content_type = upstream.headers.get("content-type") or default_content_type

    async def _iter_body() -> AsyncIterator[bytes]:
        try:
            async for chunk in upstream.aiter_bytes():
                if chunk:
                    yield chunk
        except httpx.HTTPError as exc:
            logger.warning(f"upstream stream interrupted: {url} - {_detail(exc)}")
        finally:
            await exit_stack.aclose()

    body = _iter_body()

    async def _release() -> None:
        await body.aclose()
        await exit_stack.aclose()

    response_headers = dict(cors_headers)
    response_headers["Content-Type"] = content_type
    return RelayResponse(
        body,
        release=_release,
        status_code=upstream.status_code,
        headers=response_headers,
    )
