from __future__ import annotations

import hmac
import logging
from typing import Mapping, Optional

from fastapi import status

from .config import Settings
from .errors import Unauthenticated
from .pipeline import RequestContext

logger = logging.getLogger("ai-relay.auth")

BEARER_PREFIX = "Bearer "


def _bearer(authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith(BEARER_PREFIX):
        return authorization[len(BEARER_PREFIX):].strip() or None
    return None


def extract_credential(headers: Mapping[str, str], token_header: str) -> Optional[str]:
    token = _bearer(headers.get("authorization"))
    if token:
        return token
    fallback = (headers.get(token_header) or "").strip()
    return fallback or None


def verify_shared_secret(headers: Mapping[str, str], settings: Settings) -> None:
    if not settings.app_shared_secret:
        logger.error("shared secret is not configured")
        raise Unauthenticated("Missing APP_SHARED_SECRET.", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)

    credential = extract_credential(headers, settings.token_header)
    if credential is None:
        raise Unauthenticated()
    if not hmac.compare_digest(credential.encode("utf-8"), settings.app_shared_secret.encode("utf-8")):
        logger.warning("shared secret mismatch")
        raise Unauthenticated()


def extract_bearer_token(headers: Mapping[str, str]) -> str:
    """End-user identity token for the account endpoints; never the shared secret."""
    token = _bearer(headers.get("authorization"))
    if token is None:
        raise Unauthenticated("Missing or invalid authorization header.")
    return token


async def require_shared_secret(ctx: RequestContext) -> None:
    verify_shared_secret(ctx.request.headers, ctx.settings)


async def require_user_token(ctx: RequestContext) -> None:
    ctx.user_token = extract_bearer_token(ctx.request.headers)
