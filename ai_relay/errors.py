"""Gateway error taxonomy, rendered as ``{"error": ...}`` by ``ai_relay.main``."""

from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, status


class GatewayError(HTTPException):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Internal server error."

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None, details: Optional[str] = None):
        super().__init__(status_code=status_code or self.status_code, detail=message or self.message)
        self.details = details


class Unauthenticated(GatewayError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Unauthorized."


class InvalidInput(GatewayError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid request."


class UpstreamUnavailable(GatewayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Upstream request failed."


class UpstreamFetchError(GatewayError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Failed to fetch image."


class UpstreamError(GatewayError):
    """Non-success answer from a buffered upstream call, detail passed through."""

    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Upstream error."


def misconfigured(name: str) -> GatewayError:
    return GatewayError(f"Missing {name}.", status_code=status.HTTP_500_INTERNAL_SERVER_ERROR)
