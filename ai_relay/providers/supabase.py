"""Supabase account deletion.

The caller's token only identifies the user (anon key + user JWT); the
deletions run with the service-role key.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

import httpx
from fastapi import status
from fastapi.responses import JSONResponse

from .. import upstream
from ..config import Settings
from ..errors import GatewayError, Unauthenticated

logger = logging.getLogger("ai-relay.providers.supabase")


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(payload, dict):
        for key in ("message", "msg", "error_description", "error"):
            if isinstance(payload.get(key), str) and payload[key]:
                return payload[key]
    return response.text or f"HTTP {response.status_code}"


class SupabaseProvider:
    USER_PATH = "/auth/v1/user"
    DELETE_DATA_RPC_PATH = "/rest/v1/rpc/delete_user_data"
    ADMIN_USERS_PATH = "/auth/v1/admin/users/{user_id}"

    @staticmethod
    def ensure_configured(settings: Settings) -> None:
        if not settings.supabase_configured:
            logger.error("Supabase settings are incomplete")
            raise GatewayError(
                "Missing Supabase environment variables.",
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            )

    @staticmethod
    def _service_headers(settings: Settings) -> Dict[str, str]:
        return {
            "apikey": settings.supabase_service_role_key,
            "Authorization": f"Bearer {settings.supabase_service_role_key}",
        }

    @staticmethod
    async def get_user(settings: Settings, user_token: str) -> Dict[str, Any]:
        response = await upstream.send(
            settings,
            "GET",
            settings.supabase_url + SupabaseProvider.USER_PATH,
            headers={
                "apikey": settings.supabase_anon_key,
                "Authorization": f"Bearer {user_token}",
            },
        )
        if not response.is_success:
            logger.warning(f"Supabase user lookup rejected: {response.status_code}")
            raise Unauthenticated()
        try:
            user = response.json()
        except ValueError:
            raise Unauthenticated()
        if not isinstance(user, dict) or not user.get("id"):
            raise Unauthenticated()
        return user

    @staticmethod
    async def delete_user_data(settings: Settings, user_id: str) -> None:
        headers = SupabaseProvider._service_headers(settings)
        headers["Content-Type"] = "application/json"
        response = await upstream.send(
            settings,
            "POST",
            settings.supabase_url + SupabaseProvider.DELETE_DATA_RPC_PATH,
            headers=headers,
            json={"p_user_id": user_id},
        )
        if not response.is_success:
            logger.warning(f"delete_user_data failed: {response.status_code}")
            raise GatewayError("Failed to delete user data.", details=_error_message(response))

    @staticmethod
    async def delete_auth_user(settings: Settings, user_id: str) -> None:
        response = await upstream.send(
            settings,
            "DELETE",
            settings.supabase_url + SupabaseProvider.ADMIN_USERS_PATH.format(user_id=user_id),
            headers=SupabaseProvider._service_headers(settings),
        )
        if not response.is_success:
            logger.warning(f"auth user deletion failed: {response.status_code}")
            raise GatewayError("Failed to delete auth user.", details=_error_message(response))

    @staticmethod
    async def delete_account(settings: Settings, user_token: str) -> JSONResponse:
        user = await SupabaseProvider.get_user(settings, user_token)
        user_id = str(user["id"])

        await SupabaseProvider.delete_user_data(settings, user_id)
        await SupabaseProvider.delete_auth_user(settings, user_id)

        logger.info("account deleted", extra={"user": user_id})
        return JSONResponse(content={"success": True}, headers=settings.cors_headers)
