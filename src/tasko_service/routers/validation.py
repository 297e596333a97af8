"""Shared request validation helpers for Tasko routers."""

from __future__ import annotations

import hmac
import json
from typing import TYPE_CHECKING, Any

from tasko_service.core.exceptions import ServiceError
from tasko_service.core.state import get_app_state

if TYPE_CHECKING:
    from tasko_service.services.task_manager import TaskManager
    from tasko_service.services.token_service import Identity
    from tasko_service.services.user_manager import UserManager


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ServiceError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ServiceError(
            "INVALID_JSON",
            "Request body is not valid JSON",
            400,
            {},
        ) from exc

    if not isinstance(data, dict):
        raise ServiceError(
            "INVALID_JSON",
            "Request body must be a JSON object",
            400,
            {},
        )

    return data


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the bearer token from an Authorization header."""
    if authorization is None:
        raise ServiceError(
            "UNAUTHORIZED",
            "Missing Authorization header",
            401,
            {},
        )

    if not authorization.startswith("Bearer "):
        raise ServiceError(
            "UNAUTHORIZED",
            "Authorization header must use Bearer scheme",
            401,
            {},
        )

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise ServiceError(
            "UNAUTHORIZED",
            "Bearer token must not be empty",
            401,
            {},
        )

    return token


def get_user_manager() -> UserManager:
    state = get_app_state()
    if state.user_manager is None:
        msg = "UserManager not initialized"
        raise RuntimeError(msg)
    return state.user_manager


def get_task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


def authenticate(authorization: str | None) -> Identity:
    """Resolve the caller from the Authorization header."""
    token = extract_bearer_token(authorization)
    return get_user_manager().authenticate(token)


def require_admin_key(admin_key: str | None) -> None:
    """Check the X-Admin-Key header against the configured key."""
    state = get_app_state()
    expected = state.admin_api_key
    if expected is None:
        msg = "Admin API key not initialized"
        raise RuntimeError(msg)
    if admin_key is None or not hmac.compare_digest(admin_key.encode(), expected.encode()):
        raise ServiceError(
            "FORBIDDEN",
            "Admin key missing or invalid",
            403,
            {},
        )
