"""Administration endpoints, guarded by the X-Admin-Key header."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header

from tasko_service.routers.validation import (
    get_task_manager,
    get_user_manager,
    require_admin_key,
)

router = APIRouter(prefix="/admin")


@router.get("/users")
async def list_users(x_admin_key: str | None = Header(default=None)) -> dict[str, Any]:
    """List every user."""
    require_admin_key(x_admin_key)
    return {"users": get_user_manager().list_users()}


@router.post("/users/{user_id}/verify")
async def verify_user(
    user_id: str,
    x_admin_key: str | None = Header(default=None),
) -> dict[str, Any]:
    """Mark a user verified."""
    require_admin_key(x_admin_key)
    return {"user": get_user_manager().verify_user(user_id)}


@router.get("/tasks")
async def list_all_tasks(x_admin_key: str | None = Header(default=None)) -> dict[str, Any]:
    """List every task."""
    require_admin_key(x_admin_key)
    return {"tasks": get_task_manager().list_all_tasks()}


@router.get("/payouts")
async def list_payouts(x_admin_key: str | None = Header(default=None)) -> dict[str, Any]:
    """Pending worker payouts for completed tasks."""
    require_admin_key(x_admin_key)
    return {"payouts": get_task_manager().list_payouts()}
