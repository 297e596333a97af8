"""Registration, login and profile endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from tasko_service.routers.validation import authenticate, get_user_manager, parse_json_body

router = APIRouter(prefix="/auth")


@router.post("/register", status_code=201)
async def register(request: Request) -> JSONResponse:
    """Create an account and return a bearer token."""
    data = parse_json_body(await request.body())
    result = get_user_manager().register(data)
    return JSONResponse(status_code=201, content=result)


@router.post("/login")
async def login(request: Request) -> dict[str, Any]:
    """Exchange credentials for a bearer token."""
    data = parse_json_body(await request.body())
    return get_user_manager().login(data)


@router.get("/me")
async def me(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    """Return the caller's profile."""
    identity = authenticate(authorization)
    return get_user_manager().get_profile(identity)


@router.put("/profile")
async def update_profile(
    request: Request,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Update the caller's name, phone, skills, availability or bio."""
    identity = authenticate(authorization)
    data = parse_json_body(await request.body())
    return get_user_manager().update_profile(identity, data)


@router.put("/location")
async def update_location(
    request: Request,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Update the caller's home location."""
    identity = authenticate(authorization)
    data = parse_json_body(await request.body())
    return get_user_manager().update_location(identity, data)
