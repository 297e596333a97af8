"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Header, Request
from fastapi.responses import JSONResponse

from tasko_service.routers.validation import authenticate, get_task_manager, parse_json_body

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /tasks: create task
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(
    request: Request,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Post a new task."""
    identity = authenticate(authorization)
    data = parse_json_body(await request.body())
    result = get_task_manager().create_task(identity, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# Listing endpoints (MUST be before /tasks/{task_id} routes)
# ---------------------------------------------------------------------------


@router.get("/tasks/client")
async def list_client_tasks(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    """Tasks posted by the calling client."""
    identity = authenticate(authorization)
    return {"tasks": get_task_manager().list_client_tasks(identity)}


@router.get("/tasks/available")
async def list_available_tasks(
    request: Request,
    authorization: str | None = Header(default=None),
) -> dict[str, Any]:
    """Open tasks near the calling worker, plus remote tasks."""
    identity = authenticate(authorization)
    tasks = get_task_manager().list_available_tasks(
        identity,
        lat=request.query_params.get("lat"),
        lng=request.query_params.get("lng"),
        radius_km=request.query_params.get("radius"),
    )
    return {"tasks": tasks}


@router.get("/tasks/worker")
async def list_worker_tasks(authorization: str | None = Header(default=None)) -> dict[str, Any]:
    """The calling worker's tasks plus every open task."""
    identity = authenticate(authorization)
    return {"tasks": get_task_manager().list_worker_tasks(identity)}


# ---------------------------------------------------------------------------
# Lifecycle actions
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/accept")
async def accept_task(
    task_id: str,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Claim an open task."""
    identity = authenticate(authorization)
    result = get_task_manager().accept_task(identity, task_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/deposit")
async def deposit_escrow(
    task_id: str,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Deposit escrow for an assigned task."""
    identity = authenticate(authorization)
    result = await get_task_manager().deposit_escrow(identity, task_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/start")
async def start_task(
    task_id: str,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Start a funded task."""
    identity = authenticate(authorization)
    result = get_task_manager().start_task(identity, task_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/complete")
async def complete_task(
    task_id: str,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Mark an in-progress task completed."""
    identity = authenticate(authorization)
    result = get_task_manager().complete_task(identity, task_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/review")
async def review_task(
    task_id: str,
    request: Request,
    authorization: str | None = Header(default=None),
) -> JSONResponse:
    """Rate the worker of a completed task."""
    identity = authenticate(authorization)
    data = parse_json_body(await request.body())
    result = get_task_manager().review_task(identity, task_id, data)
    return JSONResponse(status_code=200, content=result)
