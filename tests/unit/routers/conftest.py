"""Router test fixtures: real app over a temp database and config."""

from __future__ import annotations

import os
import uuid
from typing import TYPE_CHECKING, Any

import pytest
from httpx import ASGITransport, AsyncClient

from tasko_service.app import create_app
from tasko_service.config import clear_settings_cache
from tasko_service.core.lifespan import lifespan
from tasko_service.core.state import reset_app_state

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

ADMIN_KEY = "test-admin-key"
JWT_SECRET = "test-jwt-secret-with-enough-entropy-0123456789"
PASSWORD = "hunter22"

# Nairobi CBD, a point ~2 km away and one ~40 km away
CBD = {"lat": -1.2864, "lng": 36.8172, "address": "Kenyatta Ave, Nairobi"}
WESTLANDS = {"lat": -1.2676, "lng": 36.8108, "address": "Westlands, Nairobi"}
THIKA = {"lat": -1.0333, "lng": 37.0693, "address": "Thika"}


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with a temp database."""
    db_path = tmp_path / "test.db"
    log_dir = tmp_path / "logs"
    config_content = f"""\
service:
  name: "tasko"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
auth:
  jwt_secret: "{JWT_SECRET}"
  token_ttl_seconds: 3600
  min_password_length: 6
payments:
  transaction_prefix: "mock_"
tasks:
  available_radius_km: 10
  max_available_results: 50
  commission_rate: 0.1
  max_comment_length: 200
admin:
  api_key: "{ADMIN_KEY}"
request:
  max_body_size: 1048576
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def client_token(client: AsyncClient) -> str:
    """Register a client and return their bearer token."""
    return await register_token(client, "client")


@pytest.fixture
async def worker_token(client: AsyncClient) -> str:
    """Register a worker and return their bearer token."""
    return await register_token(client, "worker")


# ---------------------------------------------------------------------------
# Auth helper functions
# ---------------------------------------------------------------------------
def auth_headers(token: str) -> dict[str, str]:
    """Authorization header for a bearer token."""
    return {"Authorization": f"Bearer {token}"}


def admin_headers() -> dict[str, str]:
    """X-Admin-Key header with the configured key."""
    return {"X-Admin-Key": ADMIN_KEY}


async def register_user(
    client: AsyncClient,
    role: str,
    *,
    name: str | None = None,
    email: str | None = None,
    password: str = PASSWORD,
    location: dict[str, Any] | None = None,
) -> Any:
    """Register a user via POST /auth/register and return the response."""
    if email is None:
        email = f"{role}-{uuid.uuid4().hex[:8]}@example.com"
    payload: dict[str, Any] = {
        "name": name or f"Test {role.title()}",
        "email": email,
        "password": password,
        "role": role,
        "phone": "+254700000000",
    }
    if location is not None:
        payload["location"] = location
    return await client.post("/auth/register", json=payload)


async def register_token(client: AsyncClient, role: str, **kwargs: Any) -> str:
    """Register a user and return only the token."""
    resp = await register_user(client, role, **kwargs)
    assert resp.status_code == 201, resp.text
    return resp.json()["token"]


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    token: str,
    *,
    title: str = "Pick up groceries",
    description: str = "Two bags from the market",
    category: str = "pickup",
    price: Any = 1000,
    deadline: str = "2030-01-01T12:00:00Z",
    location: dict[str, Any] | None = None,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    if location is None:
        location = dict(CBD)
    return await client.post(
        "/tasks",
        json={
            "title": title,
            "description": description,
            "category": category,
            "price": price,
            "deadline": deadline,
            "location": location,
        },
        headers=auth_headers(token),
    )


async def create_task_id(client: AsyncClient, token: str, **kwargs: Any) -> str:
    """Create a task and return its task_id."""
    resp = await create_task(client, token, **kwargs)
    assert resp.status_code == 201, resp.text
    return resp.json()["task_id"]


async def accept_task(client: AsyncClient, token: str, task_id: str) -> Any:
    """Accept a task via POST /tasks/{task_id}/accept."""
    return await client.post(f"/tasks/{task_id}/accept", headers=auth_headers(token))


async def deposit_escrow(client: AsyncClient, token: str, task_id: str) -> Any:
    """Deposit escrow via POST /tasks/{task_id}/deposit."""
    return await client.post(f"/tasks/{task_id}/deposit", headers=auth_headers(token))


async def start_task(client: AsyncClient, token: str, task_id: str) -> Any:
    """Start a task via POST /tasks/{task_id}/start."""
    return await client.post(f"/tasks/{task_id}/start", headers=auth_headers(token))


async def complete_task(client: AsyncClient, token: str, task_id: str) -> Any:
    """Complete a task via POST /tasks/{task_id}/complete."""
    return await client.post(f"/tasks/{task_id}/complete", headers=auth_headers(token))


async def review_task(
    client: AsyncClient,
    token: str,
    task_id: str,
    *,
    rating: Any = 5,
    comment: str | None = "Great work",
) -> Any:
    """Review a task via POST /tasks/{task_id}/review."""
    payload: dict[str, Any] = {"rating": rating}
    if comment is not None:
        payload["comment"] = comment
    return await client.post(
        f"/tasks/{task_id}/review", json=payload, headers=auth_headers(token)
    )


async def setup_task_in_progress(
    client: AsyncClient, client_token: str, worker_token: str, **kwargs: Any
) -> str:
    """Drive a new task to in-progress and return its task_id."""
    task_id = await create_task_id(client, client_token, **kwargs)
    assert (await accept_task(client, worker_token, task_id)).status_code == 200
    assert (await deposit_escrow(client, client_token, task_id)).status_code == 200
    assert (await start_task(client, worker_token, task_id)).status_code == 200
    return task_id


async def setup_completed_task(
    client: AsyncClient, client_token: str, worker_token: str, **kwargs: Any
) -> str:
    """Drive a new task to completed and return its task_id."""
    task_id = await setup_task_in_progress(client, client_token, worker_token, **kwargs)
    assert (await complete_task(client, worker_token, task_id)).status_code == 200
    return task_id
