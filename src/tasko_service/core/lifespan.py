"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from tasko_service.clients.payment_gateway import PaymentGateway
from tasko_service.config import get_settings
from tasko_service.core.state import init_app_state
from tasko_service.logging import get_logger, setup_logging
from tasko_service.services.password_hasher import PasswordHasher
from tasko_service.services.task_manager import TaskManager
from tasko_service.services.task_store import TaskStore
from tasko_service.services.token_service import TokenService
from tasko_service.services.user_manager import UserManager

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db_path = settings.database.path
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    # Initialize PaymentGateway (mock escrow deposits)
    payment_gateway = PaymentGateway(transaction_prefix=settings.payments.transaction_prefix)
    state.payment_gateway = payment_gateway

    # Initialize TokenService (HS256 bearer tokens)
    token_service = TokenService(
        secret=settings.auth.jwt_secret,
        ttl_seconds=settings.auth.token_ttl_seconds,
    )
    state.token_service = token_service

    # One store shared by both managers so transactions span tasks and users
    store = TaskStore(db_path=db_path)

    user_manager = UserManager(
        store=store,
        password_hasher=PasswordHasher(),
        token_service=token_service,
        min_password_length=settings.auth.min_password_length,
    )
    state.user_manager = user_manager

    task_manager = TaskManager(
        store=store,
        payment_gateway=payment_gateway,
        commission_rate=settings.tasks.commission_rate,
        available_radius_km=settings.tasks.available_radius_km,
        max_available_results=settings.tasks.max_available_results,
        max_comment_length=settings.tasks.max_comment_length,
    )
    state.task_manager = task_manager

    state.admin_api_key = settings.admin.api_key

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    # Close task manager (closes SQLite database)
    task_manager.close()

    await payment_gateway.close()
