"""Service layer components."""

from tasko_service.services.password_hasher import PasswordHasher
from tasko_service.services.task_manager import TaskManager
from tasko_service.services.task_store import TaskStore
from tasko_service.services.token_service import Identity, TokenService
from tasko_service.services.user_manager import UserManager

__all__ = [
    "Identity",
    "PasswordHasher",
    "TaskManager",
    "TaskStore",
    "TokenService",
    "UserManager",
]
