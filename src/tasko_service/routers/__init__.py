"""API routers."""

from tasko_service.routers import admin, auth, health, tasks

__all__ = ["admin", "auth", "health", "tasks"]
