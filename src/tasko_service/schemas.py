"""Pydantic request/response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    total_users: int
    tasks_by_status: dict[str, int]


class ErrorResponse(BaseModel):
    """Standard error response model."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]


class ProfileUpdate(BaseModel):
    """
    Profile fields a user may change about themselves.

    Credentials, role and reputation fields are not part of this command;
    sending them is a validation error.
    """

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    name: str | None = Field(default=None, min_length=1, max_length=200)
    phone: str | None = Field(default=None, min_length=1, max_length=50)
    skills: list[str] | None = Field(default=None, max_length=50)
    availability: str | None = Field(default=None, min_length=1, max_length=50)
    bio: str | None = Field(default=None, max_length=2000)


class LocationUpdate(BaseModel):
    """A user's home location."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)
    address: str = Field(min_length=1, max_length=500)
