"""User registration, login, profile and verification logic."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from tasko_service.core.exceptions import ServiceError
from tasko_service.logging import get_logger
from tasko_service.schemas import LocationUpdate, ProfileUpdate
from tasko_service.services.geo import parse_latitude, parse_longitude
from tasko_service.services.lifecycle import USER_ROLES, VERIFIED_BADGE, grant_badge
from tasko_service.services.task_store import DuplicateUserError

if TYPE_CHECKING:
    from tasko_service.services.password_hasher import PasswordHasher
    from tasko_service.services.task_store import TaskStore
    from tasko_service.services.token_service import Identity, TokenService


def _now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def _validation_error(message: str, details: dict[str, object] | None = None) -> ServiceError:
    return ServiceError("VALIDATION_ERROR", message, 400, details or {})


def _require_string(body: dict[str, Any], field_name: str) -> str:
    value = body.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise _validation_error(
            f"Field '{field_name}' is required and must be a non-empty string",
            {"field": field_name},
        )
    return value.strip()


def user_to_public(user: dict[str, Any]) -> dict[str, Any]:
    """Convert a user row to its public representation (no credentials)."""
    location: dict[str, Any] | None = None
    if user["longitude"] is not None and user["latitude"] is not None:
        location = {
            "coordinates": [user["longitude"], user["latitude"]],
            "address": user["address"],
        }
    return {
        "user_id": user["user_id"],
        "name": user["name"],
        "email": user["email"],
        "role": user["role"],
        "phone": user["phone"],
        "location": location,
        "skills": user["skills"],
        "availability": user["availability"],
        "bio": user["bio"],
        "is_verified": user["is_verified"],
        "badges": user["badges"],
        "reliability_score": user["reliability_score"],
        "completed_tasks": user["completed_tasks"],
        "created_at": user["created_at"],
    }


class UserManager:
    """
    Identity and account management.

    Resolves bearer tokens to identities, and owns registration, login,
    profile updates and admin verification. Password hashing is delegated
    to PasswordHasher and token signing to TokenService.
    """

    def __init__(
        self,
        store: TaskStore,
        password_hasher: PasswordHasher,
        token_service: TokenService,
        min_password_length: int,
    ) -> None:
        self._store = store
        self._password_hasher = password_hasher
        self._token_service = token_service
        self._min_password_length = min_password_length
        self._logger = get_logger(__name__)

    def authenticate(self, token: str) -> Identity:
        """
        Resolve a bearer token to the calling identity.

        Raises:
            ServiceError: UNAUTHORIZED if the token is bad or the user is gone
        """
        identity = self._token_service.resolve(token)
        user = self._store.get_user(identity.user_id)
        if user is None:
            raise ServiceError("UNAUTHORIZED", "User no longer exists", 401, {})
        if user["role"] != identity.role:
            raise ServiceError("UNAUTHORIZED", "Invalid or expired token", 401, {})
        return identity

    def register(self, body: dict[str, Any]) -> dict[str, Any]:
        """
        Create an account and return it with a fresh token.

        Error precedence:
        1. VALIDATION_ERROR: missing fields, bad email, role, password or location
        2. USER_ALREADY_EXISTS: email already registered
        """
        name = _require_string(body, "name")
        email = _require_string(body, "email").lower()
        phone = _require_string(body, "phone")
        role = _require_string(body, "role")

        if "@" not in email or email.startswith("@") or email.endswith("@"):
            raise _validation_error("Email address is not valid", {"field": "email"})

        if role not in USER_ROLES:
            raise _validation_error(
                f"Role must be one of: {', '.join(sorted(USER_ROLES))}",
                {"field": "role", "valid_roles": sorted(USER_ROLES)},
            )

        password = body.get("password")
        if not isinstance(password, str) or len(password) < self._min_password_length:
            raise _validation_error(
                f"Password must be at least {self._min_password_length} characters",
                {"field": "password"},
            )

        longitude: float | None = None
        latitude: float | None = None
        address: str | None = None
        location = body.get("location")
        if location is not None:
            if not isinstance(location, dict):
                raise _validation_error("Location must be an object", {"field": "location"})
            latitude = parse_latitude(location.get("lat"))
            longitude = parse_longitude(location.get("lng"))
            if latitude is None or longitude is None:
                raise _validation_error(
                    "Location requires numeric lat and lng", {"field": "location"}
                )
            raw_address = location.get("address")
            address = raw_address.strip() if isinstance(raw_address, str) else None

        if self._store.get_user_by_email(email) is not None:
            raise ServiceError("USER_ALREADY_EXISTS", "User already exists", 400, {})

        now = _now_iso()
        user_id = f"u-{uuid.uuid4()}"
        try:
            self._store.insert_user(
                {
                    "user_id": user_id,
                    "name": name,
                    "email": email,
                    "password_hash": self._password_hasher.hash(password),
                    "phone": phone,
                    "role": role,
                    "skills": [],
                    "availability": "anytime",
                    "bio": None,
                    "is_verified": False,
                    "badges": [],
                    "reliability_score": 0.0,
                    "completed_tasks": 0,
                    "longitude": longitude,
                    "latitude": latitude,
                    "address": address,
                    "created_at": now,
                    "updated_at": now,
                }
            )
        except DuplicateUserError as exc:
            raise ServiceError("USER_ALREADY_EXISTS", "User already exists", 400, {}) from exc

        self._logger.info("User registered", extra={"user_id": user_id, "role": role})
        return {
            "token": self._token_service.issue(user_id, role),
            "user": user_to_public(self._get_existing_user(user_id)),
        }

    def login(self, body: dict[str, Any]) -> dict[str, Any]:
        """
        Exchange email and password for a token.

        Unknown emails and wrong passwords are indistinguishable.
        """
        email = body.get("email")
        password = body.get("password")
        if not isinstance(email, str) or not isinstance(password, str):
            raise ServiceError("INVALID_CREDENTIALS", "Invalid credentials", 400, {})

        user = self._store.get_user_by_email(email.strip().lower())
        if user is None or not self._password_hasher.verify(password, user["password_hash"]):
            raise ServiceError("INVALID_CREDENTIALS", "Invalid credentials", 400, {})

        return {
            "token": self._token_service.issue(user["user_id"], user["role"]),
            "user": user_to_public(user),
        }

    def get_profile(self, identity: Identity) -> dict[str, Any]:
        """Return the caller's public profile."""
        return {"user": user_to_public(self._get_existing_user(identity.user_id))}

    def update_profile(self, identity: Identity, body: dict[str, Any]) -> dict[str, Any]:
        """Apply a ProfileUpdate command to the caller."""
        try:
            command = ProfileUpdate.model_validate(body)
        except ValidationError as exc:
            raise _validation_error(
                "Profile update is not valid",
                {"fields": [".".join(str(part) for part in err["loc"]) for err in exc.errors()]},
            ) from exc

        updates: dict[str, Any] = command.model_dump(exclude_none=True)
        if "skills" in updates:
            updates["skills"] = [skill.strip() for skill in updates["skills"] if skill.strip()]
        if updates:
            updates["updated_at"] = _now_iso()
            self._store.update_user(identity.user_id, updates)

        return {"user": user_to_public(self._get_existing_user(identity.user_id))}

    def update_location(self, identity: Identity, body: dict[str, Any]) -> dict[str, Any]:
        """Apply a LocationUpdate command to the caller."""
        try:
            command = LocationUpdate.model_validate(body)
        except ValidationError as exc:
            raise _validation_error(
                "Location update is not valid",
                {"fields": [".".join(str(part) for part in err["loc"]) for err in exc.errors()]},
            ) from exc

        self._store.update_user(
            identity.user_id,
            {
                "longitude": command.lng,
                "latitude": command.lat,
                "address": command.address,
                "updated_at": _now_iso(),
            },
        )
        return {"user": user_to_public(self._get_existing_user(identity.user_id))}

    def list_users(self) -> list[dict[str, Any]]:
        """List every user (admin)."""
        return [user_to_public(user) for user in self._store.list_users()]

    def verify_user(self, user_id: str) -> dict[str, Any]:
        """Mark a user verified and grant the verified badge once (admin)."""
        user = self._store.get_user(user_id)
        if user is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})

        self._store.update_user(
            user_id,
            {
                "is_verified": True,
                "badges": grant_badge(user["badges"], VERIFIED_BADGE),
                "updated_at": _now_iso(),
            },
        )
        self._logger.info("User verified", extra={"user_id": user_id})
        return user_to_public(self._get_existing_user(user_id))

    def _get_existing_user(self, user_id: str) -> dict[str, Any]:
        user = self._store.get_user(user_id)
        if user is None:
            raise ServiceError("USER_NOT_FOUND", "User not found", 404, {})
        return user
