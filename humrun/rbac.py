"""Role-based access control."""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """A user's access level."""

    ADMIN = "admin"
    DEVELOPER = "developer"
    VIEWER = "viewer"

    def __str__(self) -> str:
        return self.value


class Action(str, Enum):
    """An operation a user wants to perform."""

    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    MANAGE_USERS = "manage_users"
    VIEW_AUDIT = "view_audit"
    EXPORT = "export"

    def __str__(self) -> str:
        return self.value


class PermissionDenied(PermissionError):
    """Raised when a role may not perform an action."""


_PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.ADMIN: frozenset(Action),
    Role.DEVELOPER: frozenset({Action.READ, Action.WRITE, Action.DELETE}),
    Role.VIEWER: frozenset({Action.READ}),
}


def can(role: Role | str, action: Action | str) -> bool:
    """Whether role is allowed to perform action; unknown roles may do nothing."""
    return action in _PERMISSIONS.get(role, frozenset())


def validate_role(value: str) -> Role:
    """The Role named by value; ValueError if there is none."""
    try:
        return Role(value)
    except ValueError:
        raise ValueError(
            f"invalid role {value!r} (must be admin, developer, or viewer)"
        ) from None


def enforce(role: Role | str, action: Action | str) -> None:
    """Raise PermissionDenied unless role may perform action."""
    if not can(role, action):
        raise PermissionDenied(f"permission denied: {role} cannot {action}")