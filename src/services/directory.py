"""Read-only user directory.

Stands in for the user-management collaborator: identities are loaded
once at startup (from a JSON file or by the caller) and then only looked
up.  The location core never mutates an identity.
"""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from src.models.enums import UserRole
from src.models.user import UserIdentity

logger = structlog.get_logger(__name__)


class UserDirectory:
    """In-memory identity lookup keyed by user id."""

    __slots__ = ("_users",)

    def __init__(self, users: Iterable[UserIdentity] = ()) -> None:
        self._users: dict[str, UserIdentity] = {}
        for user in users:
            self._users[user.id] = user
        logger.debug("directory.initialised", users=len(self._users))

    def get_user(self, user_id: str) -> UserIdentity | None:
        return self._users.get(user_id)

    def list_users(self, role: UserRole | str | None = None) -> list[UserIdentity]:
        """All users, optionally filtered by role, ordered by id."""
        users = sorted(self._users.values(), key=lambda u: u.id)
        if role is None:
            return users
        return [u for u in users if u.role == role]

    def find_by_name(self, text: str) -> UserIdentity | None:
        """First user (longest name first) whose full name occurs in *text*.

        Matching is case-insensitive; used by the intent resolver to pick
        out a person mentioned in a free-text question.
        """
        lowered = text.lower()
        for user in sorted(self._users.values(), key=lambda u: (-len(u.name), u.id)):
            if user.name and user.name.lower() in lowered:
                return user
        return None

    def __len__(self) -> int:
        return len(self._users)
