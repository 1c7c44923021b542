"""Typed failures surfaced by the location core.

``NotFound`` has no exception here: missing users, buildings, and events
are represented as ``None`` or empty results.
"""

from __future__ import annotations


class CampusError(Exception):
    """Base class for all typed outcomes the API layer maps to responses."""


class InvalidQueryError(CampusError):
    """Free-text query was empty or whitespace-only."""


class PermissionDeniedError(CampusError):
    """A capability check failed.

    Read paths never raise this; they return an empty result instead.
    It is raised only by explicit permission-gated mutations.
    """

    def __init__(self, capability: str) -> None:
        super().__init__(f"Permission denied for capability {capability!r}")
        self.capability = capability


class PolicyImmutableError(CampusError):
    """Attempt to deactivate a required policy."""

    def __init__(self, policy_id: str) -> None:
        super().__init__(f"Policy {policy_id!r} is required and cannot be deactivated")
        self.policy_id = policy_id


class ConsentNotWithdrawableError(CampusError):
    """Attempt to revoke consent that was granted as non-withdrawable."""

    def __init__(self, user_id: str) -> None:
        super().__init__(f"Consent for user {user_id!r} cannot be withdrawn")
        self.user_id = user_id
