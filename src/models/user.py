"""User identity model owned by the directory collaborator.

The location core only ever reads identities; it never creates or
mutates them.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from src.models.enums import PrivacyLevel, UserRole


class UserIdentity(BaseModel):
    """A tracked person as known to the campus directory."""

    model_config = {"frozen": True}

    id: str = Field(..., min_length=1)
    name: str
    email: str | None = None
    role: UserRole
    department: str = ""
    privacy_level: PrivacyLevel = PrivacyLevel.PUBLIC
    consent_given: bool = False
    last_seen: datetime | None = None


class Actor(BaseModel):
    """The evaluating party of a query: its role and, optionally, its own id."""

    model_config = {"frozen": True}

    role: UserRole
    actor_id: str | None = None

    @property
    def label(self) -> str:
        """Name written to the audit ledger for this actor."""
        return self.actor_id or self.role.value
