"""Consent, policy, audit, and privacy-settings models.

Audit entries are append-only: they are frozen on creation and the
ledger never exposes a way to change or remove them.  Policies carry
the ``is_required => is_active`` rule, enforced on construction.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from src.models.enums import AuditResult, PrivacyLevel


class ConsentRecord(BaseModel):
    """A user's consent to having their data collected and surfaced."""

    user_id: str
    consent_given: bool
    consent_date: datetime | None = None
    data_types: frozenset[str] = Field(default_factory=frozenset)
    retention_period: str = "N/A"
    can_withdraw: bool = True


class PrivacyPolicy(BaseModel):
    """A rule governing whether a set of data types may be collected at all."""

    id: str
    title: str = ""
    description: str = ""
    data_types: frozenset[str] = Field(default_factory=frozenset)
    purpose: str = ""
    retention_period: str = ""
    is_required: bool = False
    is_active: bool = True

    @model_validator(mode="after")
    def _required_policies_are_active(self) -> PrivacyPolicy:
        if self.is_required and not self.is_active:
            msg = f"Required policy {self.id!r} cannot be inactive"
            raise ValueError(msg)
        return self


class AuditLogEntry(BaseModel):
    """One immutable record of a gated decision or a privacy state change."""

    model_config = {"frozen": True}

    audit_id: str = Field(default_factory=lambda: uuid4().hex)
    action: str
    actor: str
    target: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    result: AuditResult


class PrivacySettings(BaseModel):
    """Campus-wide privacy switches."""

    default_privacy_level: PrivacyLevel = PrivacyLevel.PUBLIC
    data_retention_period: str = "2y"
    allow_anonymous_analytics: bool = True
    require_explicit_consent: bool = True
    enable_audit_logging: bool = True


class PrivacySettingsUpdate(BaseModel):
    """Partial update for :class:`PrivacySettings`; unset fields are left alone."""

    default_privacy_level: PrivacyLevel | None = None
    data_retention_period: str | None = None
    allow_anonymous_analytics: bool | None = None
    require_explicit_consent: bool | None = None
    enable_audit_logging: bool | None = None
