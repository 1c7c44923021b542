"""Privacy policy gate: capabilities, consent, collection policies, audit.

Every read path of the query engine asks this gate whether the acting
role holds a capability, and whether a target user may be surfaced at
all.  Every capability evaluation, policy toggle, consent change, and
settings update appends one immutable :class:`AuditLogEntry` to the
ledger.  Ledger writes are a best-effort side channel: a failing write
is logged and never fails the operation that triggered it.

Capability rule table
---------------------
- ``admin`` holds every capability.
- ``modify_privacy`` is also granted when the target is the actor itself.
- Every other role/capability combination is denied.
"""

from __future__ import annotations

import threading
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Final

import structlog

from src.models.enums import AuditResult, Capability, DataType, PrivacyLevel, UserRole
from src.models.errors import ConsentNotWithdrawableError, PermissionDeniedError, PolicyImmutableError
from src.models.privacy import (
    AuditLogEntry,
    ConsentRecord,
    PrivacyPolicy,
    PrivacySettings,
    PrivacySettingsUpdate,
)
from src.services.clock import Clock, utc_now

if TYPE_CHECKING:
    from src.models.user import Actor
    from src.services.directory import UserDirectory

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_ROLE_CAPABILITIES: Final[dict[UserRole, frozenset[Capability]]] = {
    UserRole.ADMIN: frozenset(Capability),
    UserRole.STAFF: frozenset(),
    UserRole.TEACHER: frozenset(),
    UserRole.STUDENT: frozenset(),
}

# Capabilities an actor holds over its own record regardless of role.
_SELF_CAPABILITIES: Final[frozenset[Capability]] = frozenset({Capability.MODIFY_PRIVACY})

# Denials of these capabilities count as privacy violation attempts.
VIOLATION_CAPABILITIES: Final[frozenset[Capability]] = frozenset({
    Capability.VIEW_LOCATION,
    Capability.VIEW_HISTORY,
    Capability.EXPORT_DATA,
    Capability.DELETE_DATA,
})

_MAX_DENIALS: Final[int] = 10_000


def is_allowed(
    capability: Capability | str,
    actor_role: UserRole | str,
    target_user_id: str | None = None,
    actor_id: str | None = None,
) -> bool:
    """Pure rule-table lookup; unknown roles or capabilities are denied."""
    try:
        capability = Capability(capability)
        role = UserRole(actor_role)
    except ValueError:
        return False

    if capability in _ROLE_CAPABILITIES[role]:
        return True
    return (
        capability in _SELF_CAPABILITIES
        and target_user_id is not None
        and actor_id is not None
        and target_user_id == actor_id
    )


@dataclass(frozen=True, slots=True)
class DenialRecord:
    """A denied capability evaluation, kept for violation alerting."""

    timestamp: datetime
    capability: Capability
    actor: str
    target: str


# ---------------------------------------------------------------------------
# AuditLedger
# ---------------------------------------------------------------------------


class AuditLedger:
    """Append-only, in-memory audit log.

    Entries are frozen models; the ledger offers no update or delete, so
    unlike the event store it is not bounded and grows with every gated
    read for the life of the process.  *soft_limit* does not drop
    anything: crossing it logs ``audit.ledger_over_soft_limit`` once and
    flips :attr:`over_soft_limit`, which the readiness check reports.
    Deployments that need durable or bounded retention subclass the
    ledger and ship entries out in :meth:`append`.
    """

    __slots__ = ("_entries", "_lock", "_soft_limit")

    def __init__(self, *, soft_limit: int | None = None) -> None:
        if soft_limit is not None and soft_limit <= 0:
            msg = f"soft_limit must be positive, got {soft_limit}"
            raise ValueError(msg)
        self._entries: list[AuditLogEntry] = []
        self._lock = threading.Lock()
        self._soft_limit = soft_limit

    def append(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)
            size = len(self._entries)
        if size == self._soft_limit:
            logger.warning("audit.ledger_over_soft_limit", entries=size, soft_limit=self._soft_limit)

    @property
    def soft_limit(self) -> int | None:
        return self._soft_limit

    @property
    def over_soft_limit(self) -> bool:
        return self._soft_limit is not None and len(self) >= self._soft_limit

    def recent(self, limit: int = 100) -> list[AuditLogEntry]:
        """Up to *limit* entries, newest first."""
        if limit <= 0:
            return []
        with self._lock:
            return list(reversed(self._entries[-limit:]))

    def entries(self) -> tuple[AuditLogEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


# ---------------------------------------------------------------------------
# PrivacyPolicyGate
# ---------------------------------------------------------------------------


class PrivacyPolicyGate:
    """Capability checks, consent state, and collection policies.

    Parameters
    ----------
    directory:
        Read-only identity lookup; supplies fallback consent flags and
        privacy levels for users without an explicit consent record.
    policies:
        Initial collection policies.
    consents:
        Initial consent records.
    settings:
        Campus-wide privacy switches.
    ledger:
        Audit ledger to append to; a fresh one is created when omitted.
    clock:
        Source of timestamps for audit entries and consent dates.
    """

    __slots__ = (
        "_clock",
        "_consents",
        "_denials",
        "_directory",
        "_ledger",
        "_lock",
        "_policies",
        "_settings",
    )

    def __init__(
        self,
        *,
        directory: UserDirectory | None = None,
        policies: Iterable[PrivacyPolicy] = (),
        consents: Iterable[ConsentRecord] = (),
        settings: PrivacySettings | None = None,
        ledger: AuditLedger | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._directory = directory
        self._policies: dict[str, PrivacyPolicy] = {p.id: p for p in policies}
        self._consents: dict[str, ConsentRecord] = {c.user_id: c for c in consents}
        self._settings = settings or PrivacySettings()
        self._ledger = ledger if ledger is not None else AuditLedger()
        self._clock: Clock = clock or utc_now
        self._denials: deque[DenialRecord] = deque(maxlen=_MAX_DENIALS)
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # 1. Capability evaluation
    # ------------------------------------------------------------------

    def evaluate(
        self,
        capability: Capability | str,
        actor_role: UserRole | str,
        target_user_id: str | None = None,
        *,
        actor_id: str | None = None,
        record_violation: bool = True,
    ) -> bool:
        """Decide allow/deny from the rule table and audit the decision.

        A denied violation-class capability is also kept as a violation
        attempt unless *record_violation* is false.
        """
        allowed = is_allowed(capability, actor_role, target_user_id, actor_id)
        actor = actor_id or str(actor_role)
        target = target_user_id or "*"

        self._audit(
            action=f"evaluate:{capability}",
            actor=actor,
            target=target,
            result=AuditResult.GRANTED if allowed else AuditResult.DENIED,
        )

        if not allowed:
            logger.info(
                "gate.denied",
                capability=str(capability),
                actor=actor,
                target=target,
            )
            if record_violation:
                self.note_violation(capability, actor, target_user_id)
        return allowed

    def check_permission(
        self,
        capability: Capability | str,
        actor_role: UserRole | str,
        target_user_id: str | None = None,
        *,
        actor_id: str | None = None,
    ) -> bool:
        """Boolean permission interface for collaborators.

        Audited like ``evaluate``; a negative answer is not a violation attempt.
        """
        return self.evaluate(
            capability, actor_role, target_user_id, actor_id=actor_id, record_violation=False
        )

    def note_violation(self, capability: Capability | str, actor: str, target: str | None = None) -> None:
        """Record a denied attempt at *capability* by *actor*.

        Only violation-class capabilities are kept; they feed the privacy
        violation alert rule.
        """
        if capability not in VIOLATION_CAPABILITIES:
            return
        with self._lock:
            self._denials.append(
                DenialRecord(
                    timestamp=self._clock(),
                    capability=Capability(capability),
                    actor=actor,
                    target=target or "*",
                )
            )
        logger.warning("gate.violation_attempt", capability=str(capability), actor=actor, target=target or "*")

    def denials_since(self, cutoff: datetime) -> list[DenialRecord]:
        """Violation-class denials at or after *cutoff*, oldest first."""
        with self._lock:
            return [d for d in self._denials if d.timestamp >= cutoff]

    # ------------------------------------------------------------------
    # 2. Policies
    # ------------------------------------------------------------------

    def list_policies(self) -> list[PrivacyPolicy]:
        with self._lock:
            return sorted(self._policies.values(), key=lambda p: p.id)

    def get_policy(self, policy_id: str) -> PrivacyPolicy | None:
        with self._lock:
            return self._policies.get(policy_id)

    def toggle_policy(
        self,
        policy_id: str,
        desired_active: bool,
        *,
        actor: str = "system",
    ) -> PrivacyPolicy | None:
        """Set ``is_active`` on a policy.

        Returns the updated policy, or ``None`` when *policy_id* is unknown.

        Raises
        ------
        PolicyImmutableError
            If the policy is required.  State is left unchanged.
        """
        with self._lock:
            policy = self._policies.get(policy_id)
            if policy is None:
                logger.warning("gate.policy_not_found", policy_id=policy_id)
                return None

            if policy.is_required:
                self._audit(
                    action="toggle_policy",
                    actor=actor,
                    target=policy_id,
                    result=AuditResult.REJECTED,
                )
                logger.warning("gate.policy_immutable", policy_id=policy_id, desired_active=desired_active)
                raise PolicyImmutableError(policy_id)

            updated = policy.model_copy(update={"is_active": desired_active})
            self._policies[policy_id] = updated

        self._audit(
            action="toggle_policy",
            actor=actor,
            target=policy_id,
            result=AuditResult.UPDATED,
        )
        logger.info("gate.policy_toggled", policy_id=policy_id, is_active=desired_active)
        return updated

    def accepts_collection(self, user_id: str, data_type: DataType | str = DataType.LOCATION) -> bool:
        """Whether new data of *data_type* may be collected for *user_id*.

        Collection is accepted when an active policy covers the data type
        and that policy is either required or the user has opted in to the
        data type.
        """
        data_type = str(data_type)
        with self._lock:
            covering = [
                p for p in self._policies.values()
                if p.is_active and data_type in p.data_types
            ]
            if any(p.is_required for p in covering):
                return True
            if not covering:
                return False
            return self._opted_in(user_id, data_type)

    # ------------------------------------------------------------------
    # 3. Consent
    # ------------------------------------------------------------------

    def get_consent(self, user_id: str) -> ConsentRecord | None:
        with self._lock:
            return self._consents.get(user_id)

    def record_consent(
        self,
        user_id: str,
        granted: bool,
        *,
        actor: str | None = None,
        data_types: Iterable[str] | None = None,
    ) -> ConsentRecord:
        """Grant or withdraw consent for *user_id* and timestamp the record.

        Raises
        ------
        ConsentNotWithdrawableError
            If the existing record has ``can_withdraw=False`` and consent
            is currently given.  The record is left unchanged.
        """
        actor = actor or user_id
        action = "consent_granted" if granted else "consent_withdrawn"

        with self._lock:
            existing = self._consents.get(user_id)
            if (
                not granted
                and existing is not None
                and existing.consent_given
                and not existing.can_withdraw
            ):
                self._audit(action=action, actor=actor, target=user_id, result=AuditResult.REJECTED)
                logger.warning("gate.consent_not_withdrawable", user_id=user_id)
                raise ConsentNotWithdrawableError(user_id)

            now = self._clock()
            if data_types is not None:
                types = frozenset(data_types)
            elif not granted:
                types = frozenset()
            elif existing is not None and existing.data_types:
                types = existing.data_types
            else:
                types = frozenset({DataType.LOCATION.value})

            if existing is None:
                record = ConsentRecord(
                    user_id=user_id,
                    consent_given=granted,
                    consent_date=now,
                    data_types=types,
                    retention_period=self._settings.data_retention_period if granted else "N/A",
                )
            else:
                record = existing.model_copy(
                    update={
                        "consent_given": granted,
                        "consent_date": now,
                        "data_types": types,
                    }
                )
            self._consents[user_id] = record

        self._audit(action=action, actor=actor, target=user_id, result=AuditResult.UPDATED)
        logger.info("gate.consent_recorded", user_id=user_id, granted=granted)
        return record

    def set_consent(
        self,
        user_id: str,
        granted: bool,
        *,
        actor: Actor,
        data_types: Iterable[str] | None = None,
    ) -> ConsentRecord:
        """Permission-checked consent change for collaborators.

        Raises
        ------
        PermissionDeniedError
            If *actor* lacks ``modify_privacy`` over *user_id*.
        ConsentNotWithdrawableError
            See :meth:`record_consent`.
        """
        if not self.evaluate(Capability.MODIFY_PRIVACY, actor.role, user_id, actor_id=actor.actor_id):
            raise PermissionDeniedError(Capability.MODIFY_PRIVACY.value)
        return self.record_consent(user_id, granted, actor=actor.label, data_types=data_types)

    def read_consent(self, user_id: str, *, actor: Actor) -> ConsentRecord | None:
        """Permission-checked consent lookup; same check as :meth:`set_consent`.

        Raises
        ------
        PermissionDeniedError
            If *actor* lacks ``modify_privacy`` over *user_id*.
        """
        if not self.evaluate(Capability.MODIFY_PRIVACY, actor.role, user_id, actor_id=actor.actor_id):
            raise PermissionDeniedError(Capability.MODIFY_PRIVACY.value)
        return self.get_consent(user_id)

    def is_consented(self, user_id: str) -> bool:
        """Whether *user_id*'s location data may be surfaced.

        An explicit consent record wins; otherwise the directory identity's
        flag is used.  Users unknown to both are consented only when
        explicit consent is not required.
        """
        with self._lock:
            record = self._consents.get(user_id)
        if record is not None:
            return record.consent_given

        identity = self._directory.get_user(user_id) if self._directory else None
        if identity is not None:
            return identity.consent_given
        return not self._settings.require_explicit_consent

    def privacy_level(self, user_id: str) -> PrivacyLevel:
        identity = self._directory.get_user(user_id) if self._directory else None
        if identity is not None:
            return identity.privacy_level
        return self._settings.default_privacy_level

    # ------------------------------------------------------------------
    # 4. Settings
    # ------------------------------------------------------------------

    @property
    def settings(self) -> PrivacySettings:
        return self._settings

    def update_settings(self, update: PrivacySettingsUpdate, *, actor: str = "system") -> PrivacySettings:
        changes = update.model_dump(exclude_none=True)
        with self._lock:
            self._settings = self._settings.model_copy(update=changes)
            current = self._settings

        self._audit(
            action="update_privacy_settings",
            actor=actor,
            target=",".join(sorted(changes)) or "-",
            result=AuditResult.UPDATED,
        )
        logger.info("gate.settings_updated", fields=sorted(changes))
        return current

    # ------------------------------------------------------------------
    # 5. Audit ledger
    # ------------------------------------------------------------------

    @property
    def ledger(self) -> AuditLedger:
        return self._ledger

    def list_audit_log(self, limit: int = 100) -> list[AuditLogEntry]:
        """Up to *limit* audit entries, newest first."""
        return self._ledger.recent(limit)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _opted_in(self, user_id: str, data_type: str) -> bool:
        record = self._consents.get(user_id)
        if record is not None:
            return record.consent_given and data_type in record.data_types
        identity = self._directory.get_user(user_id) if self._directory else None
        return identity is not None and identity.consent_given

    def _audit(self, *, action: str, actor: str, target: str, result: AuditResult) -> None:
        """Append an audit entry; failures are logged and swallowed."""
        try:
            entry = AuditLogEntry(
                action=action,
                actor=actor,
                target=target,
                timestamp=self._clock(),
                result=result,
            )
            self._ledger.append(entry)
        except Exception:
            logger.warning("gate.audit_write_failed", action=action, target=target, exc_info=True)
            return

        if self._settings.enable_audit_logging:
            logger.debug(
                "audit.recorded",
                action=action,
                actor=actor,
                target=target,
                result=result.value,
            )
