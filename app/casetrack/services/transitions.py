"""Status transition rules.

`validate_transition` is a pure decision over catalog snapshots; it never touches
the database. Rejections carry a ``details`` map whose ``rule`` key names the
failed check. The remaining keys per rule are:

- ``STATUS_NOT_FOUND``: ``status_type_id``
- ``STATUS_NOT_AVAILABLE``: ``status_type_id``, ``status_code``, ``organization_id``
- ``TERMINAL_STATUS``: ``current_status_id``, ``current_status_code``,
  ``target_status_id``, ``target_status_code``
- ``TRANSITION_DENIED``: ``from_status_id``, ``from_status_code``,
  ``to_status_id``, ``to_status_code``
- ``REASON_REQUIRED``: ``status_type_id``, ``status_code``
- ``REASON_NOT_FOUND``: ``reason_id``
- ``INVALID_REASON_FOR_STATUS``: ``reason_id``, ``reason_code``,
  ``status_type_id``, ``status_code``
- ``REMARKS_REQUIRED``: ``reason_id``, ``reason_code``
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Protocol

from app.casetrack.core.error_catalog import ErrorCatalog, ErrorDefinition

RULE_STATUS_NOT_FOUND = "STATUS_NOT_FOUND"
RULE_STATUS_NOT_AVAILABLE = "STATUS_NOT_AVAILABLE"
RULE_TERMINAL_STATUS = "TERMINAL_STATUS"
RULE_TRANSITION_DENIED = "TRANSITION_DENIED"
RULE_REASON_REQUIRED = "REASON_REQUIRED"
RULE_REASON_NOT_FOUND = "REASON_NOT_FOUND"
RULE_INVALID_REASON_FOR_STATUS = "INVALID_REASON_FOR_STATUS"
RULE_REMARKS_REQUIRED = "REMARKS_REQUIRED"

EFFECT_ALLOW = "allow"
EFFECT_DENY = "deny"


@dataclass(frozen=True)
class StatusTypeSnapshot:
    id: str
    code: str
    organization_id: str | None = None
    is_terminal: bool = False
    requires_reason: bool = False
    is_active: bool = True

    @classmethod
    def from_model(cls, status_type) -> "StatusTypeSnapshot":
        return cls(
            id=str(status_type.id),
            code=status_type.code,
            organization_id=str(status_type.organization_id) if status_type.organization_id else None,
            is_terminal=bool(status_type.is_terminal),
            requires_reason=bool(status_type.requires_reason),
            is_active=bool(status_type.is_active),
        )


@dataclass(frozen=True)
class ReasonSnapshot:
    id: str
    code: str
    status_type_id: str
    is_terminal: bool = False
    requires_remarks: bool = False
    is_active: bool = True

    @classmethod
    def from_model(cls, reason) -> "ReasonSnapshot":
        return cls(
            id=str(reason.id),
            code=reason.code,
            status_type_id=str(reason.status_type_id),
            is_terminal=bool(reason.is_terminal),
            requires_remarks=bool(reason.requires_remarks),
            is_active=bool(reason.is_active),
        )


@dataclass(frozen=True)
class CurrentStatus:
    status_type_id: str
    status_code: str
    is_terminal: bool


@dataclass(frozen=True)
class TransitionDecision:
    valid: bool
    is_terminal: bool = False
    error: ErrorDefinition | None = None
    message: str | None = None
    details: dict = field(default_factory=dict)

    @classmethod
    def accept(cls, *, is_terminal: bool) -> "TransitionDecision":
        return cls(valid=True, is_terminal=is_terminal)

    @classmethod
    def reject(cls, error: ErrorDefinition, message: str, rule: str, **details) -> "TransitionDecision":
        return cls(valid=False, error=error, message=message, details={"rule": rule, **details})

    @property
    def rule(self) -> str | None:
        return self.details.get("rule")


class TransitionPolicy(Protocol):
    def permits(
        self,
        *,
        organization_id: str,
        from_status_type_id: str | None,
        to_status_type_id: str,
        acting_user_id: str | None,
    ) -> bool: ...


class PermitAllPolicy:
    def permits(self, *, organization_id, from_status_type_id, to_status_type_id, acting_user_id) -> bool:
        return True


@dataclass(frozen=True)
class TransitionRule:
    from_status_type_id: str | None
    to_status_type_id: str
    effect: str


class ConfiguredTransitionPolicy:
    """Organization transition graph.

    Only ``deny`` rows change the outcome. Unlisted pairs are already permitted, so an
    ``allow`` row documents an intended edge and never overrides a ``deny`` for the
    same pair. Any other effect is a configuration error.
    """

    def __init__(self, organization_id, rules: Iterable[TransitionRule]):
        self.organization_id = str(organization_id)
        self._denied: set[tuple[str | None, str]] = set()
        for rule in rules:
            effect = rule.effect.strip().lower()
            if effect not in (EFFECT_ALLOW, EFFECT_DENY):
                raise ValueError(f"Unknown transition rule effect: {rule.effect!r}")
            if effect == EFFECT_DENY:
                self._denied.add((rule.from_status_type_id, rule.to_status_type_id))

    @classmethod
    def from_rows(cls, organization_id, rows) -> "ConfiguredTransitionPolicy":
        return cls(
            organization_id,
            [
                TransitionRule(
                    from_status_type_id=str(row.from_status_type_id) if row.from_status_type_id else None,
                    to_status_type_id=str(row.to_status_type_id),
                    effect=row.effect,
                )
                for row in rows
            ],
        )

    def permits(self, *, organization_id, from_status_type_id, to_status_type_id, acting_user_id) -> bool:
        if str(organization_id) != self.organization_id:
            return True
        return (from_status_type_id, to_status_type_id) not in self._denied


def validate_transition(
    current: CurrentStatus | None,
    target: StatusTypeSnapshot | None,
    reason: ReasonSnapshot | None,
    remarks: str | None,
    organization_id: str,
    acting_user_id: str | None,
    policy: TransitionPolicy | None = None,
    *,
    target_status_id: str | None = None,
    reason_id: str | None = None,
) -> TransitionDecision:
    """Decide whether ``current -> target`` may be written for ``organization_id``.

    ``target``/``reason`` are ``None`` when the requested ids do not resolve; the
    raw ids are then passed through ``target_status_id``/``reason_id`` so the
    rejection can name them.
    """
    policy = policy or PermitAllPolicy()
    organization_id = str(organization_id)

    if target is None or not target.is_active:
        return TransitionDecision.reject(
            ErrorCatalog.VALIDATION_ERROR,
            "Status type not found",
            RULE_STATUS_NOT_FOUND,
            status_type_id=target.id if target else target_status_id,
        )
    if target.organization_id is not None and target.organization_id != organization_id:
        return TransitionDecision.reject(
            ErrorCatalog.VALIDATION_ERROR,
            f"Status {target.code} is not available for this organization",
            RULE_STATUS_NOT_AVAILABLE,
            status_type_id=target.id,
            status_code=target.code,
            organization_id=organization_id,
        )

    if current is not None and current.is_terminal:
        return TransitionDecision.reject(
            ErrorCatalog.INVALID_TRANSITION,
            f"Cannot change status from terminal status {current.status_code}",
            RULE_TERMINAL_STATUS,
            current_status_id=current.status_type_id,
            current_status_code=current.status_code,
            target_status_id=target.id,
            target_status_code=target.code,
        )

    from_status_id = current.status_type_id if current is not None else None
    if not policy.permits(
        organization_id=organization_id,
        from_status_type_id=from_status_id,
        to_status_type_id=target.id,
        acting_user_id=acting_user_id,
    ):
        from_code = current.status_code if current is not None else None
        return TransitionDecision.reject(
            ErrorCatalog.INVALID_TRANSITION,
            f"Transition from {from_code or 'no status'} to {target.code} is not allowed",
            RULE_TRANSITION_DENIED,
            from_status_id=from_status_id,
            from_status_code=from_code,
            to_status_id=target.id,
            to_status_code=target.code,
        )

    if reason is None and reason_id is None:
        if target.requires_reason:
            return TransitionDecision.reject(
                ErrorCatalog.VALIDATION_ERROR,
                f"A reason is required for status {target.code}",
                RULE_REASON_REQUIRED,
                status_type_id=target.id,
                status_code=target.code,
            )
        return TransitionDecision.accept(is_terminal=target.is_terminal)

    if reason is None or not reason.is_active:
        return TransitionDecision.reject(
            ErrorCatalog.VALIDATION_ERROR,
            "Status reason not found",
            RULE_REASON_NOT_FOUND,
            reason_id=reason.id if reason else reason_id,
        )
    if reason.status_type_id != target.id:
        return TransitionDecision.reject(
            ErrorCatalog.VALIDATION_ERROR,
            f"Reason {reason.code} does not apply to status {target.code}",
            RULE_INVALID_REASON_FOR_STATUS,
            reason_id=reason.id,
            reason_code=reason.code,
            status_type_id=target.id,
            status_code=target.code,
        )
    if reason.requires_remarks and not (remarks or "").strip():
        return TransitionDecision.reject(
            ErrorCatalog.VALIDATION_ERROR,
            f"Remarks are required for reason {reason.code}",
            RULE_REMARKS_REQUIRED,
            reason_id=reason.id,
            reason_code=reason.code,
        )

    return TransitionDecision.accept(is_terminal=target.is_terminal or reason.is_terminal)
