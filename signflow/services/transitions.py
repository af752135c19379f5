"""Signature state machine for internship agreements.

Pure functions only: given a convention and an acting role, compute the next
document state and the side effects it implies. Persistence, hashing and
delivery live in :mod:`signflow.services.workflow`.

Order of signatures::

    student -> [parent, minors only] -> teacher -> company + tutor (any order) -> head

The status is always a function of which roles have signed (plus the minor
flag), except for REJECTED which is set from outside by feedback.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, FrozenSet, Iterable, List, Optional

from signflow.exceptions import NoOpTransitionError, StaleTransitionError, ValidationException
from signflow.schemas.convention import (
    AuditEntry,
    Convention,
    ConventionStatus as S,
    Role,
    SignatureRecord,
)
from signflow.services import audit
from signflow.services.codes import generate_code
from signflow.services.convention_notifications import NotificationIntent, notifications_for_status
from signflow.utils.datetime import utc_now

PARTNER_STATUSES: FrozenSet[S] = frozenset({S.VALIDATED_TEACHER, S.SIGNED_COMPANY, S.SIGNED_TUTOR})

# company and tutor may sign in either order, or one person may sign for both
COUNTERPART: Dict[Role, Role] = {Role.COMPANY: Role.TUTOR, Role.TUTOR: Role.COMPANY}

ELIGIBILITY: Dict[Role, Callable[[S, bool], bool]] = {
    Role.STUDENT: lambda status, minor: status in (S.DRAFT, S.REJECTED),
    Role.PARENT: lambda status, minor: minor and status == S.SUBMITTED,
    Role.TEACHER: lambda status, minor: (
        (minor and status == S.SIGNED_PARENT)
        or (not minor and status in (S.SUBMITTED, S.SIGNED_PARENT))
    ),
    Role.COMPANY: lambda status, minor: status in PARTNER_STATUSES,
    Role.TUTOR: lambda status, minor: status in PARTNER_STATUSES,
    Role.HEAD: lambda status, minor: status == S.SIGNED_TUTOR,
}

# Statuses in which a role may sign again without advancing anything
RESIGN_ALLOWED: Dict[Role, FrozenSet[S]] = {
    Role.STUDENT: frozenset({S.DRAFT, S.SUBMITTED, S.REJECTED}),
    Role.PARENT: frozenset({S.SIGNED_PARENT}),
    Role.TEACHER: frozenset({S.VALIDATED_TEACHER}),
    Role.COMPANY: frozenset({S.SIGNED_COMPANY}),
    Role.TUTOR: frozenset({S.SIGNED_TUTOR}),
    Role.HEAD: frozenset({S.VALIDATED_HEAD}),
}


@dataclass
class Transition:
    convention: Convention
    role: Role
    previous_status: S
    new_status: S
    code: str
    changed_roles: List[Role]
    audit_entry: AuditEntry
    notifications: List[NotificationIntent] = field(default_factory=list)


def derive_status(signed: Iterable[Role], is_minor: bool) -> S:
    """Status implied by a set of signed roles."""
    signed = set(signed)
    if Role.HEAD in signed:
        return S.VALIDATED_HEAD
    if Role.COMPANY in signed and Role.TUTOR in signed:
        return S.SIGNED_TUTOR
    if Role.COMPANY in signed:
        return S.SIGNED_COMPANY
    if Role.TEACHER in signed:
        # a tutor signing first leaves the document waiting on the company
        return S.VALIDATED_TEACHER
    if is_minor and Role.PARENT in signed:
        return S.SIGNED_PARENT
    if Role.STUDENT in signed:
        return S.SUBMITTED
    return S.DRAFT


def expected_status(convention: Convention) -> S:
    if convention.status == S.REJECTED:
        return S.REJECTED
    return derive_status(convention.signed_roles, convention.is_minor)


def is_eligible(convention: Convention, role: Role) -> bool:
    return ELIGIBILITY[role](convention.status, convention.is_minor)


def eligible_roles(convention: Convention) -> List[Role]:
    return [r for r in Role if is_eligible(convention, r)]


def _signed_count(signatures: Dict[Role, SignatureRecord]) -> int:
    return sum(1 for rec in signatures.values() if rec.is_signed)


def check_can_sign(convention: Convention, role: Role, dual_sign: bool = False) -> None:
    """Raise unless ``role`` may sign ``convention`` in its current status."""
    if not is_eligible(convention, role):
        if convention.has_signed(role):
            raise NoOpTransitionError(role.value, convention.status.value, convention.id)
        raise StaleTransitionError(role.value, convention.status.value, convention.id)
    if dual_sign and role not in COUNTERPART:
        raise ValidationException("Dual signature only applies to the company representative and the tutor")


def apply_transition(
    convention: Convention,
    role: Role | str,
    artifact: Optional[str] = None,
    code: Optional[str] = None,
    dual_sign: bool = False,
    now: Optional[datetime] = None,
) -> Transition:
    """Apply ``role``'s signature to ``convention``.

    Returns the new document (the input is left untouched) with the audit entry
    appended, and the notifications keyed by the resulting status.

    Raises StaleTransitionError when the role cannot act in the current status and
    NoOpTransitionError when the call repeats a signature already recorded.
    """
    role = Role(role)
    status = convention.status
    check_can_sign(convention, role, dual_sign)

    now = now or utc_now()
    previous = convention.signature(role)
    superseded: List[str] = []
    if previous is not None and previous.is_signed:
        # a retry without a code repeats the one already issued
        code = code or previous.code
        superseded = list(previous.previous_codes)
        if previous.code and previous.code != code:
            superseded.append(previous.code)
    code = code or generate_code()

    record = SignatureRecord(signed_at=now, artifact=artifact, code=code, previous_codes=superseded)
    signatures = dict(convention.signatures)
    signatures[role] = record
    changed = [role]
    if dual_sign:
        counterpart = COUNTERPART[role]
        # the counterpart's own earlier signature is kept
        if not convention.has_signed(counterpart):
            signatures[counterpart] = record.model_copy(update={"previous_codes": []})
            changed.append(counterpart)

    new_status = derive_status(
        [r for r, rec in signatures.items() if rec.is_signed], convention.is_minor
    )

    signatures_changed = _signed_count(signatures) > _signed_count(convention.signatures)
    status_changed = new_status != status
    if not signatures_changed and not status_changed:
        same_code = previous is not None and previous.is_signed and previous.code == code
        if same_code or status not in RESIGN_ALLOWED[role]:
            raise NoOpTransitionError(role.value, status.value, convention.id)

    entry = audit.signature_entry(convention, role, now, dual_for=changed[1] if len(changed) > 1 else None)
    updated = convention.model_copy(deep=True)
    updated.signatures = signatures
    updated.status = new_status
    updated.updated_at = now
    updated.audit_logs = [*convention.audit_logs, entry]

    return Transition(
        convention=updated,
        role=role,
        previous_status=status,
        new_status=new_status,
        code=code,
        changed_roles=changed,
        audit_entry=entry,
        notifications=notifications_for_status(updated, new_status),
    )
