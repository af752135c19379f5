"""Audit trail helpers.

Two outputs per workflow event: an ``AuditEntry`` appended to the document's own
log, and a single-line ``AUDIT k=v`` record on the ``signflow.audit`` logger so the
events are easy to index.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Optional, Any

from signflow.schemas.convention import ROLE_LABELS, AuditAction, AuditEntry, Convention, Role
from signflow.utils.datetime import isoformat_z, utc_now

_logger = logging.getLogger("signflow.audit")

UNKNOWN_ACTOR = "unknown"


def _emit(event: str, convention_id: Optional[str] = None, **data: Any):
    payload = {"ts": isoformat_z(utc_now()), "event": event}
    if convention_id:
        payload["convention_id"] = convention_id
    payload.update(data)
    parts = [f"{k}={repr(v)}" for k, v in payload.items()]
    _logger.info("AUDIT " + " ".join(parts))


def actor_for(convention: Convention, role: Role) -> str:
    return convention.address_for(role) or UNKNOWN_ACTOR


def signature_entry(convention: Convention, role: Role, now: datetime, dual_for: Optional[Role] = None) -> AuditEntry:
    detail = f"Signed as {ROLE_LABELS[role]}"
    if dual_for is not None:
        detail += f" (also for {ROLE_LABELS[dual_for]})"
    return AuditEntry(timestamp=now, action=AuditAction.SIGNED, actor_address=actor_for(convention, role), detail=detail)


def rejection_entry(author: str, message: str, now: datetime) -> AuditEntry:
    return AuditEntry(timestamp=now, action=AuditAction.REJECTED, actor_address=author or UNKNOWN_ACTOR, detail=message)


def email_update_entry(role: Role, old: Optional[str], new: str, now: datetime, actor: Optional[str] = None) -> AuditEntry:
    return AuditEntry(
        timestamp=now,
        action=AuditAction.EMAIL_UPDATED,
        actor_address=actor or UNKNOWN_ACTOR,
        detail=f"{ROLE_LABELS[role]} address changed from {old or '-'} to {new}",
    )


def tracking_entry(address: str, now: datetime, actor: Optional[str] = None) -> AuditEntry:
    return AuditEntry(
        timestamp=now,
        action=AuditAction.TRACKING_ASSIGNED,
        actor_address=actor or UNKNOWN_ACTOR,
        detail=f"Tracking teacher set to {address}",
    )


def attestation_entry(convention: Convention, now: datetime) -> AuditEntry:
    return AuditEntry(
        timestamp=now,
        action=AuditAction.ATTESTATION_SIGNED,
        actor_address=convention.company_rep_email or UNKNOWN_ACTOR,
        detail=f"End-of-internship attestation signed ({convention.attestation.total_days} days)",
    )


# Public log wrappers

def log_submission(convention_id: str, owner_id: Optional[str], demo: bool = False):
    _emit("convention.submit", convention_id=convention_id, owner_id=owner_id, demo=demo)


def log_signature(convention_id: str, role: str, previous_status: str, new_status: str, code: str, demo: bool = False):
    _emit(
        "convention.sign",
        convention_id=convention_id,
        role=role,
        from_status=previous_status,
        to_status=new_status,
        code=code,
        demo=demo,
    )


def log_rejection(convention_id: str, author: str, demo: bool = False):
    _emit("convention.reject", convention_id=convention_id, author=author, demo=demo)


def log_email_update(convention_id: str, role: str, demo: bool = False):
    _emit("convention.email_update", convention_id=convention_id, role=role, demo=demo)


def log_attestation(convention_id: str, code: str, demo: bool = False):
    _emit("attestation.sign", convention_id=convention_id, code=code, demo=demo)


def log_absence(convention_id: str, absence_id: str, action: str, actor: Optional[str], demo: bool = False):
    _emit(f"absence.{action}", convention_id=convention_id, absence_id=absence_id, actor=actor, demo=demo)


def log_reminder(convention_id: str, role: str, recipient: str):
    _emit("convention.remind", convention_id=convention_id, role=role, recipient=recipient)
