"""Notifications for the convention signature workflow.

The workflow only produces ``NotificationIntent`` values. Rendering and delivery
happen in ``NotificationDispatcher``, which never lets a delivery failure reach
the caller: a signed document is never reported failed because a message could
not be sent.
"""
from __future__ import annotations
import html
import logging
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol, Tuple

from signflow.core.settings import settings
from signflow.exceptions import NotificationDispatchError
from signflow.models.notification import Notification
from signflow.schemas.convention import ROLE_LABELS, Convention, ConventionStatus, Role, blocking_role
from signflow.services.email import get_email_template_env, send_email
from signflow.utils.datetime import utc_now

logger = logging.getLogger("signflow.convention_email")


class ConventionEmailEvent(str, Enum):
    SUBMISSION_RECEIVED = "submission_received"
    SIGNATURE_REQUESTED = "signature_requested"
    FULLY_SIGNED = "fully_signed"
    CHANGES_REQUESTED = "changes_requested"
    REMINDER = "reminder"
    TRACKING_ASSIGNED = "tracking_assigned"
    ATTESTATION_SIGNED = "attestation_signed"
    ABSENCE_REPORTED = "absence_reported"


SUBJECTS: Dict[ConventionEmailEvent, str] = {
    ConventionEmailEvent.SUBMISSION_RECEIVED: "Internship agreement submitted",
    ConventionEmailEvent.SIGNATURE_REQUESTED: "Signature requested: internship agreement of {student_name}",
    ConventionEmailEvent.FULLY_SIGNED: "Internship agreement fully signed: {student_name}",
    ConventionEmailEvent.CHANGES_REQUESTED: "Changes requested on your internship agreement",
    ConventionEmailEvent.REMINDER: "Reminder: your signature is awaited ({student_name})",
    ConventionEmailEvent.TRACKING_ASSIGNED: "Tracking teacher assignment: {student_name}",
    ConventionEmailEvent.ATTESTATION_SIGNED: "End-of-internship attestation signed: {student_name}",
    ConventionEmailEvent.ABSENCE_REPORTED: "Absence reported: {student_name}",
}

TEMPLATE_MAP: Dict[ConventionEmailEvent, str] = {
    event: f"conventions/{event.value}.txt" for event in ConventionEmailEvent
}

FULLY_SIGNED_RECIPIENTS: Tuple[Role, ...] = (Role.STUDENT, Role.TEACHER, Role.COMPANY, Role.TUTOR)


@dataclass
class NotificationIntent:
    event: ConventionEmailEvent
    recipient: str
    convention_id: str
    role: Optional[Role] = None
    context: Dict[str, Any] = field(default_factory=dict)


def _base_context(convention: Convention) -> Dict[str, Any]:
    return {
        "convention_id": convention.id,
        "student_name": convention.student_name,
        "student_class": convention.student_class,
        "company_name": convention.company_name,
        "school_name": convention.school_name,
        "start_date": convention.start_date,
        "end_date": convention.end_date,
        "status": convention.status.value,
        "action_url": f"{settings.app_url}/conventions/{convention.id}",
    }


def build_intent(event: ConventionEmailEvent, convention: Convention, recipient: str,
                 role: Optional[Role] = None, **extra: Any) -> NotificationIntent:
    ctx = _base_context(convention)
    if role is not None:
        ctx["role"] = role.value
        ctx["role_label"] = ROLE_LABELS[role]
    ctx.update(extra)
    return NotificationIntent(event=event, recipient=recipient, convention_id=convention.id, role=role, context=ctx)


def _for_role(event: ConventionEmailEvent, convention: Convention, role: Role, **extra: Any) -> List[NotificationIntent]:
    address = convention.address_for(role)
    if not address:
        logger.warning(f"[convention_email] No address for role={role.value} convention={convention.id}; skipping {event.value}")
        return []
    return [build_intent(event, convention, address, role, **extra)]


def notifications_for_status(convention: Convention, status: ConventionStatus) -> List[NotificationIntent]:
    """Messages owed once ``convention`` reaches ``status``."""
    if status == ConventionStatus.VALIDATED_HEAD:
        roles = list(FULLY_SIGNED_RECIPIENTS)
        if convention.is_minor:
            roles.append(Role.PARENT)
        intents: List[NotificationIntent] = []
        for role in roles:
            intents.extend(_for_role(ConventionEmailEvent.FULLY_SIGNED, convention, role))
        return intents
    role = blocking_role(status, convention.is_minor)
    if role is None:
        return []
    return _for_role(ConventionEmailEvent.SIGNATURE_REQUESTED, convention, role)


def render_convention_email(intent: NotificationIntent) -> Tuple[str, str]:
    """Render subject and plain-text body for a workflow event."""
    ctx = {**intent.context, "app_url": settings.app_url}
    subject = SUBJECTS[intent.event].format_map(_Default(ctx))

    body = None
    template_name = TEMPLATE_MAP[intent.event]
    try:
        body = get_email_template_env().get_template(template_name).render(**ctx, subject=subject)
    except Exception as e:
        logger.error(f"[convention_email] Failed to render template {template_name}: {e}")

    if not body:
        # Fallback minimal text
        lines = [subject, f"Agreement: {ctx.get('convention_id')}"]
        if ctx.get("action_url"):
            lines.append(f"Link: {ctx['action_url']}")
        body = "\n".join(lines)
    return subject, body


class _Default(dict):
    def __missing__(self, key):
        return ""


# Senders

class NotificationSender(Protocol):
    def send(self, address: str, subject: str, body: str, **meta: Any) -> None: ...


class EmailSender:
    """Delivers through SendGrid and keeps an in-app copy of each message."""

    def __init__(self, session_factory: Optional[Callable[[], Any]] = None):
        self.session_factory = session_factory

    def send(self, address: str, subject: str, body: str, convention_id: Optional[str] = None, link: Optional[str] = None) -> None:
        html_body = "<br>\n".join(html.escape(line) for line in body.splitlines())
        if not send_email(address, subject, html_body, body):
            raise NotificationDispatchError(address, subject)
        self._record_in_app(address, subject, body, convention_id, link)

    def _record_in_app(self, address, subject, body, convention_id, link):
        if self.session_factory is None:
            return
        db = self.session_factory()
        try:
            db.add(Notification(recipient_address=address, convention_id=convention_id, title=subject, message=body, link=link))
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(f"[convention_email] Failed to store in-app notification for {address}: {e}")
        finally:
            db.close()


class RecordingSender:
    """Keeps messages in memory. Used in demo mode and in tests."""

    def __init__(self, fail_for: Iterable[str] = ()):
        self.sent: List[Dict[str, str]] = []
        self.fail_for = set(fail_for)

    def send(self, address: str, subject: str, body: str, **_: Any) -> None:
        if address in self.fail_for:
            raise NotificationDispatchError(address, subject, RuntimeError("delivery refused"))
        self.sent.append({"to": address, "subject": subject, "body": body})

    def recipients(self) -> List[str]:
        return [m["to"] for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


class NotificationDispatcher:
    """Fire-and-forget delivery of notification intents.

    With ``background=True`` each intent is handed to a thread pool and the call
    returns at once. Without it delivery runs inline, which keeps tests
    deterministic; failures are swallowed and logged either way.
    """

    def __init__(self, sender: NotificationSender, background: bool = False, max_workers: Optional[int] = None):
        self.sender = sender
        self._executor: Optional[Executor] = None
        if background:
            self._executor = ThreadPoolExecutor(
                max_workers=max_workers or settings.notification_workers,
                thread_name_prefix="notify",
            )

    def dispatch(self, intents: Iterable[NotificationIntent]) -> None:
        for intent in intents:
            if self._executor is not None:
                self._executor.submit(self._deliver, intent)
            else:
                self._deliver(intent)

    def _deliver(self, intent: NotificationIntent) -> bool:
        start = utc_now()
        subject, body = render_convention_email(intent)
        success = False
        try:
            self.sender.send(intent.recipient, subject, body, convention_id=intent.convention_id,
                             link=intent.context.get("action_url"))
            success = True
        except NotificationDispatchError as e:
            logger.warning(f"[convention_email] {e}")
        except Exception as e:
            err = NotificationDispatchError(intent.recipient, subject, e)
            logger.error(f"[convention_email] {err}", exc_info=True)
        finally:
            duration_ms = int((utc_now() - start).total_seconds() * 1000)
            log_record = {
                "component": "convention_email",
                "event": intent.event.value,
                "to": intent.recipient,
                "convention_id": intent.convention_id,
                "success": success,
                "duration_ms": duration_ms,
            }
            logger.info(f"CONVENTION_EMAIL_METRIC {log_record}")
        return success

    def shutdown(self, wait: bool = True) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=wait)
