"""Reminders to the party currently holding up a convention.

At most one reminder per convention per cooldown window, measured against the
persisted ``last_reminder_at`` so the limit survives restarts.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from signflow.core.context import WorkflowContext
from signflow.core.settings import settings
from signflow.exceptions import CooldownActiveError, PersistenceError, StaleTransitionError
from signflow.schemas.convention import Convention, ConventionStatus, Role
from signflow.services import audit
from signflow.services.cache import ConventionCache
from signflow.services.convention_notifications import ConventionEmailEvent, NotificationDispatcher, build_intent
from signflow.services.document_store import DocumentStore, load_convention
from signflow.utils.datetime import ensure_aware_utc, utc_now

logger = logging.getLogger("signflow.reminders")

REMINDABLE_STATUSES = (
    ConventionStatus.SUBMITTED,
    ConventionStatus.SIGNED_PARENT,
    ConventionStatus.VALIDATED_TEACHER,
    ConventionStatus.SIGNED_COMPANY,
    ConventionStatus.SIGNED_TUTOR,
)


@dataclass
class ReminderResult:
    convention_id: str
    role: Role
    recipient: str
    sent_at: datetime
    next_allowed_at: datetime


@dataclass
class ReminderSweepResult:
    sent: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)


class ReminderScheduler:
    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        cache: Optional[ConventionCache] = None,
        cooldown_hours: Optional[int] = None,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.cache = cache if cache is not None else ConventionCache()
        hours = settings.reminder_cooldown_hours if cooldown_hours is None else cooldown_hours
        self.cooldown = timedelta(hours=hours)

    def remaining_cooldown(self, convention: Convention, now: datetime) -> int:
        """Seconds before another reminder is allowed; 0 when one can be sent now."""
        last = ensure_aware_utc(convention.last_reminder_at)
        if last is None:
            return 0
        remaining = (last + self.cooldown - ensure_aware_utc(now)).total_seconds()
        return max(0, math.ceil(remaining))

    def remind(self, context: WorkflowContext, convention_id: str, now: Optional[datetime] = None) -> ReminderResult:
        now = now or utc_now()
        convention = load_convention(self.store, context, convention_id)

        role = convention.blocking_role
        if role is None:
            raise StaleTransitionError("reminder", convention.status.value, convention.id)
        recipient = convention.address_for(role)
        if not recipient:
            raise StaleTransitionError(role.value, convention.status.value, convention.id)

        wait = self.remaining_cooldown(convention, now)
        if wait > 0:
            raise CooldownActiveError(wait, convention_id=convention.id)

        doc = self.store.update_fields(convention.id, {"last_reminder_at": now.isoformat()})
        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_reminder(convention.id, role.value, recipient)
        self.dispatcher.dispatch([build_intent(ConventionEmailEvent.REMINDER, convention, recipient, role)])
        return ReminderResult(convention.id, role, recipient, now, now + self.cooldown)

    def remind_all(self, now: Optional[datetime] = None, context: Optional[WorkflowContext] = None) -> ReminderSweepResult:
        """Remind every pending convention, skipping those still in their cooldown window."""
        now = now or utc_now()
        context = context or WorkflowContext()
        result = ReminderSweepResult()
        for status in REMINDABLE_STATUSES:
            for doc in self.store.query_by_field("status", status.value):
                convention_id = doc["id"]
                if not context.can_see(doc.get("school_id")):
                    continue
                try:
                    self.remind(context, convention_id, now)
                    result.sent.append(convention_id)
                except CooldownActiveError:
                    result.skipped.append(convention_id)
                except (StaleTransitionError, PersistenceError) as e:
                    logger.warning(f"[reminders] Sweep could not remind convention={convention_id}: {e.detail}")
                    result.failed[convention_id] = e.detail
        logger.info(f"[reminders] Sweep done sent={len(result.sent)} skipped={len(result.skipped)} failed={len(result.failed)}")
        return result
