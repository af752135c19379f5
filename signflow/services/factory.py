"""Wiring of the workflow services.

The store backend and notification sender are chosen once here, at startup:
``STORE_BACKEND=memory`` gives the demo setup (nothing persisted, messages kept
in memory).
"""
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Optional

from signflow.core.settings import settings
from signflow.db import SessionLocal
from signflow.services.bulk import BulkSignCoordinator
from signflow.services.cache import ConventionCache
from signflow.services.convention_notifications import (
    EmailSender,
    NotificationDispatcher,
    NotificationSender,
    RecordingSender,
)
from signflow.services.document_store import DocumentStore, InMemoryConventionStore, SqlConventionStore
from signflow.services.reminders import ReminderScheduler
from signflow.services.verification import VerificationResolver
from signflow.services.workflow import ConventionWorkflow

logger = logging.getLogger("signflow.workflow")


@dataclass
class ConventionServices:
    store: DocumentStore
    cache: ConventionCache
    dispatcher: NotificationDispatcher
    workflow: ConventionWorkflow
    resolver: VerificationResolver
    reminders: ReminderScheduler
    bulk: BulkSignCoordinator

    def shutdown(self) -> None:
        self.dispatcher.shutdown()
        self.resolver.shutdown()


def build_services(
    store: Optional[DocumentStore] = None,
    sender: Optional[NotificationSender] = None,
    background: bool = True,
    verification_workers: Optional[int] = None,
) -> ConventionServices:
    if store is None:
        store = InMemoryConventionStore() if settings.is_demo else SqlConventionStore(SessionLocal)
    if sender is None:
        sender = RecordingSender() if settings.is_demo else EmailSender(SessionLocal)
    cache = ConventionCache()
    dispatcher = NotificationDispatcher(sender, background=background)
    workflow = ConventionWorkflow(store, dispatcher, cache=cache)
    return ConventionServices(
        store=store,
        cache=cache,
        dispatcher=dispatcher,
        workflow=workflow,
        resolver=VerificationResolver(store, cache=cache, max_workers=verification_workers),
        reminders=ReminderScheduler(store, dispatcher, cache=cache),
        bulk=BulkSignCoordinator(workflow),
    )


# Module-level singleton for convenience
_services: Optional[ConventionServices] = None


def get_services() -> ConventionServices:
    """FastAPI dependency returning the process-wide services."""
    global _services
    if _services is None:
        _services = build_services()
        logger.info(f"[workflow] Services ready store={type(_services.store).__name__} demo={settings.is_demo}")
    return _services


def reset_services() -> None:
    """Shut down and drop the singleton (useful for testing)."""
    global _services
    if _services is not None:
        _services.shutdown()
    _services = None
