import logging

import pytest

from signflow.exceptions import NotificationDispatchError
from signflow.schemas.convention import Role
from signflow.services import convention_notifications as notifications
from signflow.services.convention_notifications import (
    ConventionEmailEvent,
    EmailSender,
    NotificationDispatcher,
    RecordingSender,
    build_intent,
    render_convention_email,
)

from conftest import make_convention


def test_render_signature_request():
    conv = make_convention()
    intent = build_intent(ConventionEmailEvent.SIGNATURE_REQUESTED, conv, conv.teacher_email, Role.TEACHER)
    subject, body = render_convention_email(intent)
    assert subject == "Signature requested: internship agreement of Lea Bernard"
    assert "Referent teacher" in body
    assert "06/04/2026 to 01/05/2026" in body
    assert "/conventions/conv-1" in body


def test_render_falls_back_when_template_breaks(monkeypatch):
    def broken_env():
        raise RuntimeError("template dir missing")

    monkeypatch.setattr(notifications, "get_email_template_env", broken_env)
    conv = make_convention()
    subject, body = render_convention_email(build_intent(ConventionEmailEvent.REMINDER, conv, conv.tutor_email, Role.TUTOR))
    assert subject.startswith("Reminder")
    assert "Agreement: conv-1" in body


def test_dispatcher_swallows_unexpected_sender_errors(caplog, monkeypatch):
    # app loggers do not propagate to the root handler by default
    monkeypatch.setattr(logging.getLogger("signflow"), "propagate", True)

    class Exploding:
        def send(self, *args, **kwargs):
            raise ConnectionError("smtp down")

    conv = make_convention()
    dispatcher = NotificationDispatcher(Exploding())
    with caplog.at_level(logging.INFO, logger="signflow.convention_email"):
        dispatcher.dispatch([build_intent(ConventionEmailEvent.FULLY_SIGNED, conv, conv.student_email, Role.STUDENT)])
    assert "smtp down" in caplog.text
    assert "CONVENTION_EMAIL_METRIC" in caplog.text


def test_background_dispatch_delivers():
    sender = RecordingSender()
    conv = make_convention()
    dispatcher = NotificationDispatcher(sender, background=True, max_workers=2)
    dispatcher.dispatch([
        build_intent(ConventionEmailEvent.FULLY_SIGNED, conv, conv.address_for(role), role)
        for role in (Role.STUDENT, Role.TEACHER)
    ])
    dispatcher.shutdown()
    assert sorted(sender.recipients()) == sorted([conv.student_email, conv.teacher_email])


def test_email_sender_raises_when_sendgrid_unavailable():
    # the autouse fixture leaves no SendGrid client
    with pytest.raises(NotificationDispatchError):
        EmailSender().send("someone@example.com", "Subject", "Body")


def test_email_sender_records_in_app_copy(sql_db, monkeypatch):
    from signflow.models.notification import Notification

    monkeypatch.setattr(notifications, "send_email", lambda *args, **kwargs: True)
    EmailSender(sql_db).send("someone@example.com", "Subject", "Line one\nLine two", convention_id="conv-1")

    db = sql_db()
    try:
        stored = db.query(Notification).one()
        assert stored.recipient_address == "someone@example.com"
        assert stored.convention_id == "conv-1"
        assert stored.is_read is False
    finally:
        db.close()
