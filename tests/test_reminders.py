from datetime import timedelta

import pytest

from signflow.core.context import WorkflowContext
from signflow.exceptions import CooldownActiveError, StaleTransitionError
from signflow.schemas.convention import Role

from conftest import ADDRESSES, T0, minor_payload


def test_reminder_goes_to_blocking_party(submit, services, ctx, sender):
    conv = submit()
    sender.clear()
    result = services.reminders.remind(ctx, conv.id, now=T0)
    assert result.role == Role.TEACHER
    assert result.recipient == ADDRESSES[Role.TEACHER]
    assert result.next_allowed_at == T0 + timedelta(hours=48)
    assert sender.recipients() == [ADDRESSES[Role.TEACHER]]
    assert sender.sent[0]["subject"].startswith("Reminder")
    assert services.cache.get(conv.id).last_reminder_at == T0


def test_minor_reminder_targets_guardian(submit, services, ctx):
    conv = submit(minor_payload())
    assert services.reminders.remind(ctx, conv.id, now=T0).role == Role.PARENT


def test_cooldown(submit, services, ctx, sender):
    conv = submit()
    services.reminders.remind(ctx, conv.id, now=T0)

    with pytest.raises(CooldownActiveError) as exc:
        services.reminders.remind(ctx, conv.id, now=T0 + timedelta(hours=47, minutes=30))
    assert exc.value.retry_after_seconds == 30 * 60

    # the window is measured on the stored timestamp, not on this process
    services.cache.clear()
    sender.clear()
    result = services.reminders.remind(ctx, conv.id, now=T0 + timedelta(hours=48))
    assert result.recipient == ADDRESSES[Role.TEACHER]
    assert len(sender.sent) == 1


def test_reminder_tracks_progress(submit, sign_as, services, ctx):
    conv = submit()
    sign_as(conv.id, Role.TEACHER, Role.TUTOR)
    # tutor signed first, the company is still missing
    assert services.reminders.remind(ctx, conv.id, now=T0).role == Role.COMPANY


def test_no_reminder_when_nobody_is_pending(submit, sign_as, workflow, services, ctx):
    done = submit()
    sign_as(done.id, Role.TEACHER, Role.COMPANY, Role.TUTOR, Role.HEAD)
    with pytest.raises(StaleTransitionError):
        services.reminders.remind(ctx, done.id, now=T0)

    rejected = submit()
    workflow.add_feedback(ctx, rejected.id, ADDRESSES[Role.TEACHER], "Wrong company address")
    with pytest.raises(StaleTransitionError):
        services.reminders.remind(ctx, rejected.id, now=T0)


def test_sweep(submit, sign_as, services, ctx):
    pending = submit()
    recent = submit()
    done = submit()
    sign_as(done.id, Role.TEACHER, Role.COMPANY, Role.TUTOR, Role.HEAD)
    services.reminders.remind(ctx, recent.id, now=T0)

    result = services.reminders.remind_all(now=T0 + timedelta(hours=1))
    assert result.sent == [pending.id]
    assert result.skipped == [recent.id]
    assert result.failed == {}


def test_sweep_respects_school_scope(submit, services):
    conv = submit()
    result = services.reminders.remind_all(now=T0, context=WorkflowContext(school_id="other-school"))
    assert conv.id not in result.sent
