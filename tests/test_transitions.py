import pytest

from signflow.exceptions import NoOpTransitionError, StaleTransitionError, ValidationException
from signflow.schemas.convention import AuditAction, Convention, ConventionStatus as S, Role
from signflow.services.convention_notifications import ConventionEmailEvent
from signflow.services.transitions import (
    apply_transition,
    derive_status,
    eligible_roles,
    expected_status,
)

from conftest import ADDRESSES, T0, make_convention, minor_payload


def _sign_chain(convention, *roles, **kwargs):
    for role in roles:
        convention = apply_transition(convention, role, now=T0, **kwargs).convention
    return convention


def test_adult_path_reaches_validated_head():
    conv = make_convention()
    seen = []
    for role in (Role.STUDENT, Role.TEACHER, Role.COMPANY, Role.TUTOR, Role.HEAD):
        t = apply_transition(conv, role, artifact=f"sig-{role.value}", now=T0)
        conv = t.convention
        seen.append(t.new_status)
    assert seen == [S.SUBMITTED, S.VALIDATED_TEACHER, S.SIGNED_COMPANY, S.SIGNED_TUTOR, S.VALIDATED_HEAD]
    assert conv.signed_roles == [Role.STUDENT, Role.TEACHER, Role.COMPANY, Role.TUTOR, Role.HEAD]
    assert len(conv.audit_logs) == 5
    assert all(e.action == AuditAction.SIGNED for e in conv.audit_logs)


def test_minor_requires_guardian_before_teacher():
    conv = Convention(**minor_payload(), id="conv-minor", created_at=T0, updated_at=T0)
    conv = _sign_chain(conv, Role.STUDENT)
    assert conv.status == S.SUBMITTED

    # teacher cannot skip the guardian for a minor
    with pytest.raises(StaleTransitionError):
        apply_transition(conv, Role.TEACHER, now=T0)

    conv = _sign_chain(conv, Role.PARENT)
    assert conv.status == S.SIGNED_PARENT
    conv = _sign_chain(conv, Role.TEACHER)
    assert conv.status == S.VALIDATED_TEACHER


def test_parent_not_eligible_for_adult():
    conv = _sign_chain(make_convention(), Role.STUDENT)
    with pytest.raises(StaleTransitionError):
        apply_transition(conv, Role.PARENT, now=T0)


def test_tutor_may_sign_before_company():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    t = apply_transition(conv, Role.TUTOR, now=T0)
    # waiting on the company, status does not move
    assert t.new_status == S.VALIDATED_TEACHER
    assert t.convention.has_signed(Role.TUTOR)
    assert [n.role for n in t.notifications] == [Role.COMPANY]

    t = apply_transition(t.convention, Role.COMPANY, now=T0)
    assert t.new_status == S.SIGNED_TUTOR
    assert [n.role for n in t.notifications] == [Role.HEAD]


def test_dual_sign_covers_both_partner_roles():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    t = apply_transition(conv, Role.COMPANY, artifact="stamp", code="ABCDEFGH-12345", dual_sign=True, now=T0)
    assert t.new_status == S.SIGNED_TUTOR
    assert t.changed_roles == [Role.COMPANY, Role.TUTOR]
    assert t.convention.signatures[Role.TUTOR].code == "ABCDEFGH-12345"
    assert t.convention.signatures[Role.TUTOR].artifact == "stamp"
    assert "also for" in t.audit_entry.detail


def test_dual_sign_keeps_counterpart_signature():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    conv = apply_transition(conv, Role.TUTOR, code="TUTORXXX-11111", now=T0).convention
    t = apply_transition(conv, Role.COMPANY, code="COMPANYX-22222", dual_sign=True, now=T0)
    assert t.changed_roles == [Role.COMPANY]
    assert t.convention.signatures[Role.TUTOR].code == "TUTORXXX-11111"
    assert t.new_status == S.SIGNED_TUTOR


def test_dual_sign_rejected_for_other_roles():
    conv = _sign_chain(make_convention(), Role.STUDENT)
    with pytest.raises(ValidationException):
        apply_transition(conv, Role.TEACHER, dual_sign=True, now=T0)


def test_head_cannot_sign_early():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER, Role.COMPANY)
    with pytest.raises(StaleTransitionError):
        apply_transition(conv, Role.HEAD, now=T0)


def test_repeat_signature_is_noop():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    with pytest.raises(NoOpTransitionError):
        apply_transition(conv, Role.TEACHER, now=T0)

    final = _sign_chain(conv, Role.COMPANY, Role.TUTOR, Role.HEAD)
    with pytest.raises(NoOpTransitionError):
        apply_transition(final, Role.HEAD, now=T0)


def test_company_resign_with_new_code_is_allowed():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    conv = apply_transition(conv, Role.COMPANY, code="FIRSTCOD-00001", now=T0).convention
    assert conv.status == S.SIGNED_COMPANY

    t = apply_transition(conv, Role.COMPANY, code="SECONDCO-00002", now=T0)
    assert t.new_status == S.SIGNED_COMPANY
    assert t.convention.signatures[Role.COMPANY].code == "SECONDCO-00002"
    assert t.convention.signatures[Role.COMPANY].previous_codes == ["FIRSTCOD-00001"]
    assert len(t.convention.audit_logs) == len(conv.audit_logs) + 1

    # same code again: nothing to do
    with pytest.raises(NoOpTransitionError):
        apply_transition(t.convention, Role.COMPANY, code="SECONDCO-00002", now=T0)
    # no code means the one already issued
    with pytest.raises(NoOpTransitionError):
        apply_transition(t.convention, Role.COMPANY, now=T0)


def test_student_resubmits_after_rejection():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    conv = conv.model_copy(update={"status": S.REJECTED})
    assert eligible_roles(conv) == [Role.STUDENT]

    t = apply_transition(conv, Role.STUDENT, now=T0)
    # earlier signatures still count
    assert t.new_status == S.VALIDATED_TEACHER


def test_audit_actor_falls_back_to_unknown():
    conv = make_convention()
    conv = conv.model_copy(update={"student_email": ""})
    t = apply_transition(conv, Role.STUDENT, now=T0)
    assert t.audit_entry.actor_address == "unknown"

    t = apply_transition(make_convention(), Role.STUDENT, now=T0)
    assert t.audit_entry.actor_address == ADDRESSES[Role.STUDENT]


SIGNING_ORDER = (Role.STUDENT, Role.PARENT, Role.TEACHER, Role.COMPANY, Role.TUTOR, Role.HEAD)


@pytest.mark.parametrize("position", range(len(SIGNING_ORDER)), ids=[r.value for r in SIGNING_ORDER])
def test_audit_actor_is_the_role_address(position):
    role = SIGNING_ORDER[position]
    conv = Convention(**minor_payload(), id="conv-minor", created_at=T0, updated_at=T0)
    conv = _sign_chain(conv, *SIGNING_ORDER[:position])

    t = apply_transition(conv, role, now=T0)
    assert t.audit_entry.actor_address == ADDRESSES[role]
    assert t.convention.audit_logs[-1] == t.audit_entry
    assert len(t.convention.audit_logs) == position + 1


def test_input_convention_is_not_mutated():
    conv = make_convention()
    before = conv.model_dump()
    apply_transition(conv, Role.STUDENT, artifact="sig", now=T0)
    assert conv.model_dump() == before


def test_status_always_matches_signatures():
    conv = make_convention()
    for role in (Role.STUDENT, Role.TEACHER, Role.TUTOR, Role.COMPANY, Role.HEAD):
        conv = apply_transition(conv, role, now=T0).convention
        assert conv.status == expected_status(conv)


def test_fully_signed_notifications():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER, Role.COMPANY, Role.TUTOR)
    t = apply_transition(conv, Role.HEAD, now=T0)
    assert {n.event for n in t.notifications} == {ConventionEmailEvent.FULLY_SIGNED}
    recipients = [n.recipient for n in t.notifications]
    assert ADDRESSES[Role.HEAD] not in recipients
    assert sorted(recipients) == sorted(
        ADDRESSES[r] for r in (Role.STUDENT, Role.TEACHER, Role.COMPANY, Role.TUTOR)
    )


def test_derive_status_table():
    assert derive_status([], False) == S.DRAFT
    assert derive_status([Role.STUDENT], False) == S.SUBMITTED
    assert derive_status([Role.STUDENT, Role.PARENT], True) == S.SIGNED_PARENT
    assert derive_status([Role.STUDENT, Role.PARENT], False) == S.SUBMITTED
    assert derive_status([Role.STUDENT, Role.TEACHER, Role.TUTOR], False) == S.VALIDATED_TEACHER
    assert derive_status([Role.STUDENT, Role.TEACHER, Role.COMPANY, Role.TUTOR], False) == S.SIGNED_TUTOR
    assert derive_status(list(Role), True) == S.VALIDATED_HEAD


def test_tutor_can_resign_over_a_dual_signature():
    conv = _sign_chain(make_convention(), Role.STUDENT, Role.TEACHER)
    conv = apply_transition(conv, Role.COMPANY, code="DUALSIGN-33333", dual_sign=True, now=T0).convention

    t = apply_transition(conv, Role.TUTOR, code="OWNTUTOR-44444", now=T0)
    assert t.new_status == S.SIGNED_TUTOR
    assert t.convention.signatures[Role.TUTOR].code == "OWNTUTOR-44444"
    assert t.convention.signatures[Role.COMPANY].code == "DUALSIGN-33333"
    assert t.convention.signatures[Role.TUTOR].previous_codes == ["DUALSIGN-33333"]
    assert t.convention.signatures[Role.COMPANY].previous_codes == []
