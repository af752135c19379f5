from typing import List

from fastapi import APIRouter, Depends, Query

from signflow.core.context import WorkflowContext
from signflow.exceptions import ForbiddenException
from signflow.schemas.convention import Absence, Convention, Role
from signflow.schemas.workflow import (
    AbsenceCreate,
    AbsenceJustify,
    AttestationSign,
    BulkSignOut,
    BulkSignRequest,
    ConventionSubmit,
    EmailUpdate,
    FeedbackCreate,
    IntegrityOut,
    ReminderOut,
    SignOut,
    SignRequest,
    TrackingTeacherAssign,
)
from signflow.services.auth import CurrentUser, get_current_user, get_workflow_context
from signflow.services.factory import ConventionServices, get_services
from signflow.services.workflow import SignatureResult

router = APIRouter(prefix="/conventions", tags=["Conventions"])

# Address fields of the people who run the agreement on the school side
STAFF_FIELDS = ("teacher_email", "tracking_teacher_email", "school_head_email")
PARTICIPANT_FIELDS = (
    "student_email", "guardian_email", "company_rep_email", "tutor_email", "cpe_email",
) + STAFF_FIELDS


# Utility

def _holds(convention: Convention, user: CurrentUser, fields) -> bool:
    email = user.email.lower()
    return any((getattr(convention, f) or "").lower() == email for f in fields)


def _require_participant(convention: Convention, user: CurrentUser) -> None:
    if not _holds(convention, user, PARTICIPANT_FIELDS):
        raise ForbiddenException("You are not a party to this agreement")


def _require_staff(convention: Convention, user: CurrentUser) -> None:
    if not _holds(convention, user, STAFF_FIELDS):
        raise ForbiddenException("Only the school staff of this agreement can do this")


def _sign_out(result: SignatureResult) -> SignOut:
    return SignOut(
        convention=result.convention,
        role=result.role,
        code=result.code,
        previous_status=result.previous_status,
        new_status=result.new_status,
    )


# Endpoints

@router.post("", response_model=SignOut, status_code=201)
def submit_convention(
    payload: ConventionSubmit,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    if payload.student_email.lower() != user.email.lower():
        raise ForbiddenException("Only the student can submit their own agreement")
    result = services.workflow.submit(context, payload.to_data(), artifact=payload.signature_artifact, code=payload.code)
    return _sign_out(result)


@router.get("", response_model=List[Convention])
def list_conventions(
    role: Role = Query(Role.STUDENT),
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    return services.workflow.list_for_actor(context, role, user.email)


@router.post("/bulk-sign", response_model=BulkSignOut)
def bulk_sign(
    payload: BulkSignRequest,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    result = services.bulk.sign_all(
        context,
        payload.convention_ids,
        payload.role,
        artifact=payload.artifact,
        dual_sign=payload.dual_sign,
        actor_address=user.email,
    )
    return BulkSignOut(
        role=result.role,
        completed=result.completed,
        processed=result.processed_ids,
        unprocessed=result.unprocessed,
        failed_id=result.failed_id,
        error=getattr(result.error, "detail", None) if result.error else None,
        error_type=type(result.error).__name__ if result.error else None,
    )


@router.get("/{convention_id}", response_model=Convention)
def get_convention(
    convention_id: str,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    convention = services.workflow.get(context, convention_id)
    _require_participant(convention, user)
    return convention


@router.post("/{convention_id}/sign", response_model=SignOut)
def sign_convention(
    convention_id: str,
    payload: SignRequest,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    result = services.workflow.sign(
        context,
        convention_id,
        payload.role,
        artifact=payload.artifact,
        code=payload.code,
        dual_sign=payload.dual_sign,
        actor_address=user.email,
    )
    return _sign_out(result)


@router.post("/{convention_id}/feedback", response_model=Convention)
def add_feedback(
    convention_id: str,
    payload: FeedbackCreate,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_staff(services.workflow.get(context, convention_id), user)
    return services.workflow.add_feedback(context, convention_id, user.email, payload.message)


@router.patch("/{convention_id}/emails", response_model=Convention)
def update_email(
    convention_id: str,
    payload: EmailUpdate,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_staff(services.workflow.get(context, convention_id), user)
    return services.workflow.update_email(context, convention_id, payload.role, payload.email, actor=user.email)


@router.post("/{convention_id}/tracking-teacher", response_model=Convention)
def assign_tracking_teacher(
    convention_id: str,
    payload: TrackingTeacherAssign,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_staff(services.workflow.get(context, convention_id), user)
    return services.workflow.assign_tracking_teacher(context, convention_id, payload.email, actor=user.email)


@router.post("/{convention_id}/reminders", response_model=ReminderOut)
def send_reminder(
    convention_id: str,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_participant(services.workflow.get(context, convention_id), user)
    result = services.reminders.remind(context, convention_id)
    return ReminderOut(
        convention_id=result.convention_id,
        role=result.role,
        recipient=result.recipient,
        sent_at=result.sent_at,
        next_allowed_at=result.next_allowed_at,
    )


@router.post("/{convention_id}/absences", response_model=Absence, status_code=201)
def report_absence(
    convention_id: str,
    payload: AbsenceCreate,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_participant(services.workflow.get(context, convention_id), user)
    return services.workflow.report_absence(
        context,
        convention_id,
        absence_date=payload.date,
        kind=payload.kind,
        duration_hours=payload.duration_hours,
        reporter_address=user.email,
        reason=payload.reason,
    )


@router.patch("/{convention_id}/absences/{absence_id}", response_model=Absence)
def justify_absence(
    convention_id: str,
    absence_id: str,
    payload: AbsenceJustify,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_participant(services.workflow.get(context, convention_id), user)
    return services.workflow.justify_absence(context, convention_id, absence_id, payload.reason, actor=user.email)


@router.post("/{convention_id}/attestation", response_model=Convention)
def sign_attestation(
    convention_id: str,
    payload: AttestationSign,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    convention = services.workflow.get(context, convention_id)
    if not _holds(convention, user, ("company_rep_email",)):
        raise ForbiddenException("Only the company representative can sign the attestation")
    return services.workflow.sign_attestation(
        context,
        convention_id,
        total_days=payload.total_days,
        absences_count=payload.absences_count,
        artifact=payload.artifact,
        signer_name=payload.signer_name,
        signer_function=payload.signer_function,
    )


@router.get("/{convention_id}/integrity", response_model=IntegrityOut)
def check_integrity(
    convention_id: str,
    user: CurrentUser = Depends(get_current_user),
    context: WorkflowContext = Depends(get_workflow_context),
    services: ConventionServices = Depends(get_services),
):
    _require_participant(services.workflow.get(context, convention_id), user)
    report = services.workflow.verify_integrity(context, convention_id)
    return IntegrityOut(
        convention_id=report.convention_id,
        valid=report.valid,
        certificate_hash=report.certificate_hash,
        certificate_valid=report.certificate_valid,
        attestation_hash=report.attestation_hash,
        attestation_valid=report.attestation_valid,
    )
