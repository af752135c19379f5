"""Orchestration of the convention signature workflow.

Every mutation follows the same steps: fresh read from the store, pure
computation, one atomic field-level write (with its audit entry), mirror update,
then fire-and-forget notifications. A store failure aborts before the mirror
or any notification is touched.
"""
from __future__ import annotations
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import EmailStr, TypeAdapter, ValidationError

from signflow.core.context import WorkflowContext
from signflow.exceptions import (
    CodeCollisionError,
    ForbiddenException,
    NoOpTransitionError,
    NotFoundException,
    StaleTransitionError,
    ValidationException,
)
from signflow.schemas.convention import (
    ROLE_ADDRESS_FIELDS,
    Absence,
    AbsenceKind,
    AttestationRecord,
    Convention,
    ConventionData,
    ConventionStatus,
    Feedback,
    Role,
)
from signflow.services import audit
from signflow.services.cache import ConventionCache
from signflow.services.codes import attestation_hash, certificate_hash, is_well_formed, issue_code
from signflow.services.convention_notifications import (
    ConventionEmailEvent,
    NotificationDispatcher,
    build_intent,
)
from signflow.services.document_store import DocumentStore, load_convention
from signflow.services.transitions import COUNTERPART, apply_transition, check_can_sign
from signflow.services.verification import CODE_FIELDS, normalize_code
from signflow.utils.datetime import utc_now

logger = logging.getLogger("signflow.workflow")

_email_adapter = TypeAdapter(EmailStr)


@dataclass
class SignatureResult:
    convention: Convention
    role: Role
    code: str
    previous_status: ConventionStatus
    new_status: ConventionStatus


@dataclass
class IntegrityReport:
    convention_id: str
    certificate_hash: Optional[str]
    certificate_valid: bool
    attestation_hash: Optional[str] = None
    attestation_valid: Optional[bool] = None

    @property
    def valid(self) -> bool:
        return self.certificate_valid and self.attestation_valid is not False


def _validated_email(value: str) -> str:
    try:
        return str(_email_adapter.validate_python(value.strip()))
    except (ValidationError, AttributeError):
        raise ValidationException(f"Invalid email address: {value!r}")


def _json(model) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def _iso(dt: datetime) -> str:
    return dt.isoformat()


class ConventionWorkflow:
    def __init__(
        self,
        store: DocumentStore,
        dispatcher: NotificationDispatcher,
        cache: Optional[ConventionCache] = None,
        signing_secret: Optional[str] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.cache = cache if cache is not None else ConventionCache()
        self.signing_secret = signing_secret
        self.clock = clock

    # Reads

    def _load(self, context: WorkflowContext, convention_id: str) -> Convention:
        convention = load_convention(self.store, context, convention_id)
        self.cache.put(convention)
        return convention

    def get(self, context: WorkflowContext, convention_id: str) -> Convention:
        return self._load(context, convention_id)

    def list_for_actor(self, context: WorkflowContext, role: Role | str, address: str) -> List[Convention]:
        """Conventions where ``address`` holds ``role``; teachers also see the ones they track."""
        role = Role(role)
        fields = [ROLE_ADDRESS_FIELDS[role]]
        if role == Role.TEACHER:
            fields.append("tracking_teacher_email")
        seen: Dict[str, Convention] = {}
        for field in fields:
            for doc in self.store.query_by_field(field, address):
                if doc["id"] in seen or not context.can_see(doc.get("school_id")):
                    continue
                convention = Convention.model_validate(doc)
                self.cache.put(convention)
                seen[convention.id] = convention
        return sorted(seen.values(), key=lambda c: c.created_at, reverse=True)

    # Codes

    def _is_code_taken(self, code: str, own: Iterable[Tuple[str, str]] = ()) -> bool:
        """True when any document carries ``code`` outside the ``(convention id, field)`` slots in ``own``."""
        own = set(own)
        for field in CODE_FIELDS:
            for doc in self.store.query_by_field(field, code):
                if (doc["id"], field) not in own:
                    return True
        return False

    def _own_code_slots(self, convention: Convention, role: Role) -> List[Tuple[str, str]]:
        """Fields where ``role`` may already hold the code it signs with."""
        slots = [(convention.id, f"signatures.{role.value}.code")]
        record = convention.signature(role)
        counterpart = COUNTERPART.get(role)
        if counterpart is not None and record is not None and record.code:
            shared = convention.signature(counterpart)
            # one person signed for both partners with a single code
            if shared is not None and shared.code == record.code:
                slots.append((convention.id, f"signatures.{counterpart.value}.code"))
        return slots

    def _resolve_code(self, code: Optional[str], convention: Convention, role: Optional[Role] = None) -> str:
        if code is None:
            if role is not None and convention.has_signed(role):
                return convention.signature(role).code
            return issue_code(self._is_code_taken)
        code = normalize_code(code)
        if not is_well_formed(code):
            raise ValidationException(f"Malformed verification code: {code!r}")
        own = self._own_code_slots(convention, role) if role is not None else []
        if self._is_code_taken(code, own):
            raise CodeCollisionError(code, convention_id=convention.id)
        return code

    def _check_actor(self, convention: Convention, role: Role, actor_address: str) -> None:
        expected = convention.address_for(role)
        if not expected or expected.lower() != actor_address.strip().lower():
            raise ForbiddenException(f"Only the {role.value} of this agreement can sign as {role.value}")

    # Signature workflow

    def submit(self, context: WorkflowContext, data: ConventionData, artifact: Optional[str] = None,
               code: Optional[str] = None) -> SignatureResult:
        """Create a convention with the student's signature applied in the same write."""
        now = self.clock()
        draft = Convention(
            **data.model_dump(),
            id=str(uuid.uuid4()),
            owner_id=context.account_id,
            school_id=context.school_id,
            created_at=now,
            updated_at=now,
        )
        code = self._resolve_code(code, draft)
        transition = apply_transition(draft, Role.STUDENT, artifact=artifact, code=code, now=now)
        created = transition.convention
        created.certificate_hash = certificate_hash(created, self.signing_secret)

        convention = Convention.model_validate(self.store.create(_json(created)))
        self.cache.put(convention)
        audit.log_submission(convention.id, context.account_id, demo=context.demo_mode)
        logger.info(f"[workflow] Convention submitted id={convention.id} student={convention.student_email}")

        intents = [build_intent(ConventionEmailEvent.SUBMISSION_RECEIVED, convention, convention.student_email,
                                Role.STUDENT, code=code)]
        intents.extend(transition.notifications)
        self.dispatcher.dispatch(intents)
        return SignatureResult(convention, Role.STUDENT, code, transition.previous_status, transition.new_status)

    def sign(
        self,
        context: WorkflowContext,
        convention_id: str,
        role: Role | str,
        artifact: Optional[str] = None,
        code: Optional[str] = None,
        dual_sign: bool = False,
        actor_address: Optional[str] = None,
    ) -> SignatureResult:
        role = Role(role)
        current = self._load(context, convention_id)
        if actor_address is not None:
            self._check_actor(current, role, actor_address)
        check_can_sign(current, role, dual_sign)
        code = self._resolve_code(code, current, role)

        now = self.clock()
        transition = apply_transition(current, role, artifact=artifact, code=code, dual_sign=dual_sign, now=now)
        after = transition.convention
        after.certificate_hash = certificate_hash(after, self.signing_secret)

        patch: Dict[str, Any] = {
            "status": after.status.value,
            "certificate_hash": after.certificate_hash,
            "updated_at": _iso(now),
        }
        for changed in transition.changed_roles:
            patch[f"signatures.{changed.value}"] = _json(after.signatures[changed])
        doc = self.store.update_fields(current.id, patch, append={"audit_logs": [_json(transition.audit_entry)]})

        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_signature(convention.id, role.value, transition.previous_status.value,
                            transition.new_status.value, code, demo=context.demo_mode)
        self.dispatcher.dispatch(transition.notifications)
        return SignatureResult(convention, role, code, transition.previous_status, transition.new_status)

    def add_feedback(self, context: WorkflowContext, convention_id: str, author: str, message: str) -> Convention:
        """Send the agreement back to the student with a correction request."""
        current = self._load(context, convention_id)
        if current.status == ConventionStatus.VALIDATED_HEAD:
            raise StaleTransitionError("reviewer", current.status.value, current.id)
        if not message or not message.strip():
            raise ValidationException("Feedback message is required")

        now = self.clock()
        feedback = Feedback(author=author, message=message.strip(), date=now)
        entry = audit.rejection_entry(author, feedback.message, now)
        doc = self.store.update_fields(
            current.id,
            {"status": ConventionStatus.REJECTED.value, "updated_at": _iso(now)},
            append={"feedbacks": [_json(feedback)], "audit_logs": [_json(entry)]},
        )
        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_rejection(convention.id, author, demo=context.demo_mode)
        self.dispatcher.dispatch([
            build_intent(ConventionEmailEvent.CHANGES_REQUESTED, convention, convention.student_email, Role.STUDENT,
                         author=author, message=feedback.message)
        ])
        return convention

    def update_email(self, context: WorkflowContext, convention_id: str, role: Role | str, new_address: str,
                     actor: Optional[str] = None) -> Convention:
        role = Role(role)
        address = _validated_email(new_address)
        current = self._load(context, convention_id)

        now = self.clock()
        entry = audit.email_update_entry(role, current.address_for(role), address, now, actor)
        doc = self.store.update_fields(
            current.id,
            {
                ROLE_ADDRESS_FIELDS[role]: address,
                "invalid_emails": [r.value for r in current.invalid_emails if r != role],
                "updated_at": _iso(now),
            },
            append={"audit_logs": [_json(entry)]},
        )
        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_email_update(convention.id, role.value, demo=context.demo_mode)
        return convention

    def assign_tracking_teacher(self, context: WorkflowContext, convention_id: str, address: str,
                                actor: Optional[str] = None) -> Convention:
        address = _validated_email(address)
        current = self._load(context, convention_id)

        now = self.clock()
        entry = audit.tracking_entry(address, now, actor)
        doc = self.store.update_fields(
            current.id,
            {"tracking_teacher_email": address, "updated_at": _iso(now)},
            append={"audit_logs": [_json(entry)]},
        )
        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        self.dispatcher.dispatch([build_intent(ConventionEmailEvent.TRACKING_ASSIGNED, convention, address)])
        return convention

    def sign_attestation(
        self,
        context: WorkflowContext,
        convention_id: str,
        total_days: int,
        absences_count: Optional[int] = None,
        artifact: Optional[str] = None,
        signer_name: Optional[str] = None,
        signer_function: Optional[str] = None,
    ) -> Convention:
        """End-of-internship attestation, signed once by the company on a fully validated agreement."""
        current = self._load(context, convention_id)
        if current.status != ConventionStatus.VALIDATED_HEAD:
            raise StaleTransitionError(Role.COMPANY.value, current.status.value, current.id)
        if current.attestation.signed:
            raise NoOpTransitionError(Role.COMPANY.value, current.status.value, current.id)
        if total_days <= 0:
            raise ValidationException("total_days must be positive")

        now = self.clock()
        signed = current.model_copy(deep=True)
        signed.attestation = AttestationRecord(
            signed=True,
            signed_at=now,
            artifact=artifact,
            code=self._resolve_code(None, current),
            signer_name=signer_name or current.company_rep_name,
            signer_function=signer_function or current.company_rep_function,
            total_days=total_days,
            absences_count=len(current.absences) if absences_count is None else absences_count,
        )
        signed.attestation.hash = attestation_hash(signed, self.signing_secret)
        entry = audit.attestation_entry(signed, now)

        doc = self.store.update_fields(
            current.id,
            {"attestation": _json(signed.attestation), "updated_at": _iso(now)},
            append={"audit_logs": [_json(entry)]},
        )
        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_attestation(convention.id, convention.attestation.code, demo=context.demo_mode)
        if convention.teacher_email:
            self.dispatcher.dispatch([
                build_intent(ConventionEmailEvent.ATTESTATION_SIGNED, convention, convention.teacher_email, Role.TEACHER,
                             total_days=total_days, absences_count=convention.attestation.absences_count,
                             code=convention.attestation.code)
            ])
        return convention

    # Absences

    def report_absence(
        self,
        context: WorkflowContext,
        convention_id: str,
        absence_date: date,
        kind: AbsenceKind | str,
        duration_hours: float,
        reporter_address: str,
        reason: Optional[str] = None,
    ) -> Absence:
        current = self._load(context, convention_id)
        reporter = reporter_address.strip().lower()
        excluded = {current.student_email.lower()}
        if current.guardian_email:
            excluded.add(current.guardian_email.lower())
        if reporter in excluded:
            raise ForbiddenException("Absences are reported by school or company staff")

        now = self.clock()
        try:
            absence = Absence(
                id=str(uuid.uuid4()),
                date=absence_date,
                kind=AbsenceKind(kind),
                duration_hours=duration_hours,
                reason=reason or None,
                reporter_address=reporter_address.strip(),
                reported_at=now,
            )
        except (ValidationError, ValueError) as e:
            raise ValidationException(str(e))
        doc = self.store.append_to_list(current.id, "absences", _json(absence))

        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_absence(convention.id, absence.id, "report", absence.reporter_address, demo=context.demo_mode)

        recipients = [convention.teacher_email]
        if convention.is_minor and convention.guardian_email:
            recipients.append(convention.guardian_email)
        if convention.cpe_email:
            recipients.append(convention.cpe_email)
        self.dispatcher.dispatch([
            build_intent(ConventionEmailEvent.ABSENCE_REPORTED, convention, address,
                         reporter=absence.reporter_address, kind=absence.kind.value, absence_date=absence.date,
                         duration_hours=absence.duration_hours, reason=absence.reason)
            for address in dict.fromkeys(recipients)
        ])
        return absence

    def justify_absence(self, context: WorkflowContext, convention_id: str, absence_id: str, reason: str,
                        actor: Optional[str] = None) -> Absence:
        """Annotate an absence with its justification. Nothing else about it changes."""
        if not reason or not reason.strip():
            raise ValidationException("A justification is required")
        current = self._load(context, convention_id)
        index = next((i for i, a in enumerate(current.absences) if a.id == absence_id), None)
        if index is None:
            raise NotFoundException(f"Absence {absence_id} not found")

        # entries are never removed, so the index is stable across concurrent appends
        doc = self.store.update_fields(current.id, {f"absences.{index}.reason": reason.strip()})
        convention = Convention.model_validate(doc)
        self.cache.put(convention)
        audit.log_absence(convention.id, absence_id, "justify", actor, demo=context.demo_mode)
        return convention.absences[index]

    # Integrity

    def verify_integrity(self, context: WorkflowContext, convention_id: str) -> IntegrityReport:
        convention = self._load(context, convention_id)
        expected = certificate_hash(convention, self.signing_secret)
        report = IntegrityReport(
            convention_id=convention.id,
            certificate_hash=convention.certificate_hash,
            certificate_valid=convention.certificate_hash == expected,
        )
        if convention.attestation.signed:
            report.attestation_hash = convention.attestation.hash
            report.attestation_valid = convention.attestation.hash == attestation_hash(convention, self.signing_secret)
        if not report.valid:
            logger.warning(f"[workflow] Integrity mismatch convention={convention.id}")
        return report
