from __future__ import annotations

import datetime as _dt
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from signflow.utils.datetime import utc_now


class Role(str, Enum):
    STUDENT = "student"
    PARENT = "parent"
    TEACHER = "teacher"
    COMPANY = "company"
    TUTOR = "tutor"
    HEAD = "head"


class ConventionStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    VALIDATED_TEACHER = "VALIDATED_TEACHER"
    SIGNED_PARENT = "SIGNED_PARENT"
    SIGNED_COMPANY = "SIGNED_COMPANY"
    SIGNED_TUTOR = "SIGNED_TUTOR"
    VALIDATED_HEAD = "VALIDATED_HEAD"
    REJECTED = "REJECTED"


class AuditAction(str, Enum):
    SIGNED = "SIGNED"
    REJECTED = "REJECTED"
    EMAIL_UPDATED = "EMAIL_UPDATED"
    TRACKING_ASSIGNED = "TRACKING_ASSIGNED"
    ATTESTATION_SIGNED = "ATTESTATION_SIGNED"


class AbsenceKind(str, Enum):
    ABSENCE = "absence"
    LATE = "late"


# Address field carrying each role's identity on the document
ROLE_ADDRESS_FIELDS: Dict[Role, str] = {
    Role.STUDENT: "student_email",
    Role.PARENT: "guardian_email",
    Role.TEACHER: "teacher_email",
    Role.COMPANY: "company_rep_email",
    Role.TUTOR: "tutor_email",
    Role.HEAD: "school_head_email",
}

ROLE_LABELS: Dict[Role, str] = {
    Role.STUDENT: "Student",
    Role.PARENT: "Legal guardian",
    Role.TEACHER: "Referent teacher",
    Role.COMPANY: "Company representative",
    Role.TUTOR: "Workplace supervisor",
    Role.HEAD: "School director",
}


def blocking_role(status: ConventionStatus, is_minor: bool) -> Optional[Role]:
    """Role whose signature is needed to move ``status`` forward, if any."""
    if status == ConventionStatus.SUBMITTED:
        return Role.PARENT if is_minor else Role.TEACHER
    return _NEXT_SIGNER.get(status)


_NEXT_SIGNER: Dict[ConventionStatus, Role] = {
    ConventionStatus.SIGNED_PARENT: Role.TEACHER,
    ConventionStatus.VALIDATED_TEACHER: Role.COMPANY,
    ConventionStatus.SIGNED_COMPANY: Role.TUTOR,
    ConventionStatus.SIGNED_TUTOR: Role.HEAD,
}


class SignatureRecord(BaseModel):
    signed_at: Optional[datetime] = None
    artifact: Optional[str] = None
    code: Optional[str] = None
    # codes this role was issued before a re-sign replaced them; they still resolve
    previous_codes: List[str] = Field(default_factory=list)

    @property
    def is_signed(self) -> bool:
        return self.signed_at is not None


class AuditEntry(BaseModel):
    timestamp: datetime
    action: AuditAction
    actor_address: str
    detail: str


class Absence(BaseModel):
    id: str
    date: _dt.date
    kind: AbsenceKind
    duration_hours: float = Field(gt=0)
    reason: Optional[str] = None
    reporter_address: str
    reported_at: datetime


class Feedback(BaseModel):
    author: str
    message: str
    date: datetime


class AttestationRecord(BaseModel):
    signed: bool = False
    signed_at: Optional[datetime] = None
    artifact: Optional[str] = None
    code: Optional[str] = None
    signer_name: Optional[str] = None
    signer_function: Optional[str] = None
    total_days: Optional[int] = None
    absences_count: Optional[int] = None
    hash: Optional[str] = None


class ConventionData(BaseModel):
    """Business fields of an internship agreement, as entered by the student."""

    # School
    school_name: str = Field(min_length=2)
    school_address: Optional[str] = None
    school_phone: Optional[str] = None
    school_head_name: str = Field(min_length=2)
    school_head_email: EmailStr
    teacher_name: str = Field(min_length=2)
    teacher_email: EmailStr
    tracking_teacher_email: Optional[EmailStr] = None
    cpe_email: Optional[EmailStr] = None

    # Student
    student_last_name: str = Field(min_length=1)
    student_first_name: str = Field(min_length=1)
    student_birth_date: Optional[date] = None
    student_email: EmailStr
    student_class: str = Field(min_length=1)
    diploma_title: Optional[str] = None

    # Legal guardian (required when the student is a minor)
    is_minor: bool = False
    guardian_last_name: Optional[str] = None
    guardian_first_name: Optional[str] = None
    guardian_email: Optional[EmailStr] = None
    guardian_phone: Optional[str] = None

    # Company
    company_name: str = Field(min_length=2)
    company_address: Optional[str] = None
    company_postcode: Optional[str] = None
    company_city: str = Field(min_length=1)
    company_country: str = "France"
    company_siret: Optional[str] = None
    company_rep_name: str = Field(min_length=2)
    company_rep_function: Optional[str] = None
    company_rep_email: EmailStr
    tutor_last_name: str = Field(min_length=2)
    tutor_first_name: Optional[str] = None
    tutor_function: Optional[str] = None
    tutor_email: EmailStr
    tutor_phone: Optional[str] = None

    # Internship
    start_date: date
    end_date: date
    duration_hours: int = Field(gt=0)
    activities: Optional[str] = None

    # Financial annex
    meal_allowance: bool = False
    transport_allowance: bool = False
    lodging_allowance: bool = False
    stipend_amount: Optional[str] = None

    @field_validator("guardian_email", "tracking_teacher_email", "cpe_email", mode="before")
    @classmethod
    def blank_to_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @model_validator(mode="after")
    def check_consistency(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        if self.is_minor and not self.guardian_email:
            raise ValueError("guardian_email required for a minor student")
        return self

    @property
    def student_name(self) -> str:
        return f"{self.student_first_name} {self.student_last_name}"

    @property
    def guardian_name(self) -> str:
        parts = [self.guardian_first_name, self.guardian_last_name]
        return " ".join(p for p in parts if p) or "Legal guardian"

    @property
    def tutor_name(self) -> str:
        parts = [self.tutor_first_name, self.tutor_last_name]
        return " ".join(p for p in parts if p)


class Convention(ConventionData):
    """The internship agreement aggregate: business data plus the signature workflow state."""

    id: str
    owner_id: Optional[str] = None
    school_id: Optional[str] = None
    status: ConventionStatus = ConventionStatus.DRAFT
    signatures: Dict[Role, SignatureRecord] = Field(default_factory=dict)
    certificate_hash: Optional[str] = None
    attestation: AttestationRecord = Field(default_factory=AttestationRecord)
    audit_logs: List[AuditEntry] = Field(default_factory=list)
    absences: List[Absence] = Field(default_factory=list)
    feedbacks: List[Feedback] = Field(default_factory=list)
    invalid_emails: List[Role] = Field(default_factory=list)
    last_reminder_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def signature(self, role: Role) -> Optional[SignatureRecord]:
        return self.signatures.get(role)

    def has_signed(self, role: Role) -> bool:
        record = self.signatures.get(role)
        return record is not None and record.is_signed

    @property
    def signed_roles(self) -> List[Role]:
        return [r for r in Role if self.has_signed(r)]

    def address_for(self, role: Role) -> Optional[str]:
        return getattr(self, ROLE_ADDRESS_FIELDS[role])

    @property
    def blocking_role(self) -> Optional[Role]:
        return blocking_role(self.status, self.is_minor)

    def verification_values(self) -> List[Tuple[str, str]]:
        """Every code and fingerprint the document carries, as (field path, value) pairs in lookup order."""
        records = [(role, self.signatures[role]) for role in Role if role in self.signatures]
        values: List[Tuple[str, str]] = [
            (f"signatures.{role.value}.code", record.code) for role, record in records if record.code
        ]
        if self.attestation.code:
            values.append(("attestation.code", self.attestation.code))
        for role, record in records:
            values.extend((f"signatures.{role.value}.previous_codes", code) for code in record.previous_codes)
        if self.certificate_hash:
            values.append(("certificate_hash", self.certificate_hash))
        if self.attestation.hash:
            values.append(("attestation.hash", self.attestation.hash))
        return values
