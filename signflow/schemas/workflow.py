"""Request and response bodies of the convention endpoints."""
from __future__ import annotations

import datetime as _dt
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

from signflow.schemas.convention import AbsenceKind, Convention, ConventionData, ConventionStatus, Role


class ConventionSubmit(ConventionData):
    signature_artifact: Optional[str] = None
    code: Optional[str] = None

    def to_data(self) -> ConventionData:
        return ConventionData(**self.model_dump(exclude={"signature_artifact", "code"}))


class SignRequest(BaseModel):
    role: Role
    artifact: Optional[str] = None
    code: Optional[str] = None
    dual_sign: bool = False


class SignOut(BaseModel):
    convention: Convention
    role: Role
    code: str
    previous_status: ConventionStatus
    new_status: ConventionStatus


class BulkSignRequest(BaseModel):
    convention_ids: List[str] = Field(min_length=1, max_length=200)
    role: Role
    artifact: Optional[str] = None
    dual_sign: bool = False


class BulkSignOut(BaseModel):
    role: Role
    completed: bool
    processed: List[str]
    unprocessed: List[str]
    failed_id: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None


class FeedbackCreate(BaseModel):
    message: str = Field(min_length=1, max_length=5000)


class EmailUpdate(BaseModel):
    role: Role
    email: EmailStr


class TrackingTeacherAssign(BaseModel):
    email: EmailStr


class AbsenceCreate(BaseModel):
    date: _dt.date
    kind: AbsenceKind = AbsenceKind.ABSENCE
    duration_hours: float = Field(gt=0, le=24)
    reason: Optional[str] = None


class AbsenceJustify(BaseModel):
    reason: str = Field(min_length=1, max_length=2000)


class AttestationSign(BaseModel):
    total_days: int = Field(gt=0)
    absences_count: Optional[int] = Field(default=None, ge=0)
    artifact: Optional[str] = None
    signer_name: Optional[str] = None
    signer_function: Optional[str] = None


class ReminderOut(BaseModel):
    convention_id: str
    role: Role
    recipient: str
    sent_at: datetime
    next_allowed_at: datetime


class ReminderSweepOut(BaseModel):
    sent: List[str]
    skipped: List[str]
    failed: Dict[str, str]


class VerificationOut(BaseModel):
    valid: bool
    convention_id: str
    kind: str
    role: Optional[Role] = None
    # the code was replaced by a later signature from the same role
    superseded: bool = False
    status: ConventionStatus
    student_name: str
    company_name: str
    start_date: _dt.date
    end_date: _dt.date
    signed_at: Optional[datetime] = None


class IntegrityOut(BaseModel):
    convention_id: str
    valid: bool
    certificate_hash: Optional[str] = None
    certificate_valid: bool
    attestation_hash: Optional[str] = None
    attestation_valid: Optional[bool] = None
