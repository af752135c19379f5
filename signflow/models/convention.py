from sqlalchemy import Column, String, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from signflow.db import Base
from datetime import datetime, UTC


class ConventionRecord(Base):
    """One row per internship agreement.

    The aggregate lives in the JSON columns; the scalar columns below them are
    copies kept in sync on every write so field-targeted lookups can use an index.
    """
    __tablename__ = 'conventions'
    id = Column(String, primary_key=True)
    owner_id = Column(String, nullable=True, index=True)
    school_id = Column(String, nullable=True, index=True)
    status = Column(String, nullable=False, default='DRAFT', index=True)

    data = Column(JSON, nullable=False)
    signatures = Column(JSON, nullable=False, default=dict)
    attestation = Column(JSON, nullable=False, default=dict)
    audit_logs = Column(JSON, nullable=False, default=list)
    absences = Column(JSON, nullable=False, default=list)
    feedbacks = Column(JSON, nullable=False, default=list)
    invalid_emails = Column(JSON, nullable=False, default=list)

    certificate_hash = Column(String(32), nullable=True, index=True)
    last_reminder_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)

    # Participant addresses
    student_email = Column(String, nullable=True, index=True)
    guardian_email = Column(String, nullable=True, index=True)
    teacher_email = Column(String, nullable=True, index=True)
    company_rep_email = Column(String, nullable=True, index=True)
    tutor_email = Column(String, nullable=True, index=True)
    school_head_email = Column(String, nullable=True, index=True)
    tracking_teacher_email = Column(String, nullable=True, index=True)

    # Verification codes
    student_code = Column(String(32), nullable=True, index=True)
    parent_code = Column(String(32), nullable=True, index=True)
    teacher_code = Column(String(32), nullable=True, index=True)
    company_code = Column(String(32), nullable=True, index=True)
    tutor_code = Column(String(32), nullable=True, index=True)
    head_code = Column(String(32), nullable=True, index=True)
    attestation_code = Column(String(32), nullable=True, index=True)
    attestation_hash = Column(String(32), nullable=True, index=True)

    superseded_codes = relationship("SupersededCodeRecord", cascade="all, delete-orphan")


class SupersededCodeRecord(Base):
    """A signature code replaced by a re-sign. It stays issued, so it stays resolvable."""
    __tablename__ = 'convention_superseded_codes'
    code = Column(String(32), primary_key=True)
    convention_id = Column(String, ForeignKey('conventions.id', ondelete='CASCADE'), nullable=False, index=True)
    role = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False)
