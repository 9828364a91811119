"""
Application form model

One financing application per lead, reachable by the applicant through a
tokenized link guarded by a 4-digit access code. Every unlock attempt is kept
in the append-only `unlock_attempts` table.
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.clock import utcnow


class ApplicationFormStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    READY = "READY"
    SUBMITTED = "SUBMITTED"
    LOCKED = "LOCKED"


class UnlockAttemptType(str, enum.Enum):
    CLIENT_ATTEMPT = "CLIENT_ATTEMPT"
    STAFF_UNLOCK = "STAFF_UNLOCK"


class ApplicationForm(Base):
    __tablename__ = "application_forms"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    lead_id = Column(String(64), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, unique=True)
    status = Column(
        Enum(ApplicationFormStatus, name="application_form_status"),
        nullable=False,
        default=ApplicationFormStatus.DRAFT,
        index=True,
    )

    # Link and access code
    unique_link = Column(String(128), nullable=False, unique=True)
    access_code_hash = Column(String(64), nullable=False)
    link_generated_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    link_expires_at = Column(DateTime(timezone=True), nullable=True)

    # Last known client
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    is_client_active = Column(Boolean, default=False, nullable=False)
    last_client_activity = Column(DateTime(timezone=True), nullable=True)

    submitted_by_client = Column(Boolean, default=False, nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)

    created_by_user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    lead = relationship("Lead", back_populates="application_form")
    consent_records = relationship("ConsentRecord", back_populates="application_form")
    unlock_history = relationship(
        "UnlockAttempt",
        back_populates="application_form",
        order_by="UnlockAttempt.id",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ApplicationForm(id={self.id}, lead_id={self.lead_id}, status={self.status})>"


class UnlockAttempt(Base):
    """One entry of a form's unlock history. Rows are inserted, never updated."""

    __tablename__ = "unlock_attempts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_form_id = Column(
        String(64), ForeignKey("application_forms.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(Enum(UnlockAttemptType, name="unlock_attempt_type"), nullable=False)
    success = Column(Boolean, nullable=False)
    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    actor_user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reason = Column(Text, nullable=True)

    application_form = relationship("ApplicationForm", back_populates="unlock_history")

    __table_args__ = (Index("ix_unlock_attempts_form_timestamp", "application_form_id", "timestamp"),)

    def __repr__(self) -> str:
        return f"<UnlockAttempt(form={self.application_form_id}, type={self.type}, success={self.success})>"
