"""
ConsentRecord model

An applicant's answer to one specific template version. The tuple
(application form, template, version) is unique: resubmissions update the
row in place instead of adding a new one.
"""

import enum
import uuid

from sqlalchemy import Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from app.database import Base
from app.models.consent_template import ConsentType
from app.utils.clock import utcnow


class ConsentMethod(str, enum.Enum):
    ONLINE_FORM = "ONLINE_FORM"
    PHONE_CALL = "PHONE_CALL"
    PARTNER_SUBMISSION = "PARTNER_SUBMISSION"


class ConsentRecord(Base):
    __tablename__ = "consent_records"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    application_form_id = Column(
        String(64), ForeignKey("application_forms.id", ondelete="CASCADE"), nullable=False
    )
    consent_template_id = Column(
        String(64), ForeignKey("consent_templates.id", ondelete="RESTRICT"), nullable=False
    )
    version = Column(Integer, nullable=False)
    lead_id = Column(String(64), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    consent_type = Column(Enum(ConsentType, name="consent_type"), nullable=False)
    consent_given = Column(Boolean, nullable=False)
    consent_method = Column(
        Enum(ConsentMethod, name="consent_method"), nullable=False, default=ConsentMethod.ONLINE_FORM
    )
    # Text exactly as shown at acceptance time
    consent_text = Column(Text, nullable=False)
    help_text_snapshot = Column(Text, nullable=True)
    # IPv6 addresses can be up to 39 chars; 45 allows for mapped IPv4 addresses
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    recorded_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    access_code_hash = Column(String(64), nullable=True)
    recorded_by_user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    withdrawn_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    application_form = relationship("ApplicationForm", back_populates="consent_records")
    consent_template = relationship("ConsentTemplate", back_populates="consent_records")
    lead = relationship("Lead")

    __table_args__ = (
        UniqueConstraint(
            "application_form_id",
            "consent_template_id",
            "version",
            name="uq_consent_records_form_template_version",
        ),
        Index("idx_consent_lead_type", "lead_id", "consent_type"),
        Index("idx_consent_recorded_at", "recorded_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConsentRecord(id={self.id}, form={self.application_form_id}, "
            f"template={self.consent_template_id}, version={self.version}, given={self.consent_given})>"
        )
