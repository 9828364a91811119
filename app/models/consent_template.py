"""
ConsentTemplate model

A versioned statement of consent text. Within a form type, the single active
row of a consent type is the current version; older rows stay for history.
"""

import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.clock import utcnow


class ConsentType(str, enum.Enum):
    MARKETING = "MARKETING"
    FINANCIAL_PARTNERS = "FINANCIAL_PARTNERS"
    VEHICLE_PARTNERS = "VEHICLE_PARTNERS"
    PARTNER_DECLARATION = "PARTNER_DECLARATION"


DEFAULT_FORM_TYPE = "financing_application"


class ConsentTemplate(Base):
    __tablename__ = "consent_templates"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    consent_type = Column(Enum(ConsentType, name="consent_type"), nullable=False)
    form_type = Column(String(64), nullable=False, default=DEFAULT_FORM_TYPE)
    title = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    help_text = Column(Text, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    is_required = Column(Boolean, nullable=False, default=False)
    tags = Column(JSON, nullable=False, default=list)

    created_by_user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    consent_records = relationship("ConsentRecord", back_populates="consent_template")

    __table_args__ = (
        Index("uq_consent_templates_type_form_version", "consent_type", "form_type", "version", unique=True),
        # At most one active version per logical consent
        Index(
            "uq_consent_templates_active",
            "consent_type",
            "form_type",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("ix_consent_templates_form_active", "form_type", "is_active"),
    )

    def __repr__(self) -> str:
        return f"<ConsentTemplate(id={self.id}, type={self.consent_type}, version={self.version})>"
