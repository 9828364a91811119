import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import relationship

from app.database import Base
from app.utils.clock import utcnow


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    first_name = Column(String(120), nullable=True)
    last_name = Column(String(120), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(40), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    application_form = relationship("ApplicationForm", back_populates="lead", uselist=False)
    notes = relationship("LeadNote", back_populates="lead", order_by="LeadNote.created_at")

    @property
    def full_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    def __repr__(self) -> str:
        return f"<Lead(id={self.id}, email={self.email})>"


class LeadNote(Base):
    """Free-text note shown on the lead timeline."""

    __tablename__ = "lead_notes"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    lead_id = Column(String(64), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    author_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    content = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    lead = relationship("Lead", back_populates="notes")
    author = relationship("User", back_populates="notes")

    __table_args__ = (Index("ix_lead_notes_lead_created", "lead_id", "created_at"),)

    def __repr__(self) -> str:
        return f"<LeadNote(id={self.id}, lead_id={self.lead_id})>"
