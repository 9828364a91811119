"""
Notification log model

Tracks events raised for an application form and the delivery state of the
outbound CRM webhook. At most one READY_FOR_REVIEW row exists per form.
"""

import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, DateTime, Enum, ForeignKey, Index, Integer, String, Text, text

from app.database import Base
from app.utils.clock import utcnow


class NotificationEventType(str, enum.Enum):
    LINK_SENT = "LINK_SENT"
    UNLOCKED = "UNLOCKED"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"


class NotificationStatus(str, enum.Enum):
    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class NotificationLog(Base):
    __tablename__ = "notification_logs"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    application_form_id = Column(
        String(64), ForeignKey("application_forms.id", ondelete="CASCADE"), nullable=False
    )
    lead_id = Column(String(64), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False)
    event_type = Column(Enum(NotificationEventType, name="notification_event_type"), nullable=False)
    status = Column(
        Enum(NotificationStatus, name="notification_status"), nullable=False, default=NotificationStatus.SENT
    )

    # Event snapshot as sent to the webhook
    payload = Column(JSON, nullable=True)
    sent_to = Column(String(2048), nullable=True)
    note_created = Column(Boolean, default=False, nullable=False)
    note_id = Column(String(64), ForeignKey("lead_notes.id", ondelete="SET NULL"), nullable=True)

    # Delivery tracking
    attempts = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        Index(
            "uq_notification_logs_ready_for_review",
            "application_form_id",
            unique=True,
            postgresql_where=text("event_type = 'READY_FOR_REVIEW'"),
            sqlite_where=text("event_type = 'READY_FOR_REVIEW'"),
        ),
        Index("ix_notification_logs_form_event", "application_form_id", "event_type"),
        Index("ix_notification_logs_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<NotificationLog(id={self.id}, form={self.application_form_id}, event={self.event_type})>"
