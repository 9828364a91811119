import enum
import uuid

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Index, String

from app.database import Base
from app.utils.clock import utcnow


class AuditAction(str, enum.Enum):
    APPLICATION_FORM_CREATED = "APPLICATION_FORM_CREATED"
    APPLICATION_FORM_UNLOCK = "APPLICATION_FORM_UNLOCK"
    APPLICATION_FORM_LOCK = "APPLICATION_FORM_LOCK"
    CLIENT_ACTIVE_BLOCK = "CLIENT_ACTIVE_BLOCK"
    CONSENT_WITHDRAWN = "CONSENT_WITHDRAWN"
    CONSENT_TEMPLATE_CHANGED = "CONSENT_TEMPLATE_CHANGED"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    lead_id = Column(String(64), ForeignKey("leads.id", ondelete="SET NULL"), nullable=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(64), nullable=False)
    # Serialized from one of the shapes in app.schemas.audit
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Indexes for performance optimization
    __table_args__ = (
        Index("idx_audit_lead_action_created", "lead_id", "action", "created_at"),
        Index("idx_audit_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, lead_id={self.lead_id})>"
