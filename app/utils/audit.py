from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from app.models.audit_log import AuditAction, AuditLog
from app.schemas.audit import AuditDetails, audit_details_adapter
import logging

logger = logging.getLogger(__name__)


def record_audit(
    db: AsyncSession,
    action: AuditAction,
    details: AuditDetails,
    lead_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> AuditLog:
    """
    Stage an audit entry on the caller's session.

    The entry is committed together with the change it describes.
    """
    entry = AuditLog(
        action=action.value,
        lead_id=lead_id,
        user_id=user_id,
        details=details.model_dump(mode="json"),
    )
    db.add(entry)
    logger.debug(f"Audit entry staged: {action.value} lead={lead_id} user={user_id}")
    return entry


def parse_audit_details(raw: Optional[dict]) -> Optional[AuditDetails]:
    """Rebuild the typed detail model from a stored JSON value."""
    if raw is None:
        return None
    return audit_details_adapter.validate_python(raw)
