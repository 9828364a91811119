"""
Notification Routes

Manual redelivery of ready-for-review webhooks that exhausted their retries.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth import Actor, require_elevated
from app.database import get_db
from app.models.notification_log import NotificationStatus
from app.schemas.notification import NotificationLogResponse, RedeliverRequest, RedeliverResponse
from app.services.notification_service import NotificationDispatcher

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/redeliver", response_model=RedeliverResponse)
async def redeliver_failed_notifications(
    payload: RedeliverRequest | None = None,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_elevated),
):
    """Retry FAILED ready-for-review notifications, oldest first."""
    limit = payload.limit if payload else RedeliverRequest().limit
    logs = await NotificationDispatcher(db).redeliver_failed(limit=limit)
    delivered = sum(1 for log in logs if log.status == NotificationStatus.DELIVERED)
    return RedeliverResponse(
        attempted=len(logs),
        delivered=delivered,
        failed=len(logs) - delivered,
        notifications=[NotificationLogResponse.model_validate(log) for log in logs],
    )
