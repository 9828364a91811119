from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime

from app.models.notification_log import NotificationEventType, NotificationStatus


class NotificationLogResponse(BaseModel):
    id: str
    application_form_id: str
    lead_id: str
    event_type: NotificationEventType
    status: NotificationStatus
    payload: Optional[Dict[str, Any]]
    sent_to: Optional[str]
    note_created: bool
    attempts: int
    last_error: Optional[str]
    last_attempt_at: Optional[datetime]
    created_at: datetime

    class Config:
        from_attributes = True


class RedeliverRequest(BaseModel):
    limit: int = Field(20, ge=1, le=100)


class RedeliverResponse(BaseModel):
    attempted: int
    delivered: int
    failed: int
    notifications: List[NotificationLogResponse]
