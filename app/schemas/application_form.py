from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from app.models.application_form import ApplicationFormStatus, UnlockAttemptType
from app.schemas.consent import SHA256_HEX_PATTERN


class VerifyAccessRequest(BaseModel):
    lead_id: str = Field(..., min_length=1, max_length=64)
    access_code_hash: str = Field(..., pattern=SHA256_HEX_PATTERN)


class VerifyAccessResponse(BaseModel):
    ok: bool
    application_form_id: str
    status: ApplicationFormStatus


class ClientActivityRequest(BaseModel):
    lead_id: str = Field(..., min_length=1, max_length=64)
    access_code_hash: str = Field(..., pattern=SHA256_HEX_PATTERN)


class FormStateChangeRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class ApplicationFormLinkRequest(BaseModel):
    access_code: str = Field(..., pattern=r"^\d{4}$", description="4-digit code handed to the applicant.")
    expires_in_days: int = Field(7, ge=1, le=90)

    class Config:
        json_schema_extra = {"example": {"access_code": "4821", "expires_in_days": 7}}


class ApplicationFormLinkResponse(BaseModel):
    application_form_id: str
    link: str
    expires_at: datetime
    access_code: str


class UnlockAttemptResponse(BaseModel):
    type: UnlockAttemptType
    success: bool
    timestamp: datetime
    ip_address: Optional[str]
    user_agent: Optional[str]
    actor_user_id: Optional[str]
    reason: Optional[str]

    class Config:
        from_attributes = True


class ApplicationFormResponse(BaseModel):
    id: str
    lead_id: str
    status: ApplicationFormStatus
    link_generated_at: datetime
    link_expires_at: Optional[datetime]
    is_client_active: bool
    last_client_activity: Optional[datetime]
    submitted_by_client: bool
    submitted_at: Optional[datetime]
    unlock_history: List[UnlockAttemptResponse] = []

    class Config:
        from_attributes = True
