from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional
from datetime import datetime

from app.models.consent_record import ConsentMethod
from app.models.consent_template import DEFAULT_FORM_TYPE, ConsentType

SHA256_HEX_PATTERN = r"^[0-9a-fA-F]{64}$"


def _dedupe_tags(tags: Optional[List[str]]) -> Optional[List[str]]:
    if tags is None:
        return None
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class ConsentTemplateCreate(BaseModel):
    id: Optional[str] = Field(None, max_length=64, description="Optional caller-chosen id, e.g. 'tpl_marketing'.")
    consent_type: ConsentType = Field(..., description="Logical consent this template version belongs to.")
    form_type: str = Field(DEFAULT_FORM_TYPE, min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=255)
    content: str = Field(..., min_length=1, description="Consent text shown to the applicant.")
    help_text: Optional[str] = None
    version: int = Field(1, ge=1)
    is_active: bool = True
    is_required: bool = False
    tags: List[str] = Field(default_factory=list)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v):
        return _dedupe_tags(v)


class ConsentTemplateUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=255)
    content: Optional[str] = Field(None, min_length=1)
    help_text: Optional[str] = None
    version: Optional[int] = Field(None, ge=1, description="Raising the version is an explicit admin action.")
    is_active: Optional[bool] = None
    is_required: Optional[bool] = None
    tags: Optional[List[str]] = None

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v):
        return _dedupe_tags(v)

    class Config:
        json_schema_extra = {
            "example": {
                "content": "I agree to receive marketing communication (revised wording).",
                "version": 2,
            }
        }


class ConsentTemplateResponse(BaseModel):
    id: str
    consent_type: ConsentType
    form_type: str
    title: str
    content: str
    help_text: Optional[str]
    version: int
    is_active: bool
    is_required: bool
    tags: List[str]
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class TemplateCacheStats(BaseModel):
    hits: int
    misses: int
    entries: int
    ttl_seconds: int
    last_warning_at: Optional[float] = None


class ConsentAnswer(BaseModel):
    consent_template_id: str = Field(..., min_length=1, max_length=64)
    version: int = Field(..., ge=1, description="Template version the applicant saw.")
    consent_given: bool
    consent_method: Optional[ConsentMethod] = None
    consent_text: Optional[str] = Field(None, description="Text shown to the applicant; defaults to the live template.")
    accepted_at: Optional[datetime] = None


class ConsentBatchRequest(BaseModel):
    application_form_id: str = Field(..., min_length=1, max_length=64)
    lead_id: str = Field(..., min_length=1, max_length=64)
    access_code_hash: str = Field(..., pattern=SHA256_HEX_PATTERN, description="SHA-256 hex of the access code.")
    ip_address: Optional[str] = Field(None, max_length=45)
    user_agent: Optional[str] = Field(None, max_length=512)
    consents: List[ConsentAnswer] = Field(..., min_length=1)

    class Config:
        json_schema_extra = {
            "example": {
                "application_form_id": "f3b1c2",
                "lead_id": "lead_42",
                "access_code_hash": "03ac674216f3e15c761ee1a5e255f067953623c8b388b4459e13f978d7c846f4",
                "consents": [
                    {"consent_template_id": "tpl_marketing", "version": 2, "consent_given": True},
                ],
            }
        }


class ConsentBatchResponse(BaseModel):
    processed: int


class ConsentRecordResponse(BaseModel):
    id: str
    application_form_id: str
    consent_template_id: str
    version: int
    lead_id: str
    consent_type: ConsentType
    consent_given: bool
    consent_method: ConsentMethod
    consent_text: str
    help_text_snapshot: Optional[str]
    ip_address: Optional[str]
    user_agent: Optional[str]
    recorded_at: datetime
    recorded_by_user_id: Optional[str]
    withdrawn_at: Optional[datetime]

    class Config:
        from_attributes = True


class ConsentRecordQuery(BaseModel):
    """Filters for the consent record administration list and export."""

    lead_id: Optional[str] = None
    consent_type: Optional[ConsentType] = None
    consent_method: Optional[ConsentMethod] = None
    consent_given: Optional[bool] = None
    recorded_by_user_id: Optional[str] = None
    recorded_from: Optional[datetime] = None
    recorded_to: Optional[datetime] = None
    withdrawn_from: Optional[datetime] = None
    withdrawn_to: Optional[datetime] = None
    search: Optional[str] = Field(None, max_length=255, description="Matches client first/last name, email or phone.")
    sort_by: Literal["recorded_at", "consent_type", "client_name"] = "recorded_at"
    sort_order: Literal["asc", "desc"] = "desc"
    skip: int = Field(0, ge=0)
    take: int = Field(50, ge=1, le=500)


class ConsentRecordListResponse(BaseModel):
    records: List[ConsentRecordResponse]
    total: int
    skip: int
    take: int
