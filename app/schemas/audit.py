"""
Audit detail shapes

Audit log `details` are stored as JSON but always built from one of the
models below, tagged by `kind`.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


class ApplicationFormCreatedDetails(BaseModel):
    kind: Literal["application_form_created"] = "application_form_created"
    application_form_id: str
    expires_at: datetime
    regenerated: bool = False


class ApplicationFormStateChangeDetails(BaseModel):
    kind: Literal["application_form_state_change"] = "application_form_state_change"
    application_form_id: str
    previous_status: str
    new_status: str
    reason: Optional[str] = None


class ClientActiveBlockDetails(BaseModel):
    kind: Literal["client_active_block"] = "client_active_block"
    application_form_id: str
    last_client_activity: Optional[datetime] = None
    attempted_action: str
    notified_supervisors: int = 0


class ConsentWithdrawnDetails(BaseModel):
    kind: Literal["consent_withdrawn"] = "consent_withdrawn"
    consent_record_id: str
    consent_template_id: str
    version: int


class ConsentTemplateChangedDetails(BaseModel):
    kind: Literal["consent_template_changed"] = "consent_template_changed"
    consent_template_id: str
    change: Literal["created", "updated", "deleted"]
    version: int
    fields: list[str] = []


AuditDetails = Annotated[
    Union[
        ApplicationFormCreatedDetails,
        ApplicationFormStateChangeDetails,
        ClientActiveBlockDetails,
        ConsentWithdrawnDetails,
        ConsentTemplateChangedDetails,
    ],
    Field(discriminator="kind"),
]

audit_details_adapter: TypeAdapter[AuditDetails] = TypeAdapter(AuditDetails)
