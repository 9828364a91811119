from .application_form import (
    ApplicationFormLinkRequest,
    ApplicationFormLinkResponse,
    ApplicationFormResponse,
    ClientActivityRequest,
    FormStateChangeRequest,
    VerifyAccessRequest,
    VerifyAccessResponse,
)
from .consent import (
    ConsentAnswer,
    ConsentBatchRequest,
    ConsentBatchResponse,
    ConsentRecordListResponse,
    ConsentRecordQuery,
    ConsentRecordResponse,
    ConsentTemplateCreate,
    ConsentTemplateResponse,
    ConsentTemplateUpdate,
    TemplateCacheStats,
)
from .notification import NotificationLogResponse, RedeliverRequest, RedeliverResponse

# Define the public API of this module
__all__ = [
    "ApplicationFormLinkRequest",
    "ApplicationFormLinkResponse",
    "ApplicationFormResponse",
    "ClientActivityRequest",
    "FormStateChangeRequest",
    "VerifyAccessRequest",
    "VerifyAccessResponse",
    "ConsentAnswer",
    "ConsentBatchRequest",
    "ConsentBatchResponse",
    "ConsentRecordListResponse",
    "ConsentRecordQuery",
    "ConsentRecordResponse",
    "ConsentTemplateCreate",
    "ConsentTemplateResponse",
    "ConsentTemplateUpdate",
    "TemplateCacheStats",
    "NotificationLogResponse",
    "RedeliverRequest",
    "RedeliverResponse",
]
