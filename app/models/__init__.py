from .application_form import ApplicationForm, ApplicationFormStatus, UnlockAttempt, UnlockAttemptType
from .audit_log import AuditAction, AuditLog
from .consent_record import ConsentMethod, ConsentRecord
from .consent_template import DEFAULT_FORM_TYPE, ConsentTemplate, ConsentType
from .lead import Lead, LeadNote
from .notification_log import NotificationEventType, NotificationLog, NotificationStatus
from .user import User, UserStatus

__all__ = [
    "ApplicationForm",
    "ApplicationFormStatus",
    "UnlockAttempt",
    "UnlockAttemptType",
    "AuditAction",
    "AuditLog",
    "ConsentMethod",
    "ConsentRecord",
    "ConsentTemplate",
    "ConsentType",
    "DEFAULT_FORM_TYPE",
    "Lead",
    "LeadNote",
    "NotificationEventType",
    "NotificationLog",
    "NotificationStatus",
    "User",
    "UserStatus",
]
