"""
Custom Exception Classes for the consent pipeline

This module defines the error taxonomy surfaced to API callers. Every
exception carries its HTTP status, a machine-readable error code and optional
details, so the global handlers can render a consistent error body.
"""

from enum import Enum
from typing import Any

from fastapi import status


class ErrorCode(str, Enum):
    """Machine-readable error codes returned in the `error_code` field."""

    # Generic
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    # Auth
    AUTH_FAILED = "AUTH_FAILED"
    AUTH_TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    AUTH_TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    AUTH_PERMISSION_DENIED = "AUTH_PERMISSION_DENIED"

    # Resources
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    RESOURCE_TEMPLATE_NOT_FOUND = "RESOURCE_TEMPLATE_NOT_FOUND"
    RESOURCE_FORM_NOT_FOUND = "RESOURCE_FORM_NOT_FOUND"
    RESOURCE_LEAD_NOT_FOUND = "RESOURCE_LEAD_NOT_FOUND"
    RESOURCE_CONSENT_RECORD_NOT_FOUND = "RESOURCE_CONSENT_RECORD_NOT_FOUND"

    # Validation
    VALIDATION_FAILED = "VALIDATION_FAILED"
    VALIDATION_DUPLICATE_RESOURCE = "VALIDATION_DUPLICATE_RESOURCE"
    VALIDATION_INVALID_OPERATION = "VALIDATION_INVALID_OPERATION"
    ACTIVE_TEMPLATE_CONFLICT = "ACTIVE_TEMPLATE_CONFLICT"

    # Consent pipeline
    LINK_EXPIRED = "LINK_EXPIRED"
    TEMPLATE_OUTDATED = "TEMPLATE_OUTDATED"
    REQUIRED_CONSENT_MISSING = "REQUIRED_CONSENT_MISSING"
    CLIENT_ACTIVE = "CLIENT_ACTIVE"
    INVALID_CODE = "INVALID_CODE"


class CRMError(Exception):
    """Base exception class for all service errors"""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        retry_after: int | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        self.error_code = error_code
        self.retry_after = retry_after
        super().__init__(self.message)


# ============================================================================
# Authentication & Authorization Exceptions
# ============================================================================


class AuthenticationError(CRMError):
    """Raised when authentication fails"""

    def __init__(
        self,
        message: str = "Authentication failed",
        error_code: ErrorCode = ErrorCode.AUTH_FAILED,
    ):
        super().__init__(message=message, status_code=status.HTTP_401_UNAUTHORIZED, error_code=error_code)


class TokenExpiredError(AuthenticationError):
    """Raised when the bearer token has expired"""

    def __init__(self, message: str = "Token has expired"):
        super().__init__(message=message, error_code=ErrorCode.AUTH_TOKEN_EXPIRED)


class InvalidTokenError(AuthenticationError):
    """Raised when the bearer token is invalid"""

    def __init__(self, message: str = "Invalid or malformed token"):
        super().__init__(message=message, error_code=ErrorCode.AUTH_TOKEN_INVALID)


class AuthorizationError(CRMError):
    """Raised when the actor's role does not allow an action"""

    def __init__(
        self, message: str = "You do not have permission to perform this action", required_roles: list[str] | None = None
    ):
        details = {"required_roles": required_roles} if required_roles else {}
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            details=details,
            error_code=ErrorCode.AUTH_PERMISSION_DENIED,
        )


# ============================================================================
# Resource Not Found Exceptions
# ============================================================================


class ResourceNotFoundError(CRMError):
    """Base class for resource not found errors"""

    def __init__(
        self,
        resource_type: str,
        resource_id: Any | None = None,
        error_code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        message = f"{resource_type} not found"
        if resource_id is not None:
            message = f"{resource_type} with id '{resource_id}' not found"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource_type": resource_type, "resource_id": resource_id},
            error_code=error_code,
        )


class ConsentTemplateNotFoundError(ResourceNotFoundError):
    def __init__(self, template_id: Any | None = None):
        super().__init__("ConsentTemplate", template_id, ErrorCode.RESOURCE_TEMPLATE_NOT_FOUND)


class ApplicationFormNotFoundError(ResourceNotFoundError):
    def __init__(self, form_id: Any | None = None):
        super().__init__("ApplicationForm", form_id, ErrorCode.RESOURCE_FORM_NOT_FOUND)


class LeadNotFoundError(ResourceNotFoundError):
    def __init__(self, lead_id: Any | None = None):
        super().__init__("Lead", lead_id, ErrorCode.RESOURCE_LEAD_NOT_FOUND)


class ConsentRecordNotFoundError(ResourceNotFoundError):
    def __init__(self, record_id: Any | None = None):
        super().__init__("ConsentRecord", record_id, ErrorCode.RESOURCE_CONSENT_RECORD_NOT_FOUND)


# ============================================================================
# Validation & Business Logic Exceptions
# ============================================================================


class ValidationError(CRMError):
    """Raised when input validation fails"""

    def __init__(self, message: str, field: str | None = None, details: dict[str, Any] | None = None):
        error_details = details or {}
        if field:
            error_details["field"] = field
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=error_details,
            error_code=ErrorCode.VALIDATION_FAILED,
        )


class DuplicateResourceError(CRMError):
    """Raised when attempting to create a duplicate resource"""

    def __init__(self, resource_type: str, field: str, value: Any):
        super().__init__(
            message=f"{resource_type} with {field} '{value}' already exists",
            status_code=status.HTTP_409_CONFLICT,
            details={"resource_type": resource_type, "field": field, "value": value},
            error_code=ErrorCode.VALIDATION_DUPLICATE_RESOURCE,
        )


class ActiveTemplateConflictError(CRMError):
    """Raised when a second active version of the same logical consent would exist"""

    def __init__(self, consent_type: str, form_type: str, active_template_id: str):
        super().__init__(
            message=f"An active {consent_type} template already exists for form type '{form_type}'",
            status_code=status.HTTP_409_CONFLICT,
            details={
                "consent_type": consent_type,
                "form_type": form_type,
                "active_template_id": active_template_id,
            },
            error_code=ErrorCode.ACTIVE_TEMPLATE_CONFLICT,
        )


class InvalidOperationError(CRMError):
    """Raised when an operation is invalid in the current context"""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            details=details or {},
            error_code=ErrorCode.VALIDATION_INVALID_OPERATION,
        )


# ============================================================================
# Consent Pipeline Exceptions
# ============================================================================


class LinkExpiredError(CRMError):
    """
    Raised when the application form link can no longer be used.

    Covers a missing form, a lead mismatch, an expired link and a locked form.
    Not retriable without staff intervention.
    """

    def __init__(self, message: str = "Form link is invalid or expired", locked: bool = False):
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT if locked else status.HTTP_410_GONE,
            error_code=ErrorCode.LINK_EXPIRED,
        )


class TemplateOutdatedError(CRMError):
    """Raised when a submitted template version is no longer the live one"""

    def __init__(self, consent_template_id: str, latest_version: int):
        super().__init__(
            message=f"Consent template {consent_template_id} is outdated",
            status_code=status.HTTP_409_CONFLICT,
            details={"consent_template_id": consent_template_id, "latest_version": latest_version},
            error_code=ErrorCode.TEMPLATE_OUTDATED,
            retry_after=0,
        )


class RequiredConsentMissingError(CRMError):
    """Raised when a template is missing/inactive or a required consent was declined"""

    def __init__(self, message: str, consent_template_id: str | None = None):
        details = {"consent_template_id": consent_template_id} if consent_template_id else {}
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details,
            error_code=ErrorCode.REQUIRED_CONSENT_MISSING,
        )


class ClientActiveError(CRMError):
    """Raised when staff try to edit a lead while the client is filling in the form"""

    def __init__(self, application_form_id: str):
        super().__init__(
            message="The client is still editing the form. Try again once the session has ended.",
            status_code=status.HTTP_409_CONFLICT,
            details={"application_form_id": application_form_id},
            error_code=ErrorCode.CLIENT_ACTIVE,
        )


class InvalidAccessCodeError(CRMError):
    """
    Raised when an access code does not unlock a form.

    Wrong codes and unknown forms share this error so that an anonymous caller
    cannot tell them apart.
    """

    def __init__(self):
        super().__init__(
            message="Invalid access code",
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code=ErrorCode.INVALID_CODE,
        )
