"""
Access gate for application forms.

Applicants reach their form through a tokenized link and prove possession of
a 4-digit access code by sending its SHA-256 hex digest. Every attempt against
an existing form is appended to the form's unlock history. Staff can unlock,
lock and regenerate links; operators are kept out of a lead while the client
is editing its form.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from urllib.parse import urlencode

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.auth import Actor
from app.config import settings
from app.constants.roles import UserRole
from app.exceptions import (
    ApplicationFormNotFoundError,
    AuthorizationError,
    ClientActiveError,
    InvalidAccessCodeError,
    InvalidOperationError,
    LeadNotFoundError,
    LinkExpiredError,
    ValidationError,
)
from app.models.application_form import ApplicationForm, ApplicationFormStatus, UnlockAttempt, UnlockAttemptType
from app.models.audit_log import AuditAction
from app.models.lead import Lead, LeadNote
from app.models.notification_log import NotificationEventType, NotificationLog, NotificationStatus
from app.models.user import User, UserStatus
from app.schemas.audit import (
    ApplicationFormCreatedDetails,
    ApplicationFormStateChangeDetails,
    ClientActiveBlockDetails,
)
from app.services.email_service import EmailService, email_service
from app.utils.audit import record_audit
from app.utils.clock import as_utc, utcnow
from app.utils.security import (
    access_code_hash_matches,
    generate_link_token,
    hash_access_code,
    is_valid_access_code,
)

logger = logging.getLogger(__name__)


class AccessDenialReason(str, enum.Enum):
    INVALID_CODE = "INVALID_CODE"
    LINK_EXPIRED = "LINK_EXPIRED"
    NOT_FOUND = "NOT_FOUND"


@dataclass
class AccessVerification:
    ok: bool
    reason: AccessDenialReason | None = None
    form: ApplicationForm | None = None


@dataclass
class ApplicationFormLink:
    application_form_id: str
    link: str
    expires_at: datetime
    access_code: str


def is_link_expired(form: ApplicationForm, now: datetime) -> bool:
    """A link is expired from the instant `link_expires_at` is reached."""
    expires_at = as_utc(form.link_expires_at)
    return expires_at is not None and expires_at <= now


def build_form_link(form: ApplicationForm) -> str:
    query = urlencode({"applicationFormId": form.id, "leadId": form.lead_id, "token": form.unique_link})
    return f"{settings.app_base_url}/client-form/consents?{query}"


class AccessGateService:
    def __init__(self, db: AsyncSession, mailer: EmailService | None = None):
        self.db = db
        self.mailer = mailer or email_service

    async def _get_form(self, form_id: str) -> ApplicationForm:
        form = await self.db.get(ApplicationForm, form_id)
        if form is None:
            raise ApplicationFormNotFoundError(form_id)
        return form

    async def get_application_form(self, form_id: str) -> ApplicationForm:
        """Load a form with its unlock history."""
        result = await self.db.execute(
            select(ApplicationForm)
            .options(selectinload(ApplicationForm.unlock_history))
            .where(ApplicationForm.id == form_id)
            .execution_options(populate_existing=True)
        )
        form = result.scalar_one_or_none()
        if form is None:
            raise ApplicationFormNotFoundError(form_id)
        return form

    async def verify_access(
        self,
        form_id: str,
        lead_id: str,
        access_code_hash: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AccessVerification:
        """
        Check an access-code hash against a form link.

        Never raises on a failed attempt; the outcome is in the returned
        verification. Expiry and lock state are only revealed to callers that
        presented the right code.
        """
        now = utcnow()
        form = await self.db.get(ApplicationForm, form_id)
        owned = form is not None and form.lead_id == lead_id
        matched = access_code_hash_matches(form.access_code_hash if owned else None, access_code_hash)

        if form is None:
            logger.warning(f"Access attempt for unknown application form {form_id}")
            # Same commit point as a failed attempt on an existing form
            await self.db.commit()
            return AccessVerification(ok=False, reason=AccessDenialReason.NOT_FOUND)

        if not owned:
            reason = AccessDenialReason.NOT_FOUND
        elif not matched:
            reason = AccessDenialReason.INVALID_CODE
        elif form.status == ApplicationFormStatus.LOCKED or is_link_expired(form, now):
            reason = AccessDenialReason.LINK_EXPIRED
        else:
            reason = None

        success = reason is None
        self.db.add(
            UnlockAttempt(
                application_form_id=form.id,
                type=UnlockAttemptType.CLIENT_ATTEMPT,
                success=success,
                timestamp=now,
                ip_address=ip_address,
                user_agent=user_agent,
            )
        )

        if success:
            form.ip_address = ip_address or form.ip_address
            form.user_agent = user_agent or form.user_agent
            form.is_client_active = True
            form.last_client_activity = now
            if form.status == ApplicationFormStatus.DRAFT:
                form.status = ApplicationFormStatus.IN_PROGRESS
            logger.info(f"Application form {form.id} unlocked by client")
        else:
            logger.warning(f"Failed access attempt for application form {form.id}: {reason.value}")

        await self.db.commit()
        return AccessVerification(ok=success, reason=reason, form=form)

    async def ensure_access(
        self,
        form_id: str,
        lead_id: str,
        access_code_hash: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> ApplicationForm:
        """Verify access and raise the matching API error on failure."""
        verification = await self.verify_access(form_id, lead_id, access_code_hash, ip_address, user_agent)
        if verification.ok:
            return verification.form

        if verification.reason == AccessDenialReason.LINK_EXPIRED:
            raise LinkExpiredError(locked=verification.form.status == ApplicationFormStatus.LOCKED)
        raise InvalidAccessCodeError()

    async def record_client_activity(self, form_id: str, lead_id: str, access_code_hash: str) -> ApplicationForm:
        """Heartbeat from the client page; keeps the client-active flag fresh."""
        form = await self.db.get(ApplicationForm, form_id)
        owned = form is not None and form.lead_id == lead_id
        if not access_code_hash_matches(form.access_code_hash if owned else None, access_code_hash):
            raise InvalidAccessCodeError()

        now = utcnow()
        if form.status == ApplicationFormStatus.LOCKED or is_link_expired(form, now):
            raise LinkExpiredError(locked=form.status == ApplicationFormStatus.LOCKED)

        form.is_client_active = True
        form.last_client_activity = now
        await self.db.commit()
        return form

    async def unlock_application_form(self, form_id: str, actor: Actor, reason: str | None = None) -> ApplicationForm:
        """
        Reopen a form for the client.

        Rotates the link token and re-issues the expiry. Allowed from any status.
        """
        if not actor.is_elevated:
            raise AuthorizationError(required_roles=[UserRole.ADMIN.value, UserRole.SUPERVISOR.value])

        form = await self._get_form(form_id)
        now = utcnow()
        previous_status = form.status
        expires_at = now + timedelta(days=settings.link_ttl_days)

        form.status = ApplicationFormStatus.IN_PROGRESS
        form.is_client_active = False
        form.last_client_activity = None
        form.unique_link = generate_link_token()
        form.link_generated_at = now
        form.link_expires_at = expires_at

        self.db.add(
            UnlockAttempt(
                application_form_id=form.id,
                type=UnlockAttemptType.STAFF_UNLOCK,
                success=True,
                timestamp=now,
                actor_user_id=actor.id,
                reason=reason,
            )
        )

        note_lines = ["Application form unlocked"]
        if reason:
            note_lines.append(f"Reason: {reason}")
        note_lines.append(f"Valid until: {expires_at.isoformat()}")
        note = LeadNote(lead_id=form.lead_id, author_id=actor.id, content="\n".join(note_lines))
        self.db.add(note)
        await self.db.flush()

        self.db.add(
            NotificationLog(
                application_form_id=form.id,
                lead_id=form.lead_id,
                event_type=NotificationEventType.UNLOCKED,
                status=NotificationStatus.SENT,
                payload={"reason": reason},
                note_created=True,
                note_id=note.id,
            )
        )
        record_audit(
            self.db,
            AuditAction.APPLICATION_FORM_UNLOCK,
            ApplicationFormStateChangeDetails(
                application_form_id=form.id,
                previous_status=previous_status.value,
                new_status=form.status.value,
                reason=reason,
            ),
            lead_id=form.lead_id,
            user_id=actor.id,
        )
        await self.db.commit()

        logger.info(f"Application form {form.id} unlocked by {actor.id} (was {previous_status.value})")
        return form

    async def lock_application_form(self, form_id: str, actor: Actor, reason: str | None = None) -> ApplicationForm:
        if not actor.is_elevated:
            raise AuthorizationError(required_roles=[UserRole.ADMIN.value, UserRole.SUPERVISOR.value])

        form = await self._get_form(form_id)
        if form.status == ApplicationFormStatus.LOCKED:
            raise InvalidOperationError("Application form is already locked", details={"application_form_id": form.id})

        previous_status = form.status
        form.status = ApplicationFormStatus.LOCKED
        form.is_client_active = False

        record_audit(
            self.db,
            AuditAction.APPLICATION_FORM_LOCK,
            ApplicationFormStateChangeDetails(
                application_form_id=form.id,
                previous_status=previous_status.value,
                new_status=form.status.value,
                reason=reason,
            ),
            lead_id=form.lead_id,
            user_id=actor.id,
        )
        await self.db.commit()

        logger.info(f"Application form {form.id} locked by {actor.id}")
        return form

    async def generate_application_form_link(
        self,
        lead_id: str,
        actor: Actor,
        access_code: str,
        expires_in_days: int | None = None,
    ) -> ApplicationFormLink:
        """
        Create or reset the lead's application form and send the link.

        The form goes back to DRAFT with a fresh token, code hash and expiry.
        """
        if not is_valid_access_code(access_code):
            raise ValidationError("Access code must be exactly 4 digits", field="access_code")

        lead = await self.db.get(Lead, lead_id)
        if lead is None:
            raise LeadNotFoundError(lead_id)

        await self.ensure_operator_can_mutate_lead(lead_id, actor, attempted_action="regenerate the form link")

        now = utcnow()
        expires_at = now + timedelta(days=expires_in_days or settings.link_ttl_days)

        result = await self.db.execute(select(ApplicationForm).where(ApplicationForm.lead_id == lead_id))
        form = result.scalar_one_or_none()
        regenerated = form is not None
        if form is None:
            form = ApplicationForm(lead_id=lead_id)
            self.db.add(form)

        form.status = ApplicationFormStatus.DRAFT
        form.unique_link = generate_link_token()
        form.access_code_hash = hash_access_code(access_code)
        form.link_generated_at = now
        form.link_expires_at = expires_at
        form.created_by_user_id = actor.id
        form.is_client_active = False
        form.last_client_activity = None
        form.submitted_by_client = False
        form.submitted_at = None
        await self.db.flush()

        link = build_form_link(form)

        self.db.add(
            LeadNote(
                lead_id=lead_id,
                author_id=actor.id,
                content=f"Application form link generated\nValid until: {expires_at.isoformat()}",
            )
        )
        self.db.add(
            NotificationLog(
                application_form_id=form.id,
                lead_id=lead_id,
                event_type=NotificationEventType.LINK_SENT,
                status=NotificationStatus.SENT,
                sent_to=lead.email,
                payload={"link": link, "expires_at": expires_at.isoformat()},
                note_created=False,
            )
        )
        record_audit(
            self.db,
            AuditAction.APPLICATION_FORM_CREATED,
            ApplicationFormCreatedDetails(application_form_id=form.id, expires_at=expires_at, regenerated=regenerated),
            lead_id=lead_id,
            user_id=actor.id,
        )
        await self.db.commit()

        logger.info(f"Application form link generated for lead {lead_id} (form {form.id}, regenerated={regenerated})")

        if lead.email:
            await asyncio.to_thread(
                self.mailer.send_application_form_link,
                lead.email,
                lead.first_name or lead.full_name,
                link,
                access_code,
                expires_at,
            )

        return ApplicationFormLink(
            application_form_id=form.id,
            link=link,
            expires_at=expires_at,
            access_code=access_code,
        )

    async def ensure_operator_can_mutate_lead(
        self,
        lead_id: str,
        actor: Actor,
        attempted_action: str = "update the lead",
    ) -> None:
        """
        Block operators while the lead's client session is active.

        Supervisors are alerted by e-mail and the block is audit logged before
        ClientActiveError is raised. Other roles pass through.
        """
        if actor.role != UserRole.OPERATOR:
            return

        result = await self.db.execute(select(ApplicationForm).where(ApplicationForm.lead_id == lead_id))
        form = result.scalar_one_or_none()
        if form is None or not form.is_client_active:
            return

        last_activity = as_utc(form.last_client_activity)
        ttl = timedelta(minutes=settings.client_activity_ttl_minutes)
        if last_activity is not None and last_activity < utcnow() - ttl:
            return

        supervisors = (
            await self.db.execute(
                select(User.email).where(User.role == UserRole.SUPERVISOR, User.status == UserStatus.ACTIVE)
            )
        ).scalars().all()

        record_audit(
            self.db,
            AuditAction.CLIENT_ACTIVE_BLOCK,
            ClientActiveBlockDetails(
                application_form_id=form.id,
                last_client_activity=last_activity,
                attempted_action=attempted_action,
                notified_supervisors=len(supervisors),
            ),
            lead_id=lead_id,
            user_id=actor.id,
        )
        await self.db.commit()

        logger.warning(f"Operator {actor.id} blocked on lead {lead_id}: client is editing form {form.id}")

        if supervisors:
            lead = await self.db.get(Lead, lead_id)
            await asyncio.to_thread(
                self.mailer.send_client_active_alert,
                list(supervisors),
                (lead.full_name if lead else None) or lead_id,
                form.id,
                actor.id,
                attempted_action,
            )

        raise ClientActiveError(form.id)
