"""
Notification Service

Fires the "ready for review" event once per application form: a lead note, a
notification log row and a webhook POST to the downstream CRM. Delivery is
retried a bounded number of times; rows that end FAILED can be redelivered.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import settings
from app.models.lead import LeadNote
from app.models.notification_log import NotificationEventType, NotificationLog, NotificationStatus
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)

READY_FOR_REVIEW_EVENT = "application.ready_for_review"


@dataclass
class ConsentSummary:
    consent_template_id: str
    consent_type: str
    version: int
    consent_given: bool


@dataclass
class ReadyForReviewEvent:
    application_form_id: str
    lead_id: str
    consents: list[ConsentSummary] = field(default_factory=list)
    ip_address: str | None = None
    user_agent: str | None = None


def build_payload(event: ReadyForReviewEvent) -> dict:
    return {
        "event": READY_FOR_REVIEW_EVENT,
        "applicationFormId": event.application_form_id,
        "leadId": event.lead_id,
        "consents": [
            {
                "consentTemplateId": c.consent_template_id,
                "consentType": c.consent_type,
                "version": c.version,
                "consentGiven": c.consent_given,
            }
            for c in event.consents
        ],
        "clientIp": event.ip_address,
        "userAgent": event.user_agent,
    }


def build_note_content(event: ReadyForReviewEvent) -> str:
    lines = [f"Application ready for review ({READY_FOR_REVIEW_EVENT})"]
    templates = ", ".join(f"{c.consent_template_id} (v{c.version})" for c in event.consents)
    if templates:
        lines.append(f"Templates: {templates}")
    return "\n".join(lines)


class NotificationDispatcher:
    """Idempotent ready-for-review notifications with bounded webhook retry."""

    def __init__(
        self,
        db: AsyncSession,
        transport: httpx.AsyncBaseTransport | None = None,
        retry_backoff: list[float] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.transport = transport
        self.webhook_url = settings.crm_webhook_url
        self.webhook_token = settings.crm_webhook_token
        self.timeout = settings.crm_webhook_timeout_seconds
        self.max_attempts = max(1, settings.crm_webhook_max_attempts)
        self.retry_backoff = settings.crm_webhook_retry_backoff_seconds if retry_backoff is None else retry_backoff
        self._sleep = sleep

    async def _find_ready_log(self, application_form_id: str) -> NotificationLog | None:
        result = await self.db.execute(
            select(NotificationLog).where(
                NotificationLog.application_form_id == application_form_id,
                NotificationLog.event_type == NotificationEventType.READY_FOR_REVIEW,
            )
        )
        return result.scalar_one_or_none()

    async def record_ready_for_review(self, event: ReadyForReviewEvent) -> tuple[NotificationLog, bool]:
        """
        Persist the ready-for-review note and log for a form without delivering it.

        Returns:
            (log, created). A form that already has a READY_FOR_REVIEW log gets
            that log back with created=False; no new note is written.
        """
        existing = await self._find_ready_log(event.application_form_id)
        if existing is not None:
            logger.debug(f"Ready-for-review already recorded for form {event.application_form_id}")
            return existing, False

        note = LeadNote(lead_id=event.lead_id, content=build_note_content(event))
        self.db.add(note)
        await self.db.flush()

        log = NotificationLog(
            application_form_id=event.application_form_id,
            lead_id=event.lead_id,
            event_type=NotificationEventType.READY_FOR_REVIEW,
            status=NotificationStatus.SENT,
            sent_to=self.webhook_url,
            payload=build_payload(event),
            note_created=True,
            note_id=note.id,
            attempts=0,
        )
        self.db.add(log)

        try:
            await self.db.commit()
        except IntegrityError:
            # Another request recorded the event first
            await self.db.rollback()
            existing = await self._find_ready_log(event.application_form_id)
            if existing is None:
                raise
            logger.info(f"Ready-for-review for form {event.application_form_id} recorded concurrently")
            return existing, False

        logger.info(f"Ready-for-review recorded for form {event.application_form_id}")
        return log, True

    async def notify_application_ready_for_review(self, event: ReadyForReviewEvent) -> NotificationLog:
        """
        Record and deliver the ready-for-review event for a form.

        A form that already has a READY_FOR_REVIEW log gets that log back
        unchanged: no new note, no webhook call.
        """
        log, created = await self.record_ready_for_review(event)
        if not created:
            return log
        return await self.deliver(log)

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.webhook_token:
            headers["Authorization"] = f"Bearer {self.webhook_token}"
        return headers

    def _backoff(self, attempt: int) -> float:
        if not self.retry_backoff:
            return 0.0
        return self.retry_backoff[min(attempt - 1, len(self.retry_backoff) - 1)]

    async def deliver(self, log: NotificationLog) -> NotificationLog:
        """
        POST the log's payload to the CRM webhook.

        Without a configured URL this is a no-op and the log stays SENT.
        """
        if not self.webhook_url:
            logger.debug(f"CRM webhook not configured; notification {log.id} not delivered")
            return log

        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout) as client:
            for attempt in range(1, self.max_attempts + 1):
                error_message = None
                try:
                    response = await client.post(self.webhook_url, json=log.payload, headers=self._headers())
                    if not response.is_success:
                        error_message = f"HTTP {response.status_code}: {response.text[:500]}"
                except httpx.TimeoutException:
                    error_message = "Request timed out"
                except httpx.RequestError as e:
                    error_message = f"Request error: {str(e)}"
                except Exception as e:
                    error_message = f"Unexpected error: {str(e)}"

                log.attempts = (log.attempts or 0) + 1
                log.last_attempt_at = utcnow()

                if error_message is None:
                    log.status = NotificationStatus.DELIVERED
                    log.last_error = None
                    logger.info(f"Notification {log.id} delivered on attempt {attempt}")
                    break

                log.last_error = error_message
                logger.warning(f"Notification {log.id} delivery attempt {attempt} failed: {error_message}")
                if attempt < self.max_attempts:
                    await self._sleep(self._backoff(attempt))
            else:
                log.status = NotificationStatus.FAILED
                logger.error(f"Notification {log.id} failed after {self.max_attempts} attempts: {log.last_error}")

        await self.db.commit()
        return log

    async def redeliver_failed(self, limit: int = 20) -> list[NotificationLog]:
        """Retry delivery of FAILED ready-for-review notifications, oldest first."""
        result = await self.db.execute(
            select(NotificationLog)
            .where(
                NotificationLog.status == NotificationStatus.FAILED,
                NotificationLog.event_type == NotificationEventType.READY_FOR_REVIEW,
            )
            .order_by(NotificationLog.created_at.asc())
            .limit(limit)
        )
        logs = list(result.scalars().all())

        for log in logs:
            await self.deliver(log)

        logger.info(
            f"Redelivered {len(logs)} notifications: "
            f"{sum(1 for log in logs if log.status == NotificationStatus.DELIVERED)} delivered"
        )
        return logs


async def deliver_notification(
    notification_id: str,
    session_factory: async_sessionmaker[AsyncSession],
    transport: httpx.AsyncBaseTransport | None = None,
) -> NotificationLog | None:
    """
    Deliver one notification in its own session.

    Scheduled as a background task after the submitting request has been
    answered, so webhook retries never hold up the applicant.
    """
    async with session_factory() as db:
        log = await db.get(NotificationLog, notification_id)
        if log is None:
            logger.warning(f"Notification {notification_id} vanished before delivery")
            return None
        if log.status == NotificationStatus.DELIVERED:
            return log
        try:
            return await NotificationDispatcher(db, transport=transport).deliver(log)
        except Exception as e:
            await db.rollback()
            logger.error(f"Background delivery of notification {notification_id} failed: {e}", exc_info=True)
            return None
