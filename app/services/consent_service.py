"""
Consent Service

Records batches of consent answers from the applicant form and administers
the stored consent records.

A batch is validated in full against the live template catalog and the form
lifecycle before anything is written; the form update and every record
upsert then share one transaction.
"""

import logging
import uuid
from datetime import datetime
from typing import Callable

from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.auth import Actor
from app.exceptions import (
    ConsentRecordNotFoundError,
    InvalidOperationError,
    LinkExpiredError,
    RequiredConsentMissingError,
    TemplateOutdatedError,
)
from app.models.application_form import ApplicationForm, ApplicationFormStatus
from app.models.audit_log import AuditAction
from app.models.consent_record import ConsentMethod, ConsentRecord
from app.models.consent_template import ConsentTemplate
from app.models.lead import Lead
from app.schemas.audit import ConsentWithdrawnDetails
from app.schemas.consent import ConsentAnswer, ConsentBatchRequest, ConsentRecordQuery
from app.services.access_gate_service import AccessGateService, is_link_expired
from app.services.export_service import MAX_EXPORT_LIMIT, ExportService
from app.services.notification_service import ConsentSummary, NotificationDispatcher, ReadyForReviewEvent
from app.services.template_service import clear_template_cache
from app.utils.audit import record_audit
from app.utils.clock import utcnow
from app.utils.security import access_code_hash_matches

logger = logging.getLogger(__name__)

UPSERT_KEY = ("application_form_id", "consent_template_id", "version")
UPSERT_UPDATE_COLUMNS = (
    "consent_given",
    "consent_method",
    "consent_text",
    "help_text_snapshot",
    "ip_address",
    "user_agent",
    "recorded_at",
    "access_code_hash",
    "updated_at",
)

INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _collapse_duplicates(rows: list[dict]) -> list[dict]:
    """One validated row per template; a later entry replaces an earlier one."""
    by_template: dict[str, dict] = {}
    for row in rows:
        by_template[row["consent_template_id"]] = row
    return list(by_template.values())


class ConsentService:
    def __init__(self, db: AsyncSession, dispatcher: NotificationDispatcher | None = None):
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher(db)

    async def _load_form(self, payload: ConsentBatchRequest, now: datetime) -> ApplicationForm:
        form = await self.db.get(ApplicationForm, payload.application_form_id)

        if form is None or form.lead_id != payload.lead_id:
            raise LinkExpiredError("Form link is invalid or expired")
        if is_link_expired(form, now):
            raise LinkExpiredError("Form link expired")
        if form.status == ApplicationFormStatus.LOCKED:
            raise LinkExpiredError("Form is locked for edits", locked=True)
        if not access_code_hash_matches(form.access_code_hash, payload.access_code_hash):
            logger.warning(f"Consent batch for form {form.id} carried a non-matching access code hash")
            raise LinkExpiredError("Form link is invalid or expired")
        return form

    def _build_row(
        self,
        consent: ConsentAnswer,
        template: ConsentTemplate | None,
        form: ApplicationForm,
        payload: ConsentBatchRequest,
        now: datetime,
    ) -> dict:
        if template is None or not template.is_active:
            raise RequiredConsentMissingError(
                "Consent template missing or inactive", consent_template_id=consent.consent_template_id
            )

        if template.version != consent.version:
            # Drop cached listings so the client's refetch sees the live version
            clear_template_cache()
            raise TemplateOutdatedError(template.id, template.version)

        if template.is_required and not consent.consent_given:
            raise RequiredConsentMissingError(
                f"Required consent {template.id} must be accepted", consent_template_id=template.id
            )

        return {
            "id": uuid.uuid4().hex,
            "application_form_id": form.id,
            "consent_template_id": template.id,
            "version": template.version,
            "lead_id": form.lead_id,
            "consent_type": template.consent_type,
            "consent_given": consent.consent_given,
            "consent_method": consent.consent_method or ConsentMethod.ONLINE_FORM,
            "consent_text": consent.consent_text or template.content,
            "help_text_snapshot": template.help_text,
            "ip_address": payload.ip_address,
            "user_agent": payload.user_agent,
            "recorded_at": consent.accepted_at or now,
            "access_code_hash": payload.access_code_hash,
            "recorded_by_user_id": form.created_by_user_id,
            "created_at": now,
            "updated_at": now,
        }

    def _upsert_statement(self, rows: list[dict]):
        dialect = self.db.get_bind().dialect.name
        insert = INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Consent upsert is not supported on {dialect}")

        stmt = insert(ConsentRecord).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=list(UPSERT_KEY),
            set_={column: stmt.excluded[column] for column in UPSERT_UPDATE_COLUMNS},
        )

    async def record_consent_batch(
        self,
        payload: ConsentBatchRequest,
        schedule_delivery: Callable[[str], None] | None = None,
    ) -> dict:
        """
        Validate and persist a batch of consent answers.

        Checks run per consent in submission order: template exists and is
        active, submitted version is current, required consents are given.
        Any rejection leaves the store untouched.

        The ready-for-review log is written before returning. Webhook delivery
        goes to `schedule_delivery` with the log id when given, otherwise it
        is awaited here.

        Returns:
            {"processed": number of records written}
        """
        if not payload.consents:
            raise RequiredConsentMissingError("No consents supplied")

        now = utcnow()
        form = await self._load_form(payload, now)

        template_ids = list(dict.fromkeys(c.consent_template_id for c in payload.consents))
        result = await self.db.execute(select(ConsentTemplate).where(ConsentTemplate.id.in_(template_ids)))
        templates = {t.id: t for t in result.scalars().all()}

        # Every entry is validated, duplicates included, before any collapse
        rows = [self._build_row(c, templates.get(c.consent_template_id), form, payload, now) for c in payload.consents]
        rows = _collapse_duplicates(rows)

        try:
            form.ip_address = payload.ip_address or form.ip_address
            form.user_agent = payload.user_agent or form.user_agent
            if form.status not in (ApplicationFormStatus.READY, ApplicationFormStatus.SUBMITTED):
                form.status = ApplicationFormStatus.READY
            form.submitted_by_client = True
            if form.submitted_at is None:
                form.submitted_at = now
            form.is_client_active = False

            await self.db.flush()
            await self.db.execute(self._upsert_statement(rows))
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            logger.error(f"Consent batch for form {payload.application_form_id} rolled back", exc_info=True)
            raise

        logger.info(f"Recorded {len(rows)} consents for form {form.id} (lead {form.lead_id})")

        event = ReadyForReviewEvent(
            application_form_id=form.id,
            lead_id=form.lead_id,
            consents=[
                ConsentSummary(
                    consent_template_id=row["consent_template_id"],
                    consent_type=row["consent_type"].value,
                    version=row["version"],
                    consent_given=row["consent_given"],
                )
                for row in rows
            ],
            ip_address=form.ip_address,
            user_agent=form.user_agent,
        )
        try:
            log, created = await self.dispatcher.record_ready_for_review(event)
            if created:
                if schedule_delivery is not None:
                    schedule_delivery(log.id)
                else:
                    await self.dispatcher.deliver(log)
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Ready-for-review notification failed for form {form.id}: {e}", exc_info=True)

        return {"processed": len(rows)}

    def _filtered(self, query: ConsentRecordQuery):
        filters = []
        if query.lead_id:
            filters.append(ConsentRecord.lead_id == query.lead_id)
        if query.consent_type:
            filters.append(ConsentRecord.consent_type == query.consent_type)
        if query.consent_method:
            filters.append(ConsentRecord.consent_method == query.consent_method)
        if query.consent_given is not None:
            filters.append(ConsentRecord.consent_given.is_(query.consent_given))
        if query.recorded_by_user_id:
            filters.append(ConsentRecord.recorded_by_user_id == query.recorded_by_user_id)
        if query.recorded_from:
            filters.append(ConsentRecord.recorded_at >= query.recorded_from)
        if query.recorded_to:
            filters.append(ConsentRecord.recorded_at <= query.recorded_to)
        if query.withdrawn_from:
            filters.append(ConsentRecord.withdrawn_at >= query.withdrawn_from)
        if query.withdrawn_to:
            filters.append(ConsentRecord.withdrawn_at <= query.withdrawn_to)
        if query.search:
            pattern = f"%{query.search.strip()}%"
            filters.append(
                or_(
                    Lead.first_name.ilike(pattern),
                    Lead.last_name.ilike(pattern),
                    Lead.email.ilike(pattern),
                    Lead.phone.ilike(pattern),
                )
            )
        return filters

    def _ordering(self, query: ConsentRecordQuery) -> list:
        if query.sort_by == "client_name":
            columns = [Lead.last_name, Lead.first_name]
        elif query.sort_by == "consent_type":
            columns = [ConsentRecord.consent_type]
        else:
            columns = [ConsentRecord.recorded_at]

        direction = "asc" if query.sort_order == "asc" else "desc"
        return [getattr(c, direction)() for c in columns] + [ConsentRecord.id.asc()]

    async def list_consent_records(self, query: ConsentRecordQuery) -> tuple[list[ConsentRecord], int]:
        filters = self._filtered(query)

        stmt = (
            select(ConsentRecord)
            .join(Lead, ConsentRecord.lead_id == Lead.id)
            .options(selectinload(ConsentRecord.lead), selectinload(ConsentRecord.consent_template))
            .where(*filters)
            .order_by(*self._ordering(query))
            .offset(query.skip)
            .limit(query.take)
        )
        records = list((await self.db.execute(stmt)).scalars().all())

        count_stmt = (
            select(func.count(ConsentRecord.id)).join(Lead, ConsentRecord.lead_id == Lead.id).where(*filters)
        )
        total = (await self.db.execute(count_stmt)).scalar_one()

        return records, total

    async def export_consent_records(self, query: ConsentRecordQuery, export_format: str = "csv") -> tuple[str, str]:
        """
        Export every record matching the filters.

        Returns:
            (data, filename)
        """
        export_query = query.model_copy(update={"skip": 0, "take": MAX_EXPORT_LIMIT})
        records, total = await self.list_consent_records(export_query)
        if total > MAX_EXPORT_LIMIT:
            logger.warning(f"Consent export truncated to {MAX_EXPORT_LIMIT} of {total} records")

        stamp = utcnow().strftime("%Y%m%d%H%M%S")
        if export_format == "json":
            return ExportService.consent_records_json(records), f"consent-records-{stamp}.json"
        return ExportService.consent_records_csv(records), f"consent-records-{stamp}.csv"

    async def withdraw_consent(self, record_id: str, actor: Actor) -> ConsentRecord:
        record = await self.db.get(ConsentRecord, record_id)
        if record is None:
            raise ConsentRecordNotFoundError(record_id)
        if record.withdrawn_at is not None:
            raise InvalidOperationError(
                "Consent has already been withdrawn",
                details={"consent_record_id": record_id, "withdrawn_at": record.withdrawn_at.isoformat()},
            )

        await AccessGateService(self.db).ensure_operator_can_mutate_lead(
            record.lead_id, actor, attempted_action="withdraw a consent"
        )

        record.withdrawn_at = utcnow()
        record_audit(
            self.db,
            AuditAction.CONSENT_WITHDRAWN,
            ConsentWithdrawnDetails(
                consent_record_id=record.id,
                consent_template_id=record.consent_template_id,
                version=record.version,
            ),
            lead_id=record.lead_id,
            user_id=actor.id,
        )
        await self.db.commit()

        logger.info(f"Consent record {record.id} withdrawn by {actor.id}")
        return record
