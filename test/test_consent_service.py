"""
Tests for consent batch recording and consent record administration.
"""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from app.auth import Actor
from app.exceptions import (
    ClientActiveError,
    ConsentRecordNotFoundError,
    InvalidOperationError,
    LinkExpiredError,
    RequiredConsentMissingError,
    TemplateOutdatedError,
)
from app.models import (
    ApplicationFormStatus,
    AuditAction,
    AuditLog,
    ConsentRecord,
    ConsentType,
    LeadNote,
    NotificationEventType,
    NotificationLog,
)
from app.schemas.consent import ConsentBatchRequest, ConsentRecordQuery
from app.services import template_service
from app.services.consent_service import ConsentService
from app.utils.clock import utcnow
from app.utils.security import hash_access_code

from conftest import ACCESS_CODE_HASH


def batch(form, consents, **overrides) -> ConsentBatchRequest:
    data = {
        "application_form_id": form.id,
        "lead_id": form.lead_id,
        "access_code_hash": ACCESS_CODE_HASH,
        "ip_address": "203.0.113.7",
        "user_agent": "Mozilla/5.0",
        "consents": consents,
    }
    data.update(overrides)
    return ConsentBatchRequest(**data)


def answer(template_id: str, version: int, given: bool) -> dict:
    return {"consent_template_id": template_id, "version": version, "consent_given": given}


async def all_records(db) -> list[ConsentRecord]:
    result = await db.execute(
        select(ConsentRecord).order_by(ConsentRecord.consent_template_id).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def count(db, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


class TestDuplicateEntries:
    """Repeated answers for one template within a single batch."""

    async def test_last_answer_wins(self, test_db, templates, application_form):
        result = await ConsentService(test_db).record_consent_batch(
            batch(
                application_form,
                [answer("tpl_marketing", 2, True), answer("tpl_partners", 1, True), answer("tpl_partners", 1, False)],
            )
        )

        assert result == {"processed": 2}
        records = await all_records(test_db)
        assert [(r.consent_template_id, r.consent_given) for r in records] == [
            ("tpl_marketing", True),
            ("tpl_partners", False),
        ]

    async def test_declined_required_answer_before_acceptance_rejected(self, test_db, templates, application_form):
        with pytest.raises(RequiredConsentMissingError):
            await ConsentService(test_db).record_consent_batch(
                batch(application_form, [answer("tpl_marketing", 2, False), answer("tpl_marketing", 2, True)])
            )
        assert await count(test_db, ConsentRecord) == 0

    async def test_declined_required_answer_after_acceptance_rejected(self, test_db, templates, application_form):
        with pytest.raises(RequiredConsentMissingError):
            await ConsentService(test_db).record_consent_batch(
                batch(application_form, [answer("tpl_marketing", 2, True), answer("tpl_marketing", 2, False)])
            )
        assert await count(test_db, ConsentRecord) == 0

    async def test_outdated_answer_before_current_rejected(self, test_db, templates, application_form):
        with pytest.raises(TemplateOutdatedError):
            await ConsentService(test_db).record_consent_batch(
                batch(application_form, [answer("tpl_marketing", 1, True), answer("tpl_marketing", 2, True)])
            )
        assert await count(test_db, ConsentRecord) == 0

    async def test_outdated_answer_after_current_rejected(self, test_db, templates, application_form):
        with pytest.raises(TemplateOutdatedError):
            await ConsentService(test_db).record_consent_batch(
                batch(application_form, [answer("tpl_marketing", 2, True), answer("tpl_marketing", 1, True)])
            )
        assert await count(test_db, ConsentRecord) == 0


class TestRecordConsentBatch:
    """Tests for recording a batch of consents."""

    async def test_marketing_scenario(self, test_db, templates, application_form):
        service = ConsentService(test_db)

        result = await service.record_consent_batch(
            batch(application_form, [answer("tpl_marketing", 2, True), answer("tpl_partners", 1, False)])
        )

        assert result == {"processed": 2}
        records = await all_records(test_db)
        assert [(r.consent_template_id, r.version, r.consent_given) for r in records] == [
            ("tpl_marketing", 2, True),
            ("tpl_partners", 1, False),
        ]
        marketing = records[0]
        assert marketing.consent_type == ConsentType.MARKETING
        assert marketing.consent_text == "I agree to receive marketing communication."
        assert marketing.help_text_snapshot == "You can withdraw at any time."
        assert marketing.ip_address == "203.0.113.7"
        assert marketing.recorded_by_user_id == application_form.created_by_user_id
        before = [(r.id, r.consent_given, r.updated_at) for r in records]

        with pytest.raises(TemplateOutdatedError) as exc_info:
            await service.record_consent_batch(batch(application_form, [answer("tpl_marketing", 1, True)]))

        assert exc_info.value.details == {"consent_template_id": "tpl_marketing", "latest_version": 2}
        after = await all_records(test_db)
        assert [(r.id, r.consent_given, r.updated_at) for r in after] == before

    async def test_form_moves_to_ready(self, test_db, templates, application_form):
        await ConsentService(test_db).record_consent_batch(batch(application_form, [answer("tpl_marketing", 2, True)]))

        await test_db.refresh(application_form)
        assert application_form.status == ApplicationFormStatus.READY
        assert application_form.submitted_by_client is True
        assert application_form.submitted_at is not None
        assert application_form.is_client_active is False

    async def test_resubmission_upserts(self, test_db, templates, application_form):
        service = ConsentService(test_db)
        await service.record_consent_batch(
            batch(application_form, [answer("tpl_marketing", 2, True), answer("tpl_partners", 1, True)])
        )
        await service.record_consent_batch(
            batch(application_form, [answer("tpl_marketing", 2, True), answer("tpl_partners", 1, False)])
        )

        records = await all_records(test_db)
        assert len(records) == 2
        assert records[1].consent_template_id == "tpl_partners"
        assert records[1].consent_given is False

    async def test_invalid_consent_rolls_back_whole_batch(self, test_db, templates, application_form):
        with pytest.raises(RequiredConsentMissingError):
            await ConsentService(test_db).record_consent_batch(
                batch(application_form, [answer("tpl_partners", 1, True), answer("tpl_unknown", 1, True)])
            )

        assert await count(test_db, ConsentRecord) == 0
        await test_db.refresh(application_form)
        assert application_form.status == ApplicationFormStatus.DRAFT

    async def test_declined_required_consent_rejected(self, test_db, templates, application_form):
        with pytest.raises(RequiredConsentMissingError) as exc_info:
            await ConsentService(test_db).record_consent_batch(
                batch(application_form, [answer("tpl_partners", 1, True), answer("tpl_marketing", 2, False)])
            )

        assert exc_info.value.details["consent_template_id"] == "tpl_marketing"
        assert await count(test_db, ConsentRecord) == 0

    async def test_inactive_template_rejected(self, test_db, templates, application_form):
        templates["tpl_partners"].is_active = False
        await test_db.commit()

        with pytest.raises(RequiredConsentMissingError):
            await ConsentService(test_db).record_consent_batch(batch(application_form, [answer("tpl_partners", 1, True)]))

    async def test_outdated_version_clears_template_cache(self, test_db, templates, application_form):
        await template_service.list_templates(test_db)
        assert template_service.get_cache_stats()["entries"] == 1

        with pytest.raises(TemplateOutdatedError):
            await ConsentService(test_db).record_consent_batch(batch(application_form, [answer("tpl_marketing", 1, True)]))

        assert template_service.get_cache_stats()["entries"] == 0

    async def test_expired_link_rejected(self, test_db, templates, application_form):
        application_form.link_expires_at = utcnow() - timedelta(seconds=1)
        await test_db.commit()

        with pytest.raises(LinkExpiredError):
            await ConsentService(test_db).record_consent_batch(batch(application_form, [answer("tpl_marketing", 2, True)]))

    async def test_locked_form_rejected(self, test_db, templates, application_form):
        application_form.status = ApplicationFormStatus.LOCKED
        await test_db.commit()

        with pytest.raises(LinkExpiredError) as exc_info:
            await ConsentService(test_db).record_consent_batch(batch(application_form, [answer("tpl_marketing", 2, True)]))
        assert exc_info.value.status_code == 409

    async def test_wrong_access_code_hash_rejected(self, test_db, templates, application_form):
        with pytest.raises(LinkExpiredError):
            await ConsentService(test_db).record_consent_batch(
                batch(
                    application_form,
                    [answer("tpl_marketing", 2, True)],
                    access_code_hash=hash_access_code("0000"),
                )
            )
        assert await count(test_db, ConsentRecord) == 0

    async def test_ready_for_review_recorded_once(self, test_db, templates, application_form):
        service = ConsentService(test_db)
        await service.record_consent_batch(batch(application_form, [answer("tpl_marketing", 2, True)]))
        await service.record_consent_batch(batch(application_form, [answer("tpl_marketing", 2, True)]))

        logs = (await test_db.execute(select(NotificationLog))).scalars().all()
        assert len(logs) == 1
        assert logs[0].event_type == NotificationEventType.READY_FOR_REVIEW
        assert logs[0].payload["consents"] == [
            {"consentTemplateId": "tpl_marketing", "consentType": "MARKETING", "version": 2, "consentGiven": True}
        ]
        assert await count(test_db, LeadNote) == 1

    async def test_notification_failure_does_not_fail_submission(self, test_db, templates, application_form):
        class BrokenDispatcher:
            async def record_ready_for_review(self, event):
                raise RuntimeError("CRM unreachable")

        result = await ConsentService(test_db, dispatcher=BrokenDispatcher()).record_consent_batch(
            batch(application_form, [answer("tpl_marketing", 2, True)])
        )

        assert result == {"processed": 1}
        assert await count(test_db, ConsentRecord) == 1

    async def test_delivery_is_handed_to_scheduler(self, test_db, templates, application_form):
        scheduled = []

        result = await ConsentService(test_db).record_consent_batch(
            batch(application_form, [answer("tpl_marketing", 2, True)]), schedule_delivery=scheduled.append
        )

        assert result == {"processed": 1}
        log = (await test_db.execute(select(NotificationLog))).scalar_one()
        assert scheduled == [log.id]
        assert log.attempts == 0

    async def test_resubmission_schedules_nothing(self, test_db, templates, application_form):
        scheduled = []
        service = ConsentService(test_db)
        payload = batch(application_form, [answer("tpl_marketing", 2, True)])

        await service.record_consent_batch(payload, schedule_delivery=scheduled.append)
        await service.record_consent_batch(payload, schedule_delivery=scheduled.append)

        assert len(scheduled) == 1


class TestConsentRecordAdministration:
    """Tests for listing, exporting and withdrawing records."""

    @pytest.fixture
    async def recorded(self, test_db, templates, application_form):
        await ConsentService(test_db).record_consent_batch(
            batch(application_form, [answer("tpl_marketing", 2, True), answer("tpl_partners", 1, False)])
        )
        return await all_records(test_db)

    async def test_list_with_filters(self, test_db, recorded):
        service = ConsentService(test_db)

        records, total = await service.list_consent_records(ConsentRecordQuery(consent_given=False))
        assert total == 1
        assert records[0].consent_template_id == "tpl_partners"

        records, total = await service.list_consent_records(ConsentRecordQuery(consent_type=ConsentType.MARKETING))
        assert [r.consent_template_id for r in records] == ["tpl_marketing"]

    async def test_search_by_client_name(self, test_db, recorded):
        service = ConsentService(test_db)

        _, total = await service.list_consent_records(ConsentRecordQuery(search="novak"))
        assert total == 2

        _, total = await service.list_consent_records(ConsentRecordQuery(search="nobody"))
        assert total == 0

    async def test_paging(self, test_db, recorded):
        records, total = await ConsentService(test_db).list_consent_records(
            ConsentRecordQuery(sort_by="consent_type", sort_order="asc", skip=1, take=1)
        )
        assert total == 2
        assert len(records) == 1
        assert records[0].consent_type == ConsentType.MARKETING

    async def test_export_csv(self, test_db, recorded):
        data, filename = await ConsentService(test_db).export_consent_records(ConsentRecordQuery(), "csv")

        assert filename.endswith(".csv")
        lines = data.strip().splitlines()
        assert lines[0].startswith("Record ID,Recorded At,Lead ID")
        assert len(lines) == 3

    async def test_export_json(self, test_db, recorded):
        data, filename = await ConsentService(test_db).export_consent_records(ConsentRecordQuery(), "json")
        assert filename.endswith(".json")
        assert '"client_last_name": "Novak"' in data

    async def test_withdraw(self, test_db, recorded, supervisor_user):
        actor = Actor(id=supervisor_user.id, role=supervisor_user.role)
        service = ConsentService(test_db)

        record = await service.withdraw_consent(recorded[0].id, actor)
        assert record.withdrawn_at is not None

        audit = (await test_db.execute(select(AuditLog))).scalars().one()
        assert audit.action == AuditAction.CONSENT_WITHDRAWN.value

        with pytest.raises(InvalidOperationError):
            await service.withdraw_consent(recorded[0].id, actor)

    async def test_withdraw_unknown_record(self, test_db, supervisor_user):
        with pytest.raises(ConsentRecordNotFoundError):
            await ConsentService(test_db).withdraw_consent(
                "missing", Actor(id=supervisor_user.id, role=supervisor_user.role)
            )

    async def test_operator_withdraw_blocked_while_client_active(
        self, test_db, recorded, application_form, operator_user
    ):
        application_form.is_client_active = True
        application_form.last_client_activity = utcnow()
        await test_db.commit()

        with pytest.raises(ClientActiveError):
            await ConsentService(test_db).withdraw_consent(
                recorded[0].id, Actor(id=operator_user.id, role=operator_user.role)
            )

        records = await all_records(test_db)
        assert records[0].withdrawn_at is None
