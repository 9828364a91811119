"""
Tests for the application form HTTP routes.
"""

from datetime import timedelta

from sqlalchemy import select

from app.config import settings
from app.models import ApplicationForm, ApplicationFormStatus, NotificationLog, NotificationStatus, UnlockAttempt
from app.utils.clock import utcnow
from app.utils.security import hash_access_code

from conftest import ACCESS_CODE_HASH


class TestVerifyAccess:
    """Tests for POST /api/application-forms/{id}/verify-access"""

    async def test_correct_code(self, client, application_form):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": ACCESS_CODE_HASH},
        )

        assert response.status_code == 200
        assert response.json() == {"ok": True, "application_form_id": application_form.id, "status": "IN_PROGRESS"}

    async def test_wrong_code(self, client, application_form):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": hash_access_code("0000")},
        )

        assert response.status_code == 401
        assert response.json()["error"]["error_code"] == "INVALID_CODE"

    async def test_unknown_form_looks_like_wrong_code(self, client, application_form):
        response = await client.post(
            "/api/application-forms/missing/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": ACCESS_CODE_HASH},
        )
        assert response.status_code == 401

    async def test_expired_link(self, client, test_db, application_form):
        application_form.link_expires_at = utcnow() - timedelta(hours=1)
        await test_db.commit()

        response = await client.post(
            f"/api/application-forms/{application_form.id}/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": ACCESS_CODE_HASH},
        )

        assert response.status_code == 410
        assert response.json()["error"]["error_code"] == "LINK_EXPIRED"

    async def test_malformed_hash(self, client, application_form):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": "1234"},
        )
        assert response.status_code == 422

    async def test_activity_heartbeat(self, client, application_form):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/activity",
            json={"lead_id": application_form.lead_id, "access_code_hash": ACCESS_CODE_HASH},
        )
        assert response.status_code == 204


class TestUnlockAndLockRoutes:
    """Tests for staff form controls"""

    async def test_unlock(self, client, application_form, supervisor_headers):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/unlock",
            json={"reason": "Client asked to fix a typo"},
            headers=supervisor_headers,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "IN_PROGRESS"
        assert body["unlock_history"][-1]["type"] == "STAFF_UNLOCK"
        assert body["unlock_history"][-1]["reason"] == "Client asked to fix a typo"

    async def test_unlock_without_body(self, client, application_form, admin_headers):
        response = await client.post(f"/api/application-forms/{application_form.id}/unlock", headers=admin_headers)
        assert response.status_code == 200

    async def test_operator_cannot_unlock(self, client, application_form, operator_headers):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/unlock", headers=operator_headers
        )
        assert response.status_code == 403

    async def test_lock_then_client_gets_conflict(self, client, application_form, supervisor_headers):
        locked = await client.post(f"/api/application-forms/{application_form.id}/lock", headers=supervisor_headers)
        assert locked.status_code == 200
        assert locked.json()["status"] == "LOCKED"

        response = await client.post(
            f"/api/application-forms/{application_form.id}/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": ACCESS_CODE_HASH},
        )
        assert response.status_code == 409
        assert response.json()["error"]["error_code"] == "LINK_EXPIRED"

    async def test_unknown_form(self, client, admin_headers):
        response = await client.post("/api/application-forms/missing/lock", headers=admin_headers)
        assert response.status_code == 404

    async def test_get_form(self, client, application_form, operator_headers):
        response = await client.get(f"/api/application-forms/{application_form.id}", headers=operator_headers)
        assert response.status_code == 200
        assert response.json()["unlock_history"] == []


class TestGenerateLinkRoute:
    """Tests for POST /api/leads/{lead_id}/application-form-link"""

    async def test_generate_link(self, client, test_db, test_lead, operator_headers):
        response = await client.post(
            f"/api/leads/{test_lead.id}/application-form-link",
            json={"access_code": "4821", "expires_in_days": 3},
            headers=operator_headers,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["access_code"] == "4821"
        assert body["link"].startswith(f"{settings.app_base_url}/client-form/consents?")

        form = (await test_db.execute(select(ApplicationForm))).scalar_one()
        assert form.status == ApplicationFormStatus.DRAFT
        assert form.access_code_hash == hash_access_code("4821")

    async def test_invalid_access_code(self, client, test_lead, operator_headers):
        response = await client.post(
            f"/api/leads/{test_lead.id}/application-form-link",
            json={"access_code": "48a1"},
            headers=operator_headers,
        )
        assert response.status_code == 422

    async def test_operator_blocked_while_client_active(self, client, test_db, application_form, operator_headers):
        application_form.is_client_active = True
        application_form.last_client_activity = utcnow()
        await test_db.commit()

        response = await client.post(
            f"/api/leads/{application_form.lead_id}/application-form-link",
            json={"access_code": "4821"},
            headers=operator_headers,
        )

        assert response.status_code == 409
        assert response.json()["error"]["error_code"] == "CLIENT_ACTIVE"

    async def test_partner_cannot_generate(self, client, test_lead):
        from conftest import auth_headers
        from app.constants.roles import UserRole
        from app.models import User

        partner = User(id="partner", email="partner@example.com", role=UserRole.PARTNER)
        response = await client.post(
            f"/api/leads/{test_lead.id}/application-form-link",
            json={"access_code": "4821"},
            headers=auth_headers(partner),
        )
        assert response.status_code == 403


class TestRedeliverRoute:
    """Tests for POST /api/notifications/redeliver"""

    async def test_redeliver_requires_elevated(self, client, operator_headers):
        response = await client.post("/api/notifications/redeliver", headers=operator_headers)
        assert response.status_code == 403

    async def test_redeliver_failed(self, client, test_db, application_form, admin_headers):
        test_db.add(
            NotificationLog(
                application_form_id=application_form.id,
                lead_id=application_form.lead_id,
                event_type="READY_FOR_REVIEW",
                status=NotificationStatus.FAILED,
                payload={"event": "application.ready_for_review"},
                attempts=3,
                last_error="HTTP 500",
            )
        )
        await test_db.commit()

        response = await client.post("/api/notifications/redeliver", json={"limit": 5}, headers=admin_headers)

        # No webhook URL is configured in tests, so the row is picked up but not delivered
        assert response.status_code == 200
        assert response.json()["attempted"] == 1
        assert response.json()["failed"] == 1


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Request-ID" in response.headers


class TestVerifyAccessRequestMetadata:
    async def test_long_user_agent_is_kept_in_history(self, client, test_db, application_form):
        response = await client.post(
            f"/api/application-forms/{application_form.id}/verify-access",
            json={"lead_id": application_form.lead_id, "access_code_hash": hash_access_code("0000")},
            headers={"User-Agent": "M" * 600},
        )

        assert response.status_code == 401
        attempt = (await test_db.execute(select(UnlockAttempt))).scalar_one()
        assert attempt.success is False
        assert len(attempt.user_agent) == 512
