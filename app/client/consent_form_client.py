"""
Consent Form Client

httpx client for the applicant consent page: unlocks the form with the
access code, keeps local answers reconciled with the template catalog, and
submits the batch. A TEMPLATE_OUTDATED rejection triggers exactly one
refetch-and-resync before the submission is retried.
"""

import logging
from typing import Any

import httpx

from app.client.snapshot_store import (
    ClientFormSnapshot,
    ClientSnapshotStore,
    TemplateInfo,
    reconcile_consents,
)
from app.exceptions import ErrorCode
from app.utils.clock import utcnow
from app.utils.security import hash_access_code, is_valid_access_code

logger = logging.getLogger(__name__)


class ConsentClientError(Exception):
    """Error reported by the consent API, or raised before calling it."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details or {}
        super().__init__(message)

    @classmethod
    def from_response(cls, response: httpx.Response) -> "ConsentClientError":
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        return cls(
            error.get("message") or f"HTTP {response.status_code}",
            status_code=response.status_code,
            error_code=error.get("error_code"),
            details=error.get("details"),
        )


class ConsentSubmissionError(ConsentClientError):
    """The consent batch was rejected."""


class ConsentFormClient:
    def __init__(
        self,
        base_url: str,
        application_form_id: str,
        lead_id: str,
        form_type: str | None = None,
        store: ClientSnapshotStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 10.0,
    ):
        self.application_form_id = application_form_id
        self.lead_id = lead_id
        self.form_type = form_type
        self.store = store or ClientSnapshotStore()
        self.templates: list[TemplateInfo] = []
        self._client = httpx.AsyncClient(base_url=base_url, transport=transport, timeout=timeout)

    async def __aenter__(self) -> "ConsentFormClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def hash_access_code(code: str) -> str:
        return hash_access_code(code)

    @property
    def snapshot(self) -> ClientFormSnapshot:
        snapshot = self.store.load(self.application_form_id, self.lead_id)
        if snapshot is None:
            snapshot = ClientFormSnapshot(application_form_id=self.application_form_id, lead_id=self.lead_id)
        return snapshot

    async def unlock(self, code: str) -> dict:
        """Verify the access code with the server and remember its hash."""
        if not is_valid_access_code(code):
            raise ConsentClientError("Access code must be exactly 4 digits", error_code=ErrorCode.INVALID_CODE.value)

        access_code_hash = self.hash_access_code(code)
        response = await self._client.post(
            f"/api/application-forms/{self.application_form_id}/verify-access",
            json={"lead_id": self.lead_id, "access_code_hash": access_code_hash},
        )
        if not response.is_success:
            raise ConsentClientError.from_response(response)

        snapshot = self.snapshot
        snapshot.access_code_hash = access_code_hash
        self.store.save(snapshot)
        return response.json()

    async def fetch_templates(self) -> list[TemplateInfo]:
        """Fetch active templates and reconcile the stored answers against them."""
        params = {"form_type": self.form_type} if self.form_type else None
        response = await self._client.get("/api/consent-templates", params=params)
        if not response.is_success:
            raise ConsentClientError.from_response(response)

        self.templates = [TemplateInfo.from_api(item) for item in response.json()]
        self.store.save(reconcile_consents(self.snapshot, self.templates))
        return self.templates

    def set_consent(self, consent_template_id: str, accepted: bool) -> None:
        snapshot = self.snapshot
        stored = snapshot.consents.get(consent_template_id)
        if stored is None:
            raise KeyError(f"Consent template {consent_template_id} is not on this form")

        stored.accepted = accepted
        stored.accepted_at = utcnow() if accepted else None
        self.store.save(snapshot)

    def _build_payload(self, snapshot: ClientFormSnapshot) -> dict:
        return {
            "application_form_id": self.application_form_id,
            "lead_id": self.lead_id,
            "access_code_hash": snapshot.access_code_hash,
            "ip_address": snapshot.ip_address,
            "user_agent": snapshot.user_agent,
            "consents": [
                {
                    "consent_template_id": c.consent_template_id,
                    "version": c.version,
                    "consent_given": c.accepted,
                    "accepted_at": c.accepted_at.isoformat() if c.accepted_at else None,
                }
                for c in snapshot.consents.values()
            ],
        }

    async def _post_batch(self) -> httpx.Response:
        snapshot = reconcile_consents(self.snapshot, self.templates)
        self.store.save(snapshot)
        return await self._client.post("/api/consent-records", json=self._build_payload(snapshot))

    async def submit(self) -> int:
        """
        Submit the reconciled answers.

        Returns:
            Number of records the server processed

        Raises:
            ConsentSubmissionError: on any rejection, including a second
                consecutive TEMPLATE_OUTDATED
        """
        if self.snapshot.access_code_hash is None:
            raise ConsentClientError("Form is not unlocked", error_code=ErrorCode.INVALID_CODE.value)
        if not self.templates:
            await self.fetch_templates()

        response = await self._post_batch()
        error = None if response.is_success else ConsentSubmissionError.from_response(response)

        if error is not None and error.error_code == ErrorCode.TEMPLATE_OUTDATED.value:
            logger.info(f"Templates outdated for form {self.application_form_id}; resyncing once")
            await self.fetch_templates()
            response = await self._post_batch()
            error = None if response.is_success else ConsentSubmissionError.from_response(response)

        if error is not None:
            logger.warning(f"Consent submission for form {self.application_form_id} rejected: {error.error_code}")
            raise error

        self.store.clear(self.application_form_id, self.lead_id)
        return response.json()["processed"]
