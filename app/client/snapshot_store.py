"""
Client-side form snapshots.

Keeps the applicant's in-progress answers between page loads, keyed by
(application form id, lead id), and reconciles them against the live
template catalog so an answer given to an older template version is never
submitted.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime

from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemplateInfo:
    """The parts of a published template the client needs."""

    id: str
    version: int
    is_required: bool = False

    @classmethod
    def from_api(cls, data: dict) -> "TemplateInfo":
        return cls(id=data["id"], version=int(data["version"]), is_required=bool(data.get("is_required", False)))


@dataclass
class StoredConsent:
    consent_template_id: str
    version: int
    accepted: bool
    accepted_at: datetime | None = None


@dataclass
class ClientFormSnapshot:
    application_form_id: str
    lead_id: str
    consents: dict[str, StoredConsent] = field(default_factory=dict)
    template_versions: dict[str, int] = field(default_factory=dict)
    access_code_hash: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    updated_at: datetime | None = None


def default_consent(template: TemplateInfo, now: datetime) -> StoredConsent:
    accepted = template.is_required
    return StoredConsent(
        consent_template_id=template.id,
        version=template.version,
        accepted=accepted,
        accepted_at=now if accepted else None,
    )


def reconcile_consents(
    snapshot: ClientFormSnapshot,
    templates: list[TemplateInfo],
    now: datetime | None = None,
) -> ClientFormSnapshot:
    """
    Align stored answers with freshly fetched templates.

    A stored answer survives only when its version equals the template's
    current version; anything else is reset to the template default.
    Answers for templates that are no longer offered are dropped.
    """
    now = now or utcnow()
    consents: dict[str, StoredConsent] = {}
    for template in templates:
        stored = snapshot.consents.get(template.id)
        if stored is not None and stored.version == template.version:
            consents[template.id] = stored
            continue
        if stored is not None:
            logger.info(f"Consent {template.id} reset: stored v{stored.version}, current v{template.version}")
        consents[template.id] = default_consent(template, now)

    return replace(
        snapshot,
        consents=consents,
        template_versions={t.id: t.version for t in templates},
    )


class ClientSnapshotStore:
    """In-memory store of form snapshots for one browsing session."""

    def __init__(self):
        self._snapshots: dict[tuple[str, str], ClientFormSnapshot] = {}

    def load(self, application_form_id: str, lead_id: str) -> ClientFormSnapshot | None:
        return self._snapshots.get((application_form_id, lead_id))

    def save(self, snapshot: ClientFormSnapshot) -> ClientFormSnapshot:
        stored = replace(snapshot, updated_at=utcnow())
        self._snapshots[(snapshot.application_form_id, snapshot.lead_id)] = stored
        return stored

    def clear(self, application_form_id: str, lead_id: str) -> None:
        self._snapshots.pop((application_form_id, lead_id), None)

    def __len__(self) -> int:
        return len(self._snapshots)
