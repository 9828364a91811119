"""
Tests for client form snapshots and reconciliation.
"""

from datetime import datetime, timezone

from app.client.snapshot_store import (
    ClientFormSnapshot,
    ClientSnapshotStore,
    StoredConsent,
    TemplateInfo,
    reconcile_consents,
)

NOW = datetime(2026, 5, 1, 9, 30, tzinfo=timezone.utc)
EARLIER = datetime(2026, 4, 30, 18, 0, tzinfo=timezone.utc)


def snapshot_with(*consents: StoredConsent) -> ClientFormSnapshot:
    return ClientFormSnapshot(
        application_form_id="form_1",
        lead_id="lead_42",
        consents={c.consent_template_id: c for c in consents},
    )


class TestReconcileConsents:
    """Tests for aligning stored answers with fetched templates"""

    def test_matching_version_is_kept(self):
        stored = StoredConsent("tpl_partners", 1, accepted=True, accepted_at=EARLIER)

        result = reconcile_consents(snapshot_with(stored), [TemplateInfo("tpl_partners", 1)], now=NOW)

        assert result.consents["tpl_partners"] == stored

    def test_outdated_answer_is_reset_to_default(self):
        """A v1 answer is never carried over to a v2 template"""
        stored = StoredConsent("tpl_marketing", 1, accepted=False)

        result = reconcile_consents(
            snapshot_with(stored), [TemplateInfo("tpl_marketing", 2, is_required=True)], now=NOW
        )

        assert result.consents["tpl_marketing"] == StoredConsent("tpl_marketing", 2, accepted=True, accepted_at=NOW)
        assert result.template_versions == {"tpl_marketing": 2}

    def test_optional_default_is_not_accepted(self):
        result = reconcile_consents(snapshot_with(), [TemplateInfo("tpl_partners", 1)], now=NOW)
        assert result.consents["tpl_partners"] == StoredConsent("tpl_partners", 1, accepted=False, accepted_at=None)

    def test_withdrawn_templates_are_dropped(self):
        stored = StoredConsent("tpl_retired", 3, accepted=True, accepted_at=EARLIER)

        result = reconcile_consents(snapshot_with(stored), [TemplateInfo("tpl_partners", 1)], now=NOW)

        assert set(result.consents) == {"tpl_partners"}

    def test_original_snapshot_is_untouched(self):
        snapshot = snapshot_with(StoredConsent("tpl_marketing", 1, accepted=False))
        reconcile_consents(snapshot, [TemplateInfo("tpl_marketing", 2)], now=NOW)
        assert snapshot.consents["tpl_marketing"].version == 1


class TestClientSnapshotStore:
    def test_save_load_clear(self):
        store = ClientSnapshotStore()
        assert store.load("form_1", "lead_42") is None

        saved = store.save(snapshot_with())
        assert saved.updated_at is not None
        assert store.load("form_1", "lead_42") == saved

        store.clear("form_1", "lead_42")
        assert store.load("form_1", "lead_42") is None
        assert len(store) == 0

    def test_snapshots_are_keyed_by_form_and_lead(self):
        store = ClientSnapshotStore()
        store.save(ClientFormSnapshot(application_form_id="form_1", lead_id="lead_42"))
        store.save(ClientFormSnapshot(application_form_id="form_1", lead_id="lead_43"))

        assert len(store) == 2
        store.clear("form_1", "lead_42")
        assert store.load("form_1", "lead_43") is not None

    def test_template_info_from_api(self):
        info = TemplateInfo.from_api({"id": "tpl_marketing", "version": 2, "is_required": True, "title": "Marketing"})
        assert info == TemplateInfo("tpl_marketing", 2, True)
