"""
Tests for Export Service

Tests consent record export in CSV and JSON.
"""

import csv
import json
from datetime import datetime, timezone
from io import StringIO

from app.models import ConsentMethod, ConsentRecord, ConsentTemplate, ConsentType, Lead
from app.services.export_service import CONSENT_EXPORT_COLUMNS, ExportService, flatten_consent_record


def make_record(**overrides) -> ConsentRecord:
    lead = Lead(id="lead_42", first_name="=HYPERLINK(\"x\")", last_name="Novak", email="jan@example.com", phone="+420")
    template = ConsentTemplate(id="tpl_marketing", title="Marketing", consent_type=ConsentType.MARKETING)
    values = {
        "id": "rec_1",
        "application_form_id": "form_1",
        "consent_template_id": "tpl_marketing",
        "version": 2,
        "lead_id": "lead_42",
        "consent_type": ConsentType.MARKETING,
        "consent_given": True,
        "consent_method": ConsentMethod.ONLINE_FORM,
        "consent_text": "I agree",
        "recorded_at": datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        "ip_address": "203.0.113.7",
        "user_agent": "Mozilla/5.0",
    }
    values.update(overrides)
    record = ConsentRecord(**values)
    record.lead = lead
    record.consent_template = template
    return record


class TestFlatten:
    def test_flatten_includes_client_and_template(self):
        row = flatten_consent_record(make_record())

        assert row["client_last_name"] == "Novak"
        assert row["consent_title"] == "Marketing"
        assert row["consent_type"] == "MARKETING"
        assert row["consent_template_version"] == 2
        assert row["withdrawn_at"] == ""

    def test_withdrawn_at_is_iso(self):
        withdrawn = datetime(2026, 4, 1, tzinfo=timezone.utc)
        row = flatten_consent_record(make_record(withdrawn_at=withdrawn))
        assert row["withdrawn_at"] == withdrawn.isoformat()


class TestExportService:
    """Test export service functionality"""

    def test_csv_header_and_rows(self):
        data = ExportService.consent_records_csv([make_record(), make_record(id="rec_2", consent_given=False)])

        rows = list(csv.reader(StringIO(data)))
        assert rows[0] == [label for _, label in CONSENT_EXPORT_COLUMNS]
        assert len(rows) == 3
        assert rows[2][0] == "rec_2"

    def test_csv_formula_injection_is_neutralised(self):
        """Cells starting with = are prefixed so spreadsheets show them as text"""
        data = ExportService.consent_records_csv([make_record()])

        rows = list(csv.reader(StringIO(data)))
        first_name = rows[1][3]
        assert first_name.startswith("'=")

    def test_json_export(self):
        data = json.loads(ExportService.consent_records_json([make_record()]))

        assert data[0]["record_id"] == "rec_1"
        assert data[0]["consent_given"] is True
        # JSON is not opened by spreadsheets; values are kept verbatim
        assert data[0]["client_first_name"].startswith("=")
