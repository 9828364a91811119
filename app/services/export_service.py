"""
Export Service

Provides consent record export in CSV and JSON.
"""

import csv
import json
import logging
from io import StringIO

from app.models.consent_record import ConsentRecord
from app.utils.security import sanitize_csv_field

logger = logging.getLogger(__name__)

# Maximum export limits to prevent resource exhaustion
MAX_EXPORT_LIMIT = 10000

CONSENT_EXPORT_COLUMNS = [
    ("record_id", "Record ID"),
    ("recorded_at", "Recorded At"),
    ("lead_id", "Lead ID"),
    ("client_first_name", "Client First Name"),
    ("client_last_name", "Client Last Name"),
    ("client_email", "Client Email"),
    ("client_phone", "Client Phone"),
    ("consent_title", "Consent Title"),
    ("consent_type", "Consent Type"),
    ("consent_template_version", "Template Version"),
    ("consent_given", "Consent Given"),
    ("consent_method", "Consent Method"),
    ("recorded_by_user_id", "Recorded By"),
    ("ip_address", "IP Address"),
    ("user_agent", "User Agent"),
    ("withdrawn_at", "Withdrawn At"),
]


def flatten_consent_record(record: ConsentRecord) -> dict:
    """Flatten a record with its lead and template into export columns."""
    lead = record.lead
    template = record.consent_template
    return {
        "record_id": record.id,
        "recorded_at": record.recorded_at.isoformat(),
        "lead_id": record.lead_id,
        "client_first_name": (lead.first_name if lead else None) or "",
        "client_last_name": (lead.last_name if lead else None) or "",
        "client_email": (lead.email if lead else None) or "",
        "client_phone": (lead.phone if lead else None) or "",
        "consent_title": template.title if template else "",
        "consent_type": record.consent_type.value,
        "consent_template_version": record.version,
        "consent_given": record.consent_given,
        "consent_method": record.consent_method.value,
        "recorded_by_user_id": record.recorded_by_user_id or "",
        "ip_address": record.ip_address or "",
        "user_agent": record.user_agent or "",
        "withdrawn_at": record.withdrawn_at.isoformat() if record.withdrawn_at else "",
    }


class ExportService:
    """Service for exporting consent records in various formats"""

    @staticmethod
    def consent_records_json(records: list[ConsentRecord]) -> str:
        """
        Export consent records as JSON.

        Args:
            records: Records with `lead` and `consent_template` loaded

        Returns:
            JSON string
        """
        return json.dumps([flatten_consent_record(r) for r in records], indent=2)

    @staticmethod
    def consent_records_csv(records: list[ConsentRecord]) -> str:
        """
        Export consent records as CSV with injection protection.

        Args:
            records: Records with `lead` and `consent_template` loaded

        Returns:
            CSV string with sanitized fields
        """
        output = StringIO()
        writer = csv.writer(output)

        writer.writerow([label for _, label in CONSENT_EXPORT_COLUMNS])

        for record in records:
            row = flatten_consent_record(record)
            writer.writerow([sanitize_csv_field(row[key]) for key, _ in CONSENT_EXPORT_COLUMNS])

        logger.info(f"Exported {len(records)} consent records as CSV")
        return output.getvalue()
