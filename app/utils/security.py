"""
Security Utilities

Provides access-code hashing, constant-time comparison, link token
generation and output sanitization helpers.
"""

import hashlib
import hmac
import logging
import re
import secrets
from typing import Any

logger = logging.getLogger(__name__)

ACCESS_CODE_PATTERN = re.compile(r"^\d{4}$")

# Compared against when the form is unknown so both paths do the same work
DUMMY_ACCESS_CODE_HASH = hashlib.sha256(b"no-such-form").hexdigest()


def is_valid_access_code(code: str) -> bool:
    """Return True when the code is exactly four ASCII digits."""
    return bool(code) and bool(ACCESS_CODE_PATTERN.match(code))


def hash_access_code(code: str) -> str:
    """
    Hash a 4-digit access code the way the client page does.

    Example:
        >>> hash_access_code("1234")
        '03ac674216f3e15c761ee1a5e255f067953623c8b388b4459e13f978d7c846f4'
    """
    return hashlib.sha256(code.encode("utf-8")).hexdigest()


def access_code_hash_matches(expected_hash: str | None, submitted_hash: str | None) -> bool:
    """
    Compare two access-code hashes in constant time.

    A missing expected hash is replaced by a fixed dummy digest so the
    comparison always runs.
    """
    expected = (expected_hash or DUMMY_ACCESS_CODE_HASH).lower().encode("utf-8")
    submitted = (submitted_hash or "").lower().encode("utf-8")
    matched = hmac.compare_digest(expected, submitted)
    return matched and expected_hash is not None


def generate_link_token() -> str:
    """Generate an unguessable token for an application form link."""
    return secrets.token_urlsafe(32)


def sanitize_csv_field(value: Any) -> str:
    """
    Sanitize a CSV field value to prevent CSV injection attacks.

    CSV injection occurs when spreadsheet applications interpret
    formulas in CSV cells (starting with =, +, -, @, etc).

    Args:
        value: Field value to sanitize

    Returns:
        Sanitized string safe for CSV export

    Example:
        >>> sanitize_csv_field("=SUM(A1:A10)")
        "'=SUM(A1:A10)"
        >>> sanitize_csv_field("normal text")
        'normal text'
    """
    value_str = str(value) if value is not None else ""

    if value_str and value_str[0] in ["=", "+", "-", "@", "\t", "\r", "\n"]:
        # Prefix with single quote to prevent formula interpretation
        value_str = "'" + value_str
        logger.debug("CSV injection attempt prevented: prefixed value with quote")

    value_str = re.sub(r"[\r\n]+", " ", value_str)

    return value_str


def sanitize_email_header(value: str) -> str:
    """
    Sanitize email header values to prevent header injection attacks.

    Example:
        >>> sanitize_email_header("user@example.com\\nBcc: attacker@evil.com")
        'user@example.comBcc: attacker@evil.com'
    """
    if not value:
        return ""

    sanitized = value.replace("\r", "").replace("\n", "").replace("\x00", "")

    if sanitized != value:
        logger.warning("Email header injection attempt detected and sanitized")

    return sanitized
