"""
Role Constants for the consent pipeline

This module defines constants for staff roles to avoid hardcoded values
throughout the codebase.
"""

from enum import Enum


class UserRole(str, Enum):
    """Enumeration of staff roles carried in the bearer token."""

    ADMIN = "ADMIN"
    SUPERVISOR = "SUPERVISOR"
    OPERATOR = "OPERATOR"
    PARTNER = "PARTNER"


# Roles allowed to manage templates, unlock forms and administer consent records
ELEVATED_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPERVISOR})

# Roles allowed on staff-only endpoints
STAFF_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPERVISOR, UserRole.OPERATOR})


def is_elevated(role: str | None) -> bool:
    """
    Check whether a role may perform elevated operations.

    Args:
        role: Role name (enum member or raw string)

    Returns:
        bool: True for ADMIN and SUPERVISOR
    """
    if role is None:
        return False
    try:
        return UserRole(role) in ELEVATED_ROLES
    except ValueError:
        return False
