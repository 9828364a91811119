"""Constants package for the consent pipeline."""

from .auth import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from .roles import ELEVATED_ROLES, STAFF_ROLES, UserRole, is_elevated

__all__ = [
    # Role constants
    "UserRole",
    "ELEVATED_ROLES",
    "STAFF_ROLES",
    "is_elevated",
    # Auth constants
    "SECRET_KEY",
    "ALGORITHM",
    "ACCESS_TOKEN_EXPIRE_MINUTES",
]
