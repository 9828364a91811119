"""
Authentication Constants

Configuration constants for JWT bearer tokens.
"""

from app.config import settings

SECRET_KEY = settings.secret_key
ALGORITHM = settings.jwt_algorithm
ACCESS_TOKEN_EXPIRE_MINUTES = 30
