from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from jose import JWTError, jwt, ExpiredSignatureError
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Callable, Optional
from app.constants import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES, ELEVATED_ROLES, UserRole
from app.exceptions import AuthenticationError, AuthorizationError, InvalidTokenError, TokenExpiredError
import logging

# Initialize logging
logger = logging.getLogger(__name__)

# Bearer scheme; anonymous applicants send no Authorization header
bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Actor:
    """Already-authenticated staff identity decoded from the bearer token."""

    id: str
    role: UserRole

    @property
    def is_elevated(self) -> bool:
        return self.role in ELEVATED_ROLES


# Function to create an access token with an expiration time
def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)

    to_encode.update({"exp": expire})

    if "sub" not in to_encode:
        raise ValueError("Missing 'sub' claim (user id) in token data.")

    encoded_jwt = jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)
    return encoded_jwt


# Function to decode an access token into an actor
def decode_access_token(token: str) -> Actor:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.warning("Token expired")
        raise TokenExpiredError()
    except JWTError as e:
        logger.warning(f"JWT decoding failed: {str(e)}")
        raise InvalidTokenError()

    user_id = payload.get("sub")
    if user_id is None:
        logger.warning("Token is missing 'sub' claim")
        raise InvalidTokenError("Token does not contain 'sub' field.")

    try:
        role = UserRole(payload.get("role"))
    except ValueError:
        logger.warning(f"Token for user {user_id} carries unknown role {payload.get('role')!r}")
        raise InvalidTokenError("Token does not carry a known role.")

    return Actor(id=str(user_id), role=role)


async def get_optional_actor(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[Actor]:
    """Resolve the actor when a bearer token is present, otherwise None."""
    if credentials is None:
        return None
    actor = decode_access_token(credentials.credentials)
    request.state.actor = actor
    return actor


async def get_current_actor(actor: Optional[Actor] = Depends(get_optional_actor)) -> Actor:
    if actor is None:
        raise AuthenticationError("Could not validate credentials")
    return actor


# Dependency factory restricting a route to the given roles
def require_roles(*roles: UserRole) -> Callable[..., Actor]:
    allowed = set(roles)

    async def _actor_with_role(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in allowed:
            logger.warning(f"Role {actor.role.value} denied; requires one of {sorted(r.value for r in allowed)}")
            raise AuthorizationError(required_roles=sorted(r.value for r in allowed))
        return actor

    return _actor_with_role


require_elevated = require_roles(UserRole.ADMIN, UserRole.SUPERVISOR)
require_staff = require_roles(UserRole.ADMIN, UserRole.SUPERVISOR, UserRole.OPERATOR)
