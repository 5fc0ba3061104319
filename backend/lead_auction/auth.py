"""
Lead Auction Engine - Authentication Utilities
JWT tokens and actor dependencies

Identity is issued by the platform's identity service; this module only
decodes the bearer token into the Actor the engine acts on.
"""
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from .config import JWT_SECRET_KEY, JWT_ALGORITHM, ACCESS_TOKEN_EXPIRE_HOURS
from .models.actor import Actor
from .models.db_models import ActorRole

# Bearer token security
security = HTTPBearer()

# Roles a token may carry; SYSTEM is internal to the engine
TOKEN_ROLES = (ActorRole.BUSINESS, ActorRole.BANK, ActorRole.ADMIN)


def create_access_token(actor_id: str, role: ActorRole, expires_hours: int = ACCESS_TOKEN_EXPIRE_HOURS) -> str:
    """Create a JWT access token with role claim."""
    expire = datetime.utcnow() + timedelta(hours=expires_hours)
    to_encode = {
        "sub": actor_id,
        "role": ActorRole(role).value,
        "exp": expire,
    }
    return jwt.encode(to_encode, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode and validate a JWT token (signature and expiry)."""
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
        return payload
    except JWTError:
        return None


def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Actor:
    """
    Dependency to get the acting business, bank or admin.
    Validates the JWT token and its role claim.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    payload = decode_token(credentials.credentials)
    if payload is None:
        raise credentials_exception

    actor_id = payload.get("sub")
    if not actor_id:
        raise credentials_exception

    try:
        role = ActorRole(payload.get("role"))
    except ValueError:
        raise credentials_exception
    if role not in TOKEN_ROLES:
        raise credentials_exception

    return Actor(actor_id=actor_id, role=role)


def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    """
    Dependency to require admin role.
    Use this on admin-only routes.
    """
    if not actor.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return actor
