"""Authentication utilities.

Requests authenticate with an opaque bearer token issued at login. The token
is resolved to a `Principal` once, at the dependency boundary.
"""
import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from database import get_db
from models import User
from monitoring import auth_attempts_counter, auth_failures_counter

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 260000


@dataclass(frozen=True)
class Principal:
    """The authenticated caller."""
    id: int
    email: str
    name: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def hash_password(password: str) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"pbkdf2_sha256${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        _, iterations, salt, expected = encoded.split("$")
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), int(iterations))
    return hmac.compare_digest(digest.hex(), expected)


def issue_token() -> str:
    return secrets.token_urlsafe(32)


def _extract_token(authorization: Optional[str]) -> str:
    """
    Extract the bearer token from an Authorization header.

    Raises:
        HTTPException: If the header is missing or malformed
    """
    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise HTTPException(status_code=401, detail="Authentication required")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format")
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    return parts[1]


def _principal_for_token(db: Session, token: str) -> Optional[Principal]:
    user = db.query(User).filter(User.api_token == token, User.is_active.is_(True)).first()
    if user is None:
        return None
    return Principal(id=user.id, email=user.email, name=user.name, role=user.role)


def get_current_principal(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Principal:
    """
    Resolve the caller from the bearer token.

    Raises:
        HTTPException: 401 if the token is missing or unknown
    """
    auth_attempts_counter.add(1, {"type": "bearer_token"})
    token = _extract_token(authorization)

    principal = _principal_for_token(db, token)
    if principal is None:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:6] + "..."
        })
        raise HTTPException(status_code=401, detail="Invalid token")

    return principal


def get_optional_principal(
    authorization: Optional[str] = Header(None),
    db: Session = Depends(get_db),
) -> Optional[Principal]:
    """Resolve the caller when a valid token is present, otherwise None."""
    if not authorization or not authorization.lower().startswith("bearer "):
        return None
    return _principal_for_token(db, authorization.split()[-1])


def require_admin(principal: Principal = Depends(get_current_principal)) -> Principal:
    """Allow only principals with the admin role."""
    if not principal.is_admin:
        auth_failures_counter.add(1, {"reason": "forbidden"})
        logger.warning("Admin access denied", extra={"user_id": principal.id})
        raise HTTPException(status_code=403, detail="Admin access required")
    return principal
