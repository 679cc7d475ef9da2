"""Authentication utilities."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, Header, Request

from storefront.config import Settings
from storefront.errors import AuthenticationError, ForbiddenError
from storefront.models import Role, User
from storefront.monitoring import auth_attempts_counter, auth_failures_counter

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"


@dataclass(frozen=True)
class Identity:
    """Verified caller identity, passed explicitly into service calls."""
    user_id: str
    email: str
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password with bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    """Check a password against a bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed hash in the database
        logger.warning("Stored password hash is not a valid bcrypt hash")
        return False


def create_access_token(user: User, settings: Settings) -> str:
    """
    Issue a signed bearer token for a user.

    Args:
        user: Authenticated user
        settings: Service settings (signing secret and lifetime)

    Returns:
        Encoded JWT
    """
    now = datetime.now(timezone.utc)
    claims = {
        "user_id": user.id,
        "email": user.email,
        "role": user.role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(hours=settings.token_ttl_hours)).timestamp()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, settings: Settings) -> Identity:
    """
    Verify a bearer token and return the identity it carries.

    Raises:
        AuthenticationError: If the token is invalid or expired
    """
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
            options={"require": ["exp", "iat", "user_id"]},
        )
    except jwt.ExpiredSignatureError:
        auth_failures_counter.add(1, {"reason": "expired_token"})
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        auth_failures_counter.add(1, {"reason": "invalid_token"})
        logger.warning("Authentication failed: Invalid token", extra={
            "token_prefix": token[:8] + "..." if len(token) > 8 else token
        })
        raise AuthenticationError("Invalid token")

    return Identity(
        user_id=claims["user_id"],
        email=claims.get("email", ""),
        role=claims.get("role", Role.CUSTOMER.value),
    )


def peek_subject(authorization: Optional[str], settings: Settings) -> Optional[str]:
    """Return the user id of a valid bearer token, or None."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        claims = jwt.decode(
            authorization.split(" ", 1)[1],
            settings.jwt_secret,
            algorithms=[JWT_ALGORITHM],
        )
    except jwt.InvalidTokenError:
        return None
    return claims.get("user_id")


def verify_token(
    request: Request,
    authorization: Optional[str] = Header(None)
) -> Identity:
    """
    Verify authentication token.

    Args:
        request: Incoming request (for the application settings)
        authorization: Authorization header value

    Returns:
        Identity of the caller

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    auth_attempts_counter.add(1, {"type": "bearer_token"})

    if authorization is None:
        auth_failures_counter.add(1, {"reason": "missing_header"})
        logger.warning("Authentication failed: Missing authorization header")
        raise AuthenticationError("Missing authorization header")

    # Extract token (Bearer <token>)
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        auth_failures_counter.add(1, {"reason": "invalid_format"})
        logger.warning("Authentication failed: Invalid authorization header format", extra={
            "auth_header": authorization[:20] + "..." if len(authorization) > 20 else authorization
        })
        raise AuthenticationError("Invalid authorization header format")

    identity = decode_token(parts[1], request.app.state.settings)

    logger.debug("Authentication successful", extra={
        "user_id": identity.user_id
    })
    return identity


def require_admin(identity: Identity = Depends(verify_token)) -> Identity:
    """Allow only callers whose token carries the admin role."""
    if not identity.is_admin:
        auth_failures_counter.add(1, {"reason": "not_admin"})
        logger.warning("Admin access denied", extra={
            "user_id": identity.user_id
        })
        raise ForbiddenError("Admin access required")
    return identity
