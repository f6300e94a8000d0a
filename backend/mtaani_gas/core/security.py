"""
JWT access token handling.

Credentials are issued elsewhere; this service only needs to mint tokens
for trusted callers (tests, admin tooling) and to validate bearer tokens on
incoming requests. Tokens carry the user id in ``sub`` and the role in
``role``.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Union
from uuid import UUID

from jose import JWTError, jwt

from mtaani_gas.core.config import get_settings
from mtaani_gas.core.logging import get_logger

logger = get_logger(__name__)


class SecurityError(Exception):
    """Base exception for security-related errors."""

    def __init__(self, message: str, code: str, **context):
        super().__init__(message)
        self.code = code
        self.context = context


class TokenError(SecurityError):
    """Raised when a token cannot be created or validated."""

    pass


def create_access_token(
    subject: Union[UUID, str],
    role: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a signed access token.

    Args:
        subject: User id the token is issued for
        role: Optional role claim
        expires_delta: Custom lifetime, defaults to the configured one

    Returns:
        Encoded JWT string
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (
        expires_delta
        or timedelta(minutes=settings.jwt_access_token_expire_minutes)
    )

    claims: Dict[str, Any] = {
        "sub": str(subject),
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    if role:
        claims["role"] = role

    token = jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)

    logger.debug(
        "Access token created",
        subject=str(subject),
        expires_at=expire.isoformat(),
    )
    return token


def decode_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate a JWT.

    Args:
        token: Encoded token

    Returns:
        Decoded claims

    Raises:
        TokenError: If the token is empty, expired or invalid
    """
    if not token:
        raise TokenError("Token cannot be empty", code="EMPTY_TOKEN")

    settings = get_settings()
    try:
        return jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token has expired")
        raise TokenError("Token has expired", code="TOKEN_EXPIRED") from e
    except JWTError as e:
        logger.warning("Invalid token", error=str(e))
        raise TokenError(
            "Invalid token", code="TOKEN_INVALID", original_error=str(e)
        ) from e


def get_token_user_id(token: str) -> UUID:
    """
    Extract the user id from a token.

    Raises:
        TokenError: If the token is invalid or its subject is not a UUID
    """
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise TokenError("Unexpected token type", code="TOKEN_TYPE")
    subject = payload.get("sub")
    try:
        return UUID(str(subject))
    except ValueError as e:
        raise TokenError(
            "Token subject is not a valid user id", code="TOKEN_SUBJECT"
        ) from e
