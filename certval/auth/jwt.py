"""
JWT Token Management.

HS256 access tokens carrying the reviewer's email. Issuing tokens belongs to
the dashboard's sign-in flow; create_access_token exists for tooling and tests.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from certval.config import settings


class TokenError(Exception):
    """Raised when token creation or validation fails."""

    pass


def create_access_token(
    email: str,
    name: str = "",
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token."""
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    payload = {
        "sub": email,
        "email": email,
        "name": name,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT access token.

    Raises TokenError on any failure or when the email claim is missing.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise TokenError(f"Invalid token: {e}") from e
    if not payload.get("email"):
        raise TokenError("Token missing required claims")
    return payload
