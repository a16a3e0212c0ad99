"""
FastAPI dependencies for the database session and reviewer identity.
"""

from typing import AsyncGenerator

import structlog
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from certval.auth.jwt import TokenError, decode_token
from certval.db.engine import get_session_factory
from certval.errors import AuthenticationRequired

logger = structlog.get_logger(__name__)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Provide an async DB session. Services commit; leftovers are rolled back."""
    factory = get_session_factory()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


def get_reviewer(request: Request) -> str:
    """Reviewer email from the Bearer token."""
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        raise AuthenticationRequired()
    try:
        payload = decode_token(auth[7:])
    except TokenError as e:
        logger.warning("reviewer_auth_failed", error=str(e), path=request.url.path)
        raise AuthenticationRequired() from e
    request.state.reviewer = payload["email"]
    return payload["email"]
