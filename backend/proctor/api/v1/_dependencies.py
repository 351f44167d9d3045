"""
Shared dependencies for v1 endpoints.

Admin authentication for session management and live monitoring, and
loaders that turn path IDs into rows or 404 responses.
"""
import logging
import secrets

from fastapi import Header
from sqlalchemy.ext.asyncio import AsyncSession

from proctor.core.config import settings
from proctor.core.error_responses import (
    ErrorMessages,
    raise_not_configured,
    raise_not_found,
    raise_unauthorized,
)
from proctor.models import TestAttempt, TestModule, TestSession

logger = logging.getLogger(__name__)


async def verify_admin_token(x_admin_token: str = Header(...)) -> bool:
    """
    Verify admin token from the X-Admin-Token header.

    Uses constant-time comparison.

    Raises:
        HTTPException: 500 if no token is configured, 401 if the token is wrong.
    """
    if not settings.ADMIN_TOKEN:
        raise_not_configured(ErrorMessages.ADMIN_TOKEN_NOT_CONFIGURED)

    if not secrets.compare_digest(x_admin_token, settings.ADMIN_TOKEN):
        logger.warning("Rejected request with invalid admin token")
        raise_unauthorized(ErrorMessages.ADMIN_TOKEN_INVALID)

    return True


async def get_session_or_404(db: AsyncSession, session_id: int) -> TestSession:
    """Load a session by ID or raise 404."""
    session = await db.get(TestSession, session_id)
    if session is None:
        raise_not_found(ErrorMessages.SESSION_NOT_FOUND)
    return session


async def get_test_module_or_404(db: AsyncSession, test_id: int) -> TestModule:
    """Load a test module by ID or raise 404."""
    test = await db.get(TestModule, test_id)
    if test is None:
        raise_not_found(ErrorMessages.TEST_MODULE_NOT_FOUND)
    return test


async def get_attempt_with_test_or_404(
    db: AsyncSession, attempt_id: int
) -> tuple[TestAttempt, TestModule]:
    """Load an attempt and its test module or raise 404."""
    attempt = await db.get(TestAttempt, attempt_id)
    if attempt is None:
        raise_not_found(ErrorMessages.ATTEMPT_NOT_FOUND)
    test = await get_test_module_or_404(db, attempt.test_id)
    return attempt, test
