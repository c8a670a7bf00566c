"""User row bootstrap for authenticated callers."""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from models.user import User
from services.credit_types import StorageUnavailable

logger = logging.getLogger(__name__)


async def _find_user(db: AsyncSession, user_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def ensure_user(db: AsyncSession, user_id: str, email: Optional[str] = None) -> User:
    """Return the user row, creating a placeholder on first sight."""
    try:
        user = await _find_user(db, user_id)
        if user:
            return user

        user = User(id=user_id, email=email or f"{user_id}@local.invalid")
        db.add(user)
        try:
            await db.commit()
            return user
        except IntegrityError:
            await db.rollback()
            existing = await _find_user(db, user_id)
            if existing is None:
                raise
            return existing
    except SQLAlchemyError as exc:
        logger.error("User bootstrap for %s failed: %s", user_id, exc)
        raise StorageUnavailable("Could not load user.") from exc
