'''

'''
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import UserRole
from ..common.logger import log


class UserService:
    """
    Service for reading profiles (teachers and students).
    """
    def __init__(self, db: Annotated[AsyncSession, Depends(get_db_session)]):
        self.db = db

    async def _get_user_by_email_with_password(self, email: str) -> Optional[db_models.Profiles]:
        """
        Internal fetch used by the login flow. The ORM object carries the
        password hash, so it must never be returned to the API as-is.
        """
        log.info(f"Fetching user with credentials for email: {email}")
        try:
            stmt = select(db_models.Profiles).filter(db_models.Profiles.email == email)
            result = await self.db.execute(stmt)
            return result.scalars().first()
        except Exception as e:
            log.error(f"Database error fetching user by email {email}: {e}", exc_info=True)
            raise

    async def get_user_by_email(self, email: str) -> Optional[db_models.Profiles]:
        log.info(f"Fetching profile for email: {email}")
        return await self._get_user_by_email_with_password(email)

    async def get_user_by_id(self, user_id: UUID) -> Optional[db_models.Profiles]:
        log.info(f"Fetching profile for ID: {user_id}")
        try:
            return await self.db.get(db_models.Profiles, user_id)
        except Exception as e:
            log.error(f"Database error fetching user by ID {user_id}: {e}", exc_info=True)
            raise

    async def get_users_by_ids(self, user_ids: list[UUID]) -> list[db_models.Profiles]:
        """Fetches several profiles at once, in no particular order."""
        if not user_ids:
            return []
        try:
            stmt = select(db_models.Profiles).filter(db_models.Profiles.id.in_(user_ids))
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except Exception as e:
            log.error(f"Database error fetching users {user_ids}: {e}", exc_info=True)
            raise

    def authorize_role(self, current_user: db_models.Profiles, allowed_roles: list[UserRole]):
        """Helper to check general role permissions."""
        allowed_role_values = [role.value for role in allowed_roles]
        if current_user.role not in allowed_role_values:
            log.warning(f"Unauthorized action by user {current_user.id} (Role: {current_user.role}). Required one of: {allowed_role_values}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action."
            )
