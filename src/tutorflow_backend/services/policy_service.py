'''

'''
from decimal import Decimal
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import UserRole
from ..models import cancellation as cancellation_models
from ..common.config import settings
from ..common.logger import log
from .user_service import UserService


class CancellationPolicyService:
    """
    Reads and maintains the per-teacher cancellation policy.
    At most one policy per teacher is active at a time.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        user_service: Annotated[UserService, Depends(UserService)]
    ):
        self.db = db
        self.user_service = user_service

    async def get_active_policy_orm(self, teacher_id: UUID) -> Optional[db_models.CancellationPolicies]:
        """
        Internal fetch of the teacher's active policy, or None when nothing
        is configured.
        """
        try:
            stmt = select(db_models.CancellationPolicies).filter(
                db_models.CancellationPolicies.teacher_id == teacher_id,
                db_models.CancellationPolicies.is_active.is_(True)
            ).order_by(db_models.CancellationPolicies.updated_at.desc())
            result = await self.db.execute(stmt)
            return result.scalars().first()
        except Exception as e:
            log.error(f"Database error fetching cancellation policy for teacher {teacher_id}: {e}", exc_info=True)
            raise

    def default_policy(self, teacher_id: UUID) -> cancellation_models.CancellationPolicyRead:
        """The fallback used when a teacher has no active policy: effectively free cancellation."""
        return cancellation_models.CancellationPolicyRead(
            id=None,
            teacher_id=teacher_id,
            hours_before_class=settings.DEFAULT_CANCELLATION_HOURS,
            charge_percentage=Decimal(settings.DEFAULT_CHARGE_PERCENTAGE),
            allow_amnesty=True,
            is_active=True
        )

    async def get_effective_policy(self, teacher_id: UUID) -> cancellation_models.CancellationPolicyRead:
        policy = await self.get_active_policy_orm(teacher_id)
        if policy is None:
            log.info(f"No active cancellation policy for teacher {teacher_id}, using defaults.")
            return self.default_policy(teacher_id)
        return cancellation_models.CancellationPolicyRead.model_validate(policy)

    async def get_policy_for_api(self, current_user: db_models.Profiles) -> cancellation_models.CancellationPolicyRead:
        self.user_service.authorize_role(current_user, [UserRole.TEACHER])
        return await self.get_effective_policy(current_user.id)

    async def upsert_policy(
        self,
        data: cancellation_models.CancellationPolicyWrite,
        current_user: db_models.Profiles
    ) -> cancellation_models.CancellationPolicyRead:
        """
        Updates the teacher's active policy in place, or creates one. Any other
        active policy rows are deactivated.
        """
        self.user_service.authorize_role(current_user, [UserRole.TEACHER])
        log.info(f"Teacher {current_user.id} updating cancellation policy: {data.model_dump()}")
        try:
            policy = await self.get_active_policy_orm(current_user.id)
            if policy is None:
                policy = db_models.CancellationPolicies(teacher_id=current_user.id)
                self.db.add(policy)

            policy.hours_before_class = data.hours_before_class
            policy.charge_percentage = data.charge_percentage
            policy.allow_amnesty = data.allow_amnesty
            policy.is_active = data.is_active
            await self.db.flush()

            await self.db.execute(
                update(db_models.CancellationPolicies)
                .where(
                    db_models.CancellationPolicies.teacher_id == current_user.id,
                    db_models.CancellationPolicies.id != policy.id,
                    db_models.CancellationPolicies.is_active.is_(True)
                )
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
            await self.db.refresh(policy)
            return cancellation_models.CancellationPolicyRead.model_validate(policy)

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error updating cancellation policy for teacher {current_user.id}: {e}", exc_info=True)
            raise
