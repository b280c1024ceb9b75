'''
Books single classes and the templates of recurring series.
'''
from typing import Annotated
from uuid import UUID
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import UserRole, ClassStatusEnum
from ..database.utils import ensure_utc
from ..models import classes as class_models
from ..common.logger import log
from .user_service import UserService


class ClassService:
    """
    Service for booking classes. A class created with a recurrence pattern is
    the template the Generator materializes further occurrences from.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        user_service: Annotated[UserService, Depends(UserService)]
    ):
        self.db = db
        self.user_service = user_service

    # --- 1. Authorization Helpers ---

    async def _verify_students_belong_to_teacher(self, teacher_id: UUID, student_ids: list[UUID]):
        stmt = select(db_models.TeacherStudentRelationships.student_id).filter(
            db_models.TeacherStudentRelationships.teacher_id == teacher_id,
            db_models.TeacherStudentRelationships.student_id.in_(student_ids)
        )
        related = set((await self.db.execute(stmt)).scalars().all())
        missing = [student_id for student_id in student_ids if student_id not in related]
        if missing:
            log.warning(f"SECURITY: Teacher {teacher_id} tried to book students {missing} they do not teach.")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Student doesn't belong to this teacher."
            )

    async def _verify_service_owner(self, teacher_id: UUID, service_id: UUID):
        service = await self.db.get(db_models.ClassServices, service_id)
        if not service:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Service not found.")
        if service.teacher_id != teacher_id:
            log.warning(f"SECURITY: Teacher {teacher_id} tried to book service {service_id} owned by {service.teacher_id}.")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to use this service."
            )

    # --- 2. API-Facing Write Methods (With Auth) ---

    async def create_class(self, data: class_models.ClassCreate, current_user: db_models.Profiles) -> class_models.ClassRead:
        """
        Creates a class as 'pendente'. Restricted to Teachers, and only for
        students they teach.
        """
        log.info(f"User {current_user.id} attempting to create a class on {data.class_date}.")
        try:
            self.user_service.authorize_role(current_user, [UserRole.TEACHER])

            participant_ids = list(dict.fromkeys(data.participant_ids)) if data.is_group_class else []
            student_ids = participant_ids or [data.student_id]
            await self._verify_students_belong_to_teacher(current_user.id, student_ids)
            if data.service_id is not None:
                await self._verify_service_owner(current_user.id, data.service_id)

            new_class = db_models.Classes(
                teacher_id=current_user.id,
                student_id=None if data.is_group_class else data.student_id,
                service_id=data.service_id,
                class_date=ensure_utc(data.class_date),
                duration_minutes=data.duration_minutes,
                notes=data.notes,
                status=ClassStatusEnum.PENDING.value,
                is_experimental=data.is_experimental,
                is_group_class=data.is_group_class,
                recurrence_pattern=data.recurrence.model_dump(mode='json') if data.recurrence else None,
                recurrence_end_date=ensure_utc(data.recurrence_end_date) if data.recurrence_end_date else None,
                participants=[
                    db_models.ClassParticipants(student_id=student_id, status=ClassStatusEnum.PENDING.value)
                    for student_id in participant_ids
                ]
            )
            self.db.add(new_class)
            await self.db.flush()

            log.info(f"Class {new_class.id} created by teacher {current_user.id} (recurring: {data.recurrence is not None}).")
            class_read = class_models.ClassRead.model_validate(new_class)
            class_read.participant_ids = participant_ids
            return class_read

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error creating class for teacher {current_user.id}: {e}", exc_info=True)
            raise
