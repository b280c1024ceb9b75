'''

'''
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import UserRole, ClassStatusEnum, ExceptionActionEnum, ExceptionStatusEnum, OccurrenceStatusEnum
from ..database.utils import build_upsert, ensure_utc
from ..models import class_exceptions as exception_models
from ..models import classes as class_models
from ..core.recurrence import occurrences_from, expand_series, UnsupportedFrequencyError
from ..common.config import settings
from ..common.logger import log
from .user_service import UserService

_UPDATABLE_COLUMNS = (
    'status',
    'new_start_time',
    'new_end_time',
    'new_title',
    'new_description',
    'new_duration_minutes',
)


class ClassExceptionService:
    """
    Records cancellations and reschedules against occurrences of a recurring
    series without touching the series template itself.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        user_service: Annotated[UserService, Depends(UserService)]
    ):
        self.db = db
        self.user_service = user_service

    # --- 1. Authorization Helpers ---

    async def _get_owned_class(self, class_id: UUID, current_user: db_models.Profiles) -> db_models.Classes:
        class_orm = await self.db.get(db_models.Classes, class_id)
        if not class_orm:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found.")
        if not (current_user.role == UserRole.TEACHER.value and class_orm.teacher_id == current_user.id):
            log.warning(f"SECURITY: User {current_user.id} tried to record an exception on class {class_id} owned by {class_orm.teacher_id}.")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to modify this class."
            )
        return class_orm

    async def _authorize_read(self, class_orm: db_models.Classes, current_user: db_models.Profiles):
        if current_user.role == UserRole.TEACHER.value:
            if class_orm.teacher_id == current_user.id:
                return
        elif current_user.role == UserRole.STUDENT.value:
            if class_orm.student_id == current_user.id:
                return
            stmt = select(db_models.ClassParticipants.id).filter(
                db_models.ClassParticipants.class_id == class_orm.id,
                db_models.ClassParticipants.student_id == current_user.id
            )
            if (await self.db.execute(stmt)).first():
                return
        log.warning(f"SECURITY: User {current_user.id} tried to read series {class_orm.id} without permission.")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have permission to view this resource."
        )

    # --- 2. Row Builders ---

    def _build_exception_row(
        self,
        original_class_id: UUID,
        exception_date: datetime,
        action: ExceptionActionEnum,
        new_data: Optional[exception_models.RescheduleData],
        offset: Optional[timedelta] = None
    ) -> dict:
        """
        Builds one `class_exceptions` row. With `offset`, the new start is the
        occurrence date shifted by it and the end follows from the duration.
        """
        row = {
            'original_class_id': original_class_id,
            'exception_date': exception_date,
            'new_start_time': None,
            'new_end_time': None,
            'new_title': None,
            'new_description': None,
            'new_duration_minutes': None,
        }
        if action == ExceptionActionEnum.CANCEL:
            row['status'] = ExceptionStatusEnum.CANCELED.value
            return row

        if new_data is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="new_data is required for reschedule action."
            )
        if offset is None:
            new_start = ensure_utc(new_data.start_time)
            new_end = ensure_utc(new_data.end_time) if new_data.end_time else new_start + timedelta(minutes=new_data.duration_minutes)
        else:
            new_start = exception_date + offset
            new_end = new_start + timedelta(minutes=new_data.duration_minutes)

        row.update({
            'status': ExceptionStatusEnum.RESCHEDULED.value,
            'new_start_time': new_start,
            'new_end_time': new_end,
            'new_title': new_data.title,
            'new_description': new_data.description,
            'new_duration_minutes': new_data.duration_minutes,
        })
        return row

    async def _upsert_exceptions(self, rows: list[dict]) -> None:
        stmt = build_upsert(
            self.db,
            db_models.ClassExceptions,
            rows,
            conflict_columns=['original_class_id', 'exception_date'],
            update_columns=_UPDATABLE_COLUMNS
        )
        await self.db.execute(stmt)
        await self.db.flush()

    # --- 3. API-Facing Write Methods (With Auth) ---

    async def record_single_exception(
        self,
        original_class_id: UUID,
        exception_date: datetime,
        action: ExceptionActionEnum,
        new_data: Optional[exception_models.RescheduleData],
        current_user: db_models.Profiles
    ) -> exception_models.ClassExceptionRead:
        """
        Cancels or reschedules one occurrence. Recording an exception for the
        same occurrence again overwrites the previous one.
        """
        log.info(f"User {current_user.id} recording '{action.value}' exception for class {original_class_id} on {exception_date}.")
        exception_date = ensure_utc(exception_date)
        try:
            await self._get_owned_class(original_class_id, current_user)

            row = self._build_exception_row(original_class_id, exception_date, action, new_data)
            await self._upsert_exceptions([row])

            stmt = select(db_models.ClassExceptions).filter(
                db_models.ClassExceptions.original_class_id == original_class_id,
                db_models.ClassExceptions.exception_date == exception_date
            ).execution_options(populate_existing=True)
            exception = (await self.db.execute(stmt)).scalars().one()

            log.info(f"Class exception {exception.id} stored with status '{exception.status}'.")
            return exception_models.ClassExceptionRead.model_validate(exception)

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error recording exception for class {original_class_id}: {e}", exc_info=True)
            raise

    async def record_recurring_exceptions(
        self,
        original_class_id: UUID,
        from_date: datetime,
        action: ExceptionActionEnum,
        new_data: Optional[exception_models.RescheduleData],
        end_date: Optional[datetime],
        current_user: db_models.Profiles
    ) -> int:
        """
        Cancels or reschedules every occurrence from `from_date` up to
        `end_date` (default: one year after `from_date`). A reschedule shifts
        every occurrence by the same offset as the first one.
        Returns the number of occurrences affected.
        """
        log.info(f"User {current_user.id} recording '{action.value}' exceptions for series {original_class_id} from {from_date}.")
        from_date = ensure_utc(from_date)
        try:
            class_orm = await self._get_owned_class(original_class_id, current_user)
            pattern = class_orm.recurrence_pattern
            if not pattern:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Class is not recurring.")

            if end_date is None:
                end_date = from_date + timedelta(days=settings.EXCEPTION_HORIZON_DAYS)
            end_date = ensure_utc(end_date)

            try:
                occurrence_dates = occurrences_from(
                    from_date,
                    pattern.get('frequency'),
                    end_date,
                    settings.MAX_EXCEPTION_OCCURRENCES
                )
            except UnsupportedFrequencyError as e:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

            offset = None
            if action == ExceptionActionEnum.RESCHEDULE:
                if new_data is None:
                    raise HTTPException(
                        status_code=status.HTTP_400_BAD_REQUEST,
                        detail="new_data is required for reschedule action."
                    )
                offset = ensure_utc(new_data.start_time) - from_date

            rows = [
                self._build_exception_row(original_class_id, occurrence_date, action, new_data, offset=offset)
                for occurrence_date in occurrence_dates
            ]
            log.info(f"Generated {len(rows)} future occurrences to process.")

            if rows:
                await self._upsert_exceptions(rows)

            return len(rows)

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error recording future exceptions for series {original_class_id}: {e}", exc_info=True)
            raise

    # --- 4. Read Methods ---

    async def list_occurrences(
        self,
        series_id: UUID,
        window_start: datetime,
        window_end: datetime,
        current_user: db_models.Profiles
    ) -> list[class_models.OccurrenceRead]:
        """
        Expands a series into the occurrences inside the window, with stored
        exceptions applied on top of the base pattern.
        """
        window_start, window_end = ensure_utc(window_start), ensure_utc(window_end)
        if window_end < window_start:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="end cannot be before start.")

        template = await self.db.get(db_models.Classes, series_id)
        if not template:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found.")
        await self._authorize_read(template, current_user)
        if not template.recurrence_pattern:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Class is not recurring.")

        stmt = select(db_models.ClassExceptions).filter(
            db_models.ClassExceptions.original_class_id == series_id,
            db_models.ClassExceptions.exception_date >= window_start,
            db_models.ClassExceptions.exception_date <= window_end
        )
        exceptions = list((await self.db.execute(stmt)).scalars().all())

        try:
            occurrences = list(expand_series(
                anchor=template.class_date,
                frequency=template.recurrence_pattern.get('frequency'),
                duration_minutes=template.duration_minutes,
                window_start=window_start,
                window_end=window_end,
                exceptions=exceptions,
                end_date=template.recurrence_end_date,
                max_count=settings.MAX_EXCEPTION_OCCURRENCES
            ))
        except UnsupportedFrequencyError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

        # Materialized classes cancelled on their own (not via an exception).
        cancelled_starts = await self._cancelled_class_dates(template.id, [o.start_time for o in occurrences])
        return [
            class_models.OccurrenceRead.model_validate(
                replace(o, status=OccurrenceStatusEnum.CANCELED) if o.start_time in cancelled_starts else o
            )
            for o in occurrences
        ]

    async def _cancelled_class_dates(self, series_id: UUID, start_times: list[datetime]) -> set[datetime]:
        if not start_times:
            return set()
        stmt = select(db_models.Classes.class_date).filter(
            or_(
                db_models.Classes.id == series_id,
                db_models.Classes.series_id == series_id
            ),
            db_models.Classes.class_date.in_(start_times),
            db_models.Classes.status == ClassStatusEnum.CANCELLED.value
        )
        return set((await self.db.execute(stmt)).scalars().all())
