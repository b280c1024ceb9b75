'''
Materializes occurrences of infinite recurring class series and ends series.
'''
import uuid
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional
from uuid import UUID
from fastapi import Depends, HTTPException, status
from sqlalchemy import select, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..database.engine import get_db_session
from ..database import models as db_models
from ..database.db_enums import UserRole, ClassStatusEnum, ExceptionStatusEnum
from ..database.utils import build_upsert, ensure_utc
from ..core.recurrence import dates_to_generate, UnsupportedFrequencyError
from ..common.config import settings
from ..common.logger import log
from .user_service import UserService

# Teachers whose series are being generated right now in this process.
_generating_teachers: set[UUID] = set()


class RecurrenceService:
    """
    Service for recurring class series: keeps infinite series materialized far
    enough ahead of the calendar view and ends series on request.
    """
    def __init__(
        self,
        db: Annotated[AsyncSession, Depends(get_db_session)],
        user_service: Annotated[UserService, Depends(UserService)]
    ):
        self.db = db
        self.user_service = user_service

    # --- 1. Authorization Helpers ---

    def _authorize_series_owner(self, template: db_models.Classes, current_user: db_models.Profiles):
        if not (current_user.role == UserRole.TEACHER.value and template.teacher_id == current_user.id):
            log.warning(f"SECURITY: User {current_user.id} tried to modify series {template.id} owned by {template.teacher_id}.")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to modify this class."
            )

    # --- 2. Internal Fetchers (No Auth) ---

    async def get_series_template(self, series_id: UUID) -> db_models.Classes:
        log.info(f"Internal fetch for series template: {series_id}")
        stmt = select(db_models.Classes).options(
            selectinload(db_models.Classes.participants)
        ).filter(db_models.Classes.id == series_id)
        result = await self.db.execute(stmt)
        template = result.scalars().first()
        if not template:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Class not found.")
        return template

    async def _get_recurring_templates(self, teacher_id: UUID) -> list[db_models.Classes]:
        stmt = select(db_models.Classes).options(
            selectinload(db_models.Classes.participants)
        ).filter(
            db_models.Classes.teacher_id == teacher_id,
            db_models.Classes.series_id.is_(None),
            db_models.Classes.recurrence_pattern.is_not(None)
        ).order_by(db_models.Classes.class_date)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def _get_series_exceptions(self, template_id: UUID) -> tuple[set[datetime], dict[datetime, db_models.ClassExceptions]]:
        """Cancelled pattern dates, and reschedules keyed by their pattern date."""
        stmt = select(db_models.ClassExceptions).filter(
            db_models.ClassExceptions.original_class_id == template_id
        )
        cancelled, rescheduled = set(), {}
        for exc in (await self.db.execute(stmt)).scalars().all():
            if exc.status == ExceptionStatusEnum.CANCELED.value:
                cancelled.add(exc.exception_date)
            else:
                rescheduled[exc.exception_date] = exc
        return cancelled, rescheduled

    async def _latest_occurrence_date(
        self,
        template: db_models.Classes,
        rescheduled: dict[datetime, db_models.ClassExceptions]
    ) -> datetime:
        """
        Latest pattern date the series already covers. A class moved by a
        reschedule counts for the pattern date it replaces, not where it landed.
        """
        moved_from = {
            exc.new_start_time: pattern_date
            for pattern_date, exc in rescheduled.items()
            if exc.new_start_time is not None
        }
        stmt = select(db_models.Classes.class_date).filter(
            or_(
                db_models.Classes.id == template.id,
                db_models.Classes.series_id == template.id
            )
        )
        class_dates = (await self.db.execute(stmt)).scalars().all()
        return max(
            (moved_from.get(class_date, class_date) for class_date in class_dates),
            default=template.class_date
        )

    async def _existing_dates(self, template_id: UUID, dates: list[datetime]) -> set[datetime]:
        if not dates:
            return set()
        stmt = select(db_models.Classes.class_date).filter(
            db_models.Classes.series_id == template_id,
            db_models.Classes.class_date.in_(dates)
        )
        result = await self.db.execute(stmt)
        return set(result.scalars().all())

    # --- 3. Generation ---

    async def generate_more_classes(
        self,
        teacher: db_models.Profiles,
        view_end_date: datetime,
        selected_students: Optional[list[UUID]] = None
    ) -> int:
        """
        Makes sure every infinite series of the teacher has occurrences up to
        `view_end_date` plus the generation buffer, creating at most
        MAX_GENERATED_PER_SERIES new classes per series per call.
        Returns the number of classes created.
        """
        self.user_service.authorize_role(teacher, [UserRole.TEACHER])

        if teacher.id in _generating_teachers:
            log.info(f"Generation already in progress for teacher {teacher.id}, skipping.")
            return 0

        _generating_teachers.add(teacher.id)
        try:
            return await self._generate_for_teacher(teacher.id, ensure_utc(view_end_date), selected_students or [])
        finally:
            _generating_teachers.discard(teacher.id)

    async def _generate_for_teacher(self, teacher_id: UUID, view_end_date: datetime, selected_students: list[UUID]) -> int:
        target_end_date = view_end_date + timedelta(days=settings.GENERATION_BUFFER_DAYS)
        log.info(f"Generating recurring classes for teacher {teacher_id} up to {target_end_date.isoformat()}.")

        try:
            templates = await self._get_recurring_templates(teacher_id)

            new_classes = []
            participants_by_class: dict[UUID, list[UUID]] = {}

            for template in templates:
                pattern = template.recurrence_pattern or {}
                frequency = pattern.get('frequency')
                if not pattern.get('is_infinite') or not frequency:
                    log.info(f"Skipping template {template.id}: not infinite or missing frequency.")
                    continue

                cancelled, rescheduled = await self._get_series_exceptions(template.id)
                last_date = await self._latest_occurrence_date(template, rescheduled)
                if last_date >= target_end_date:
                    log.info(f"No more classes needed for template {template.id}: last {last_date.isoformat()}.")
                    continue

                try:
                    pattern_dates = dates_to_generate(
                        last_date,
                        frequency,
                        target_end_date,
                        settings.MAX_GENERATED_PER_SERIES,
                        end_date=template.recurrence_end_date,
                        skip=cancelled
                    )
                except UnsupportedFrequencyError as e:
                    log.warning(f"Skipping template {template.id}: {e}")
                    continue

                # (class_date, duration_minutes) per occurrence, after reschedules.
                slots = []
                for pattern_date in pattern_dates:
                    exc = rescheduled.get(pattern_date)
                    if exc is None:
                        slots.append((pattern_date, template.duration_minutes))
                    else:
                        slots.append((
                            exc.new_start_time or pattern_date,
                            exc.new_duration_minutes or template.duration_minutes
                        ))

                existing = await self._existing_dates(template.id, [class_date for class_date, _ in slots])
                slots = [slot for slot in slots if slot[0] not in existing]

                if template.is_group_class:
                    participant_ids = list(selected_students) or [p.student_id for p in template.participants]
                else:
                    participant_ids = []

                for class_date, duration_minutes in slots:
                    class_id = uuid.uuid4()
                    new_classes.append({
                        'id': class_id,
                        'teacher_id': template.teacher_id,
                        'student_id': template.student_id,
                        'service_id': template.service_id,
                        'series_id': template.id,
                        'class_date': class_date,
                        'duration_minutes': duration_minutes,
                        'notes': template.notes,
                        'status': ClassStatusEnum.PENDING.value,
                        'is_experimental': template.is_experimental,
                        'is_group_class': template.is_group_class,
                        'charge_applied': False,
                        'billed': False,
                        'amnesty_granted': False,
                    })
                    if participant_ids:
                        participants_by_class[class_id] = participant_ids

                log.info(f"Prepared {len(slots)} new classes for template {template.id}.")

            if not new_classes:
                return 0

            # Rows another writer already created for the same (series, date) are skipped.
            stmt = build_upsert(
                self.db,
                db_models.Classes,
                new_classes,
                conflict_columns=['series_id', 'class_date']
            ).returning(db_models.Classes.id)
            inserted_ids = set((await self.db.execute(stmt)).scalars().all())

            new_participants = [
                db_models.ClassParticipants(
                    class_id=class_id,
                    student_id=student_id,
                    status=ClassStatusEnum.PENDING.value
                )
                for class_id, student_ids in participants_by_class.items()
                if class_id in inserted_ids
                for student_id in student_ids
            ]
            if new_participants:
                self.db.add_all(new_participants)
            await self.db.flush()

            log.info(f"Generated {len(inserted_ids)} new recurring classes and {len(new_participants)} participants for teacher {teacher_id}.")
            return len(inserted_ids)

        except Exception as e:
            log.error(f"Error generating recurring classes for teacher {teacher_id}: {e}", exc_info=True)
            raise

    async def check_and_generate_classes(
        self,
        teacher: db_models.Profiles,
        view_start: Optional[datetime],
        view_end: datetime,
        selected_students: Optional[list[UUID]] = None,
        now: Optional[datetime] = None
    ) -> int:
        """Only generates when the calendar view reaches into the future."""
        now = now or datetime.now(timezone.utc)
        if ensure_utc(view_end) <= now:
            log.info(f"Calendar view ending {view_end} is in the past, nothing to generate.")
            return 0
        return await self.generate_more_classes(teacher, view_end, selected_students)

    # --- 4. Ending a Series ---

    async def end_recurrence(self, series_id: UUID, end_date: datetime, current_user: db_models.Profiles) -> int:
        """
        Stops a series at `end_date`: stores the end date on the template and
        deletes materialized occurrences on or after it that were not completed,
        along with exceptions recorded for dates past the end.
        Returns the number of deleted classes.
        """
        log.info(f"User {current_user.id} ending series {series_id} at {end_date}.")
        end_date = ensure_utc(end_date)
        try:
            template = await self.get_series_template(series_id)
            self._authorize_series_owner(template, current_user)

            if template.series_id is not None or not template.recurrence_pattern:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Class is not a recurring series.")

            template.recurrence_end_date = end_date

            stmt = delete(db_models.Classes).where(
                db_models.Classes.series_id == template.id,
                db_models.Classes.class_date >= end_date,
                db_models.Classes.status != ClassStatusEnum.COMPLETED.value
            ).execution_options(synchronize_session=False)
            result = await self.db.execute(stmt)

            exceptions_stmt = delete(db_models.ClassExceptions).where(
                db_models.ClassExceptions.original_class_id == template.id,
                db_models.ClassExceptions.exception_date >= end_date
            ).execution_options(synchronize_session=False)
            exceptions_result = await self.db.execute(exceptions_stmt)
            await self.db.flush()

            log.info(f"Deleted {result.rowcount} future classes and {exceptions_result.rowcount} exceptions of series {series_id}.")
            return result.rowcount

        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Error ending series {series_id}: {e}", exc_info=True)
            raise
