'''

'''
import pytest
from datetime import timedelta
from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update

from tutorflow_backend.database import models as db_models
from tutorflow_backend.database.db_enums import ClassStatusEnum, ExceptionStatusEnum
from tutorflow_backend.services import recurrence_service as recurrence_module
from tutorflow_backend.services.recurrence_service import RecurrenceService
from tests.constants import TEST_NOW, TEST_SERIES_START, TEST_SERIES_ID, TEST_GROUP_SERIES_ID, TEST_GROUP_STUDENT_IDS


async def _series_dates(db_session: AsyncSession, series_id) -> list:
    stmt = select(db_models.Classes.class_date).filter(
        db_models.Classes.series_id == series_id
    ).order_by(db_models.Classes.class_date)
    return list((await db_session.execute(stmt)).scalars().all())


def _exception(exception_date, exception_status: ExceptionStatusEnum, **new_data) -> db_models.ClassExceptions:
    return db_models.ClassExceptions(
        original_class_id=TEST_SERIES_ID,
        exception_date=exception_date,
        status=exception_status.value,
        **new_data
    )


@pytest.mark.anyio
class TestGenerateMoreClasses:

    async def test_generates_until_view_end_plus_buffer(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        view_end = TEST_NOW + timedelta(days=7)
        generated = await recurrence_service.generate_more_classes(test_teacher_orm, view_end)

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        print(f"\n--- Generated {generated} classes: {[d.isoformat() for d in dates]} ---")

        assert generated == 6
        assert dates == [TEST_SERIES_START + timedelta(days=7 * i) for i in range(1, 7)]
        # Coverage reaches the target (view end + 14 days buffer).
        assert dates[-1] >= view_end + timedelta(days=14)

        stmt = select(db_models.Classes).filter(db_models.Classes.series_id == TEST_SERIES_ID)
        generated_classes = (await db_session.execute(stmt)).scalars().all()
        for class_orm in generated_classes:
            assert class_orm.status == ClassStatusEnum.PENDING.value
            assert class_orm.student_id == test_series_orm.student_id
            assert class_orm.service_id == test_series_orm.service_id
            assert class_orm.duration_minutes == test_series_orm.duration_minutes

    async def test_second_call_is_a_no_op(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        view_end = TEST_NOW + timedelta(days=7)
        first = await recurrence_service.generate_more_classes(test_teacher_orm, view_end)
        second = await recurrence_service.generate_more_classes(test_teacher_orm, view_end)
        assert first == 6
        assert second == 0

    async def test_cap_per_series(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=365))
        assert generated == 20

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        assert len(dates) == 20
        assert dates[-1] == TEST_SERIES_START + timedelta(days=7 * 20)

    async def test_continues_from_latest_occurrence(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        """An occurrence created by hand moves the starting point of generation."""
        db_session.add(db_models.Classes(
            teacher_id=test_teacher_orm.id,
            student_id=test_series_orm.student_id,
            series_id=TEST_SERIES_ID,
            class_date=TEST_SERIES_START + timedelta(days=14),
            duration_minutes=60,
            status=ClassStatusEnum.CONFIRMED.value
        ))
        await db_session.flush()

        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        assert generated == 4

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        assert dates == [TEST_SERIES_START + timedelta(days=7 * i) for i in range(2, 7)]

    async def test_cancelled_exception_date_is_not_generated(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        cancelled_date = TEST_SERIES_START + timedelta(days=14)
        db_session.add(_exception(cancelled_date, ExceptionStatusEnum.CANCELED))
        await db_session.flush()

        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        assert generated == 5

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        assert cancelled_date not in dates
        assert dates == [TEST_SERIES_START + timedelta(days=d) for d in (7, 21, 28, 35, 42)]

    async def test_rescheduled_exception_date_is_generated_at_new_time(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        pattern_date = TEST_SERIES_START + timedelta(days=14)
        moved_to = TEST_SERIES_START + timedelta(days=15)
        db_session.add(_exception(
            pattern_date,
            ExceptionStatusEnum.RESCHEDULED,
            new_start_time=moved_to,
            new_duration_minutes=45
        ))
        await db_session.flush()

        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        assert generated == 6

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        assert pattern_date not in dates
        assert moved_to in dates

        stmt = select(db_models.Classes).filter(
            db_models.Classes.series_id == TEST_SERIES_ID,
            db_models.Classes.class_date == moved_to
        )
        moved = (await db_session.execute(stmt)).scalars().one()
        assert moved.duration_minutes == 45

    async def test_rescheduled_last_occurrence_does_not_shift_the_pattern(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        """A class moved later in the week still stands for its original pattern date."""
        db_session.add(_exception(
            TEST_SERIES_START + timedelta(days=42),
            ExceptionStatusEnum.RESCHEDULED,
            new_start_time=TEST_SERIES_START + timedelta(days=44)
        ))
        await db_session.flush()

        first = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        second = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=14))
        assert first == 6
        assert second == 1

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        assert dates[-2:] == [TEST_SERIES_START + timedelta(days=44), TEST_SERIES_START + timedelta(days=49)]

    async def test_group_series_gets_participants_per_occurrence(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_group_series_orm: db_models.Classes
    ):
        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        # Biweekly: 03-02, 03-16, 03-30.
        assert generated == 3

        stmt = select(db_models.ClassParticipants).join(
            db_models.Classes, db_models.Classes.id == db_models.ClassParticipants.class_id
        ).filter(db_models.Classes.series_id == TEST_GROUP_SERIES_ID)
        participants = (await db_session.execute(stmt)).scalars().all()

        assert len(participants) == 3 * len(TEST_GROUP_STUDENT_IDS)
        assert {p.student_id for p in participants} == set(TEST_GROUP_STUDENT_IDS)
        assert all(p.status == ClassStatusEnum.PENDING.value for p in participants)

    async def test_group_series_with_selected_students(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_group_series_orm: db_models.Classes
    ):
        selected = [TEST_GROUP_STUDENT_IDS[0]]
        generated = await recurrence_service.generate_more_classes(
            test_teacher_orm, TEST_NOW + timedelta(days=7), selected_students=selected
        )
        assert generated == 3

        stmt = select(db_models.ClassParticipants).join(
            db_models.Classes, db_models.Classes.id == db_models.ClassParticipants.class_id
        ).filter(db_models.Classes.series_id == TEST_GROUP_SERIES_ID)
        participants = (await db_session.execute(stmt)).scalars().all()
        assert len(participants) == 3
        assert {p.student_id for p in participants} == set(selected)

    async def test_finite_series_is_skipped(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        test_series_orm.recurrence_pattern = {"frequency": "weekly", "is_infinite": False}
        await db_session.flush()

        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        assert generated == 0

    async def test_reentrant_call_returns_zero(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        recurrence_module._generating_teachers.add(test_teacher_orm.id)
        try:
            generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        finally:
            recurrence_module._generating_teachers.discard(test_teacher_orm.id)
        assert generated == 0

    async def test_flag_is_cleared_after_call(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        assert test_teacher_orm.id not in recurrence_module._generating_teachers

    async def test_student_cannot_generate(
        self,
        recurrence_service: RecurrenceService,
        test_student_orm: db_models.Profiles
    ):
        with pytest.raises(HTTPException) as e:
            await recurrence_service.generate_more_classes(test_student_orm, TEST_NOW + timedelta(days=7))
        assert e.value.status_code == 403

    async def test_check_and_generate_skips_past_view(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        generated = await recurrence_service.check_and_generate_classes(
            test_teacher_orm,
            view_start=TEST_NOW - timedelta(days=14),
            view_end=TEST_NOW - timedelta(days=7),
            now=TEST_NOW
        )
        assert generated == 0

    async def test_check_and_generate_future_view(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        generated = await recurrence_service.check_and_generate_classes(
            test_teacher_orm,
            view_start=TEST_NOW,
            view_end=TEST_NOW + timedelta(days=7),
            now=TEST_NOW
        )
        assert generated == 6


@pytest.mark.anyio
class TestEndRecurrence:

    async def test_end_recurrence_deletes_future_occurrences(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=7))
        end_date = TEST_SERIES_START + timedelta(days=28)

        # A completed occurrence after the end date survives.
        await db_session.execute(
            update(db_models.Classes)
            .where(
                db_models.Classes.series_id == TEST_SERIES_ID,
                db_models.Classes.class_date == TEST_SERIES_START + timedelta(days=35)
            )
            .values(status=ClassStatusEnum.COMPLETED.value)
        )

        deleted = await recurrence_service.end_recurrence(TEST_SERIES_ID, end_date, test_teacher_orm)
        # 28 and 42 go, 35 was completed.
        assert deleted == 2

        dates = await _series_dates(db_session, TEST_SERIES_ID)
        assert dates == [TEST_SERIES_START + timedelta(days=d) for d in (7, 14, 21, 35)]
        assert test_series_orm.recurrence_end_date == end_date

        # Generation never goes past the end date again.
        generated = await recurrence_service.generate_more_classes(test_teacher_orm, TEST_NOW + timedelta(days=60))
        assert generated == 0

    async def test_end_recurrence_drops_exceptions_after_end(
        self,
        recurrence_service: RecurrenceService,
        db_session: AsyncSession,
        test_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        db_session.add_all([
            _exception(TEST_SERIES_START + timedelta(days=21), ExceptionStatusEnum.CANCELED),
            _exception(TEST_SERIES_START + timedelta(days=35), ExceptionStatusEnum.CANCELED),
        ])
        await db_session.flush()

        await recurrence_service.end_recurrence(TEST_SERIES_ID, TEST_SERIES_START + timedelta(days=28), test_teacher_orm)

        stmt = select(db_models.ClassExceptions.exception_date).filter(
            db_models.ClassExceptions.original_class_id == TEST_SERIES_ID
        )
        remaining = (await db_session.execute(stmt)).scalars().all()
        assert remaining == [TEST_SERIES_START + timedelta(days=21)]

    async def test_end_recurrence_wrong_teacher(
        self,
        recurrence_service: RecurrenceService,
        test_unrelated_teacher_orm: db_models.Profiles,
        test_series_orm: db_models.Classes
    ):
        with pytest.raises(HTTPException) as e:
            await recurrence_service.end_recurrence(TEST_SERIES_ID, TEST_NOW, test_unrelated_teacher_orm)
        assert e.value.status_code == 403

    async def test_end_recurrence_not_a_series(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles,
        test_class_orm: db_models.Classes
    ):
        with pytest.raises(HTTPException) as e:
            await recurrence_service.end_recurrence(test_class_orm.id, TEST_NOW, test_teacher_orm)
        assert e.value.status_code == 400

    async def test_end_recurrence_missing_series(
        self,
        recurrence_service: RecurrenceService,
        test_teacher_orm: db_models.Profiles
    ):
        with pytest.raises(HTTPException) as e:
            await recurrence_service.end_recurrence(TEST_SERIES_ID, TEST_NOW, test_teacher_orm)
        assert e.value.status_code == 404
