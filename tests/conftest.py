'''
Pytest configuration for the FastAPI application.

This file sets up fixtures for:
1. Forcing the application into TEST_MODE before any code is imported.
2. Providing a fresh in-memory SQLite database and session for each test.
3. Providing an async HTTP client for endpoint testing.
4. Providing instances of all service classes, pre-injected with the test session.
5. Seeding the teacher, students, policy and class series the tests work on.
'''

import os

# Must happen before the settings object is created.
os.environ["TEST_MODE"] = "True"
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from typing import AsyncGenerator
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.pool import StaticPool

# --- Constant Imports ----
from tests.constants import (
    TEST_TEACHER_ID,
    TEST_UNRELATED_TEACHER_ID,
    TEST_STUDENT_ID,
    TEST_GROUP_STUDENT_IDS,
    TEST_UNRELATED_STUDENT_ID,
    TEST_SERVICE_ID,
    TEST_SERIES_ID,
    TEST_GROUP_SERIES_ID,
    TEST_CLASS_ID,
    TEST_POLICY_ID,
    TEST_PASSWORD_TEACHER,
    TEST_PASSWORD_STUDENT,
    TEST_TEACHER_EMAIL,
    TEST_STUDENT_EMAIL,
    TEST_NOW,
    TEST_SERIES_START
)

# --- Application Imports ---
from tutorflow_backend.main import app
from tutorflow_backend.common.config import settings
from tutorflow_backend.common.security_utils import HashedPassword
from tutorflow_backend.database.engine import get_db_session
from tutorflow_backend.database.db_enums import UserRole, ClassStatusEnum, RecurrenceFrequencyEnum
from tutorflow_backend.database import models as db_models
from tutorflow_backend.services.security import issue_access_token
from tutorflow_backend.services.user_service import UserService
from tutorflow_backend.services.policy_service import CancellationPolicyService
from tutorflow_backend.services.class_service import ClassService
from tutorflow_backend.services.recurrence_service import RecurrenceService
from tutorflow_backend.services.class_exception_service import ClassExceptionService
from tutorflow_backend.services.cancellation_service import CancellationService
from tutorflow_backend.services.billing_service import BillingService
from tutorflow_backend.services.payment_gateway import PaymentGateway, get_payment_gateway
from tutorflow_backend.services.email_service import EmailService, get_email_service


@pytest.fixture(scope="session")
def anyio_backend():
    """
    Override the default 'anyio_backend' fixture.
    1. Forces the backend to 'asyncio'.
    2. Promotes the scope to 'session'.
    """
    return "asyncio"


# --- 1. Database Fixtures ---

@pytest.fixture(scope="function")
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """A brand-new in-memory database per test, schema created from the ORM models."""
    assert settings.TEST_MODE is True, \
        "TEST_MODE was not set to True! Check your .env file or environment."

    engine = create_async_engine(
        settings.DATABASE_URL_TEST,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(db_models.Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False
    )
    session = session_factory()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# --- 2. Provider Mocks ---

@pytest.fixture(scope="function")
def mock_payment_gateway() -> PaymentGateway:
    """Provides a mock PaymentGateway; no call ever reaches Stripe."""
    mock_gateway = MagicMock(spec=PaymentGateway)
    mock_gateway.create_payment_intent = AsyncMock(return_value="pi_test_123")
    mock_gateway.cancel_payment_intent = AsyncMock(return_value=None)
    return mock_gateway


@pytest.fixture(scope="function")
def mock_email_service() -> EmailService:
    """Provides a mock EmailService; no call ever reaches Resend."""
    mock_service = MagicMock(spec=EmailService)
    mock_service.send = AsyncMock(return_value={"id": "email_test"})
    mock_service.send_many = AsyncMock(return_value=1)
    return mock_service


# --- 3. API Client ---

@pytest.fixture(scope="function")
async def client(
    db_session: AsyncSession,
    mock_payment_gateway: PaymentGateway,
    mock_email_service: EmailService
) -> AsyncGenerator[AsyncClient, None]:
    """
    An HTTP client bound to the app. Every request shares the test session,
    so data seeded by fixtures is visible to the endpoints and vice versa.
    """
    async def override_get_db_session() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db_session] = override_get_db_session
    app.dependency_overrides[get_payment_gateway] = lambda: mock_payment_gateway
    app.dependency_overrides[get_email_service] = lambda: mock_email_service

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


def auth_headers_for(user: db_models.Profiles) -> dict:
    token = issue_access_token(user).access_token
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
def teacher_headers(test_teacher_orm: db_models.Profiles) -> dict:
    return auth_headers_for(test_teacher_orm)


@pytest.fixture(scope="function")
def student_headers(test_student_orm: db_models.Profiles) -> dict:
    return auth_headers_for(test_student_orm)


# --- 4. SERVICE FIXTURES ---

@pytest.fixture(scope="function")
def user_service(db_session: AsyncSession) -> UserService:
    return UserService(db=db_session)

@pytest.fixture(scope="function")
def policy_service(db_session: AsyncSession, user_service: UserService) -> CancellationPolicyService:
    return CancellationPolicyService(db=db_session, user_service=user_service)

@pytest.fixture(scope="function")
def recurrence_service(db_session: AsyncSession, user_service: UserService) -> RecurrenceService:
    return RecurrenceService(db=db_session, user_service=user_service)

@pytest.fixture(scope="function")
def class_service(db_session: AsyncSession, user_service: UserService) -> ClassService:
    return ClassService(db=db_session, user_service=user_service)

@pytest.fixture(scope="function")
def class_exception_service(db_session: AsyncSession, user_service: UserService) -> ClassExceptionService:
    return ClassExceptionService(db=db_session, user_service=user_service)

@pytest.fixture(scope="function")
def cancellation_service(
    db_session: AsyncSession,
    user_service: UserService,
    policy_service: CancellationPolicyService,
    mock_payment_gateway: PaymentGateway
) -> CancellationService:
    return CancellationService(
        db=db_session,
        user_service=user_service,
        policy_service=policy_service,
        payment_gateway=mock_payment_gateway
    )

@pytest.fixture(scope="function")
def billing_service(db_session: AsyncSession, policy_service: CancellationPolicyService) -> BillingService:
    return BillingService(db=db_session, policy_service=policy_service)


# --- 5. DATA FIXTURES ---

async def _add(db_session: AsyncSession, obj):
    db_session.add(obj)
    await db_session.flush()
    return obj


@pytest.fixture(scope="function")
async def test_teacher_orm(db_session: AsyncSession) -> db_models.Profiles:
    return await _add(db_session, db_models.Profiles(
        id=TEST_TEACHER_ID,
        email=TEST_TEACHER_EMAIL,
        password=HashedPassword.get_hash(TEST_PASSWORD_TEACHER),
        name="Test Teacher",
        role=UserRole.TEACHER.value,
        timezone="America/Sao_Paulo",
        is_active=True,
        has_financial_module=True,
        payment_due_days=10
    ))


@pytest.fixture(scope="function")
async def test_unrelated_teacher_orm(db_session: AsyncSession) -> db_models.Profiles:
    return await _add(db_session, db_models.Profiles(
        id=TEST_UNRELATED_TEACHER_ID,
        email="other.teacher@tutorflow.app",
        password=HashedPassword.get_hash(TEST_PASSWORD_TEACHER),
        name="Unrelated Teacher",
        role=UserRole.TEACHER.value,
        is_active=True,
        has_financial_module=False
    ))


@pytest.fixture(scope="function")
async def test_student_orm(db_session: AsyncSession, test_teacher_orm: db_models.Profiles) -> db_models.Profiles:
    student = await _add(db_session, db_models.Profiles(
        id=TEST_STUDENT_ID,
        email=TEST_STUDENT_EMAIL,
        password=HashedPassword.get_hash(TEST_PASSWORD_STUDENT),
        name="Test Student",
        role=UserRole.STUDENT.value,
        is_active=True
    ))
    await _add(db_session, db_models.TeacherStudentRelationships(
        teacher_id=test_teacher_orm.id,
        student_id=student.id,
        billing_day=5
    ))
    return student


@pytest.fixture(scope="function")
async def test_group_students_orm(db_session: AsyncSession) -> list[db_models.Profiles]:
    students = []
    for index, student_id in enumerate(TEST_GROUP_STUDENT_IDS):
        students.append(await _add(db_session, db_models.Profiles(
            id=student_id,
            email=f"group.student{index}@tutorflow.app",
            password=HashedPassword.get_hash(TEST_PASSWORD_STUDENT),
            name=f"Group Student {index}",
            role=UserRole.STUDENT.value,
            is_active=True
        )))
    return students


@pytest.fixture(scope="function")
async def test_unrelated_student_orm(db_session: AsyncSession) -> db_models.Profiles:
    return await _add(db_session, db_models.Profiles(
        id=TEST_UNRELATED_STUDENT_ID,
        email="other.student@tutorflow.app",
        password=HashedPassword.get_hash(TEST_PASSWORD_STUDENT),
        name="Unrelated Student",
        role=UserRole.STUDENT.value,
        is_active=True
    ))


@pytest.fixture(scope="function")
async def test_service_orm(db_session: AsyncSession, test_teacher_orm: db_models.Profiles) -> db_models.ClassServices:
    return await _add(db_session, db_models.ClassServices(
        id=TEST_SERVICE_ID,
        teacher_id=test_teacher_orm.id,
        name="Private lesson",
        price=Decimal("80.00"),
        duration_minutes=60
    ))


@pytest.fixture(scope="function")
async def test_policy_orm(db_session: AsyncSession, test_teacher_orm: db_models.Profiles) -> db_models.CancellationPolicies:
    """24 hours notice, 50% charge, amnesty allowed."""
    return await _add(db_session, db_models.CancellationPolicies(
        id=TEST_POLICY_ID,
        teacher_id=test_teacher_orm.id,
        hours_before_class=24,
        charge_percentage=Decimal("50"),
        allow_amnesty=True,
        is_active=True
    ))


@pytest.fixture(scope="function")
async def test_series_orm(
    db_session: AsyncSession,
    test_teacher_orm: db_models.Profiles,
    test_student_orm: db_models.Profiles,
    test_service_orm: db_models.ClassServices
) -> db_models.Classes:
    """An infinite weekly one-to-one series starting TEST_SERIES_START."""
    return await _add(db_session, db_models.Classes(
        id=TEST_SERIES_ID,
        teacher_id=test_teacher_orm.id,
        student_id=test_student_orm.id,
        service_id=test_service_orm.id,
        class_date=TEST_SERIES_START,
        duration_minutes=60,
        status=ClassStatusEnum.CONFIRMED.value,
        is_group_class=False,
        recurrence_pattern={"frequency": RecurrenceFrequencyEnum.WEEKLY.value, "is_infinite": True},
        participants=[]
    ))


@pytest.fixture(scope="function")
async def test_group_series_orm(
    db_session: AsyncSession,
    test_teacher_orm: db_models.Profiles,
    test_group_students_orm: list[db_models.Profiles]
) -> db_models.Classes:
    """An infinite biweekly group series with two participants."""
    return await _add(db_session, db_models.Classes(
        id=TEST_GROUP_SERIES_ID,
        teacher_id=test_teacher_orm.id,
        class_date=TEST_SERIES_START,
        duration_minutes=90,
        status=ClassStatusEnum.CONFIRMED.value,
        is_group_class=True,
        recurrence_pattern={"frequency": RecurrenceFrequencyEnum.BIWEEKLY.value, "is_infinite": True},
        participants=[
            db_models.ClassParticipants(student_id=s.id, status=ClassStatusEnum.CONFIRMED.value)
            for s in test_group_students_orm
        ]
    ))


@pytest.fixture(scope="function")
async def test_class_orm(
    db_session: AsyncSession,
    test_teacher_orm: db_models.Profiles,
    test_student_orm: db_models.Profiles,
    test_service_orm: db_models.ClassServices
) -> db_models.Classes:
    """A single one-to-one class starting 10 hours after TEST_NOW."""
    return await _add(db_session, db_models.Classes(
        id=TEST_CLASS_ID,
        teacher_id=test_teacher_orm.id,
        student_id=test_student_orm.id,
        service_id=test_service_orm.id,
        class_date=TEST_NOW + timedelta(hours=10),
        duration_minutes=60,
        status=ClassStatusEnum.PENDING.value,
        is_group_class=False,
        participants=[]
    ))
