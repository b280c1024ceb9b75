import pytest
from uuid import UUID
from fastapi import HTTPException

from tutorflow_backend.database import models as db_models
from tutorflow_backend.database.db_enums import UserRole
from tutorflow_backend.services.user_service import UserService
from tests.constants import TEST_STUDENT_EMAIL, TEST_GROUP_STUDENT_IDS

from pprint import pp as pprint


@pytest.mark.anyio
class TestUserService:

    async def test_get_teacher_user_by_id(
        self,
        user_service: UserService,
        test_teacher_orm: db_models.Profiles
    ):
        """Tests fetching a user by their ID."""
        user = await user_service.get_user_by_id(test_teacher_orm.id)
        pprint(user.__dict__)

        assert user is not None
        assert user.id == test_teacher_orm.id
        assert user.role == UserRole.TEACHER.value
        assert user.has_financial_module is True

    async def test_get_user_by_id_not_found(self, user_service: UserService):
        """Tests that None is returned for a non-existent ID."""
        user = await user_service.get_user_by_id(UUID(int=0))
        assert user is None

    async def test_get_student_user_by_email(
        self,
        user_service: UserService,
        test_student_orm: db_models.Profiles
    ):
        user = await user_service.get_user_by_email(TEST_STUDENT_EMAIL)
        assert user is not None
        assert user.id == test_student_orm.id
        assert user.role == UserRole.STUDENT.value

    async def test_get_user_by_email_not_found(self, user_service: UserService):
        user = await user_service.get_user_by_email("nobody@tutorflow.app")
        assert user is None

    async def test_get_users_by_ids(
        self,
        user_service: UserService,
        test_group_students_orm: list[db_models.Profiles]
    ):
        users = await user_service.get_users_by_ids(TEST_GROUP_STUDENT_IDS + [UUID(int=0)])
        assert {u.id for u in users} == set(TEST_GROUP_STUDENT_IDS)

    async def test_get_users_by_ids_empty(self, user_service: UserService):
        assert await user_service.get_users_by_ids([]) == []

    async def test_authorize_role_allows(
        self,
        user_service: UserService,
        test_teacher_orm: db_models.Profiles
    ):
        user_service.authorize_role(test_teacher_orm, [UserRole.TEACHER])

    async def test_authorize_role_denies(
        self,
        user_service: UserService,
        test_student_orm: db_models.Profiles
    ):
        with pytest.raises(HTTPException) as e:
            user_service.authorize_role(test_student_orm, [UserRole.TEACHER])
        assert e.value.status_code == 403
