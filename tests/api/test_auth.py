import pytest
from datetime import timedelta
from httpx import AsyncClient

from tutorflow_backend.database import models as db_models
from tutorflow_backend.database.db_enums import UserRole
from tutorflow_backend.services.security import issue_access_token
from tests.constants import TEST_PASSWORD_TEACHER, TEST_PASSWORD_STUDENT


@pytest.mark.anyio
class TestAuthAPI:
    """
    Tests for the authentication API endpoints (/auth).
    """

    async def test_login_teacher_success(
        self,
        client: AsyncClient,
        test_teacher_orm: db_models.Profiles
    ):
        print(f"Attempting login for teacher: {test_teacher_orm.email}")
        response = await client.post(
            "/auth/login",
            data={"username": test_teacher_orm.email, "password": TEST_PASSWORD_TEACHER}
        )

        assert response.status_code == 200, response.json()
        token_data = response.json()
        assert "access_token" in token_data
        assert token_data["token_type"] == "bearer"

    async def test_login_student_success(
        self,
        client: AsyncClient,
        test_student_orm: db_models.Profiles
    ):
        response = await client.post(
            "/auth/login",
            data={"username": test_student_orm.email, "password": TEST_PASSWORD_STUDENT}
        )
        assert response.status_code == 200, response.json()

    async def test_login_wrong_password(
        self,
        client: AsyncClient,
        test_teacher_orm: db_models.Profiles
    ):
        response = await client.post(
            "/auth/login",
            data={"username": test_teacher_orm.email, "password": "wrong-password"}
        )
        assert response.status_code == 401
        assert response.json()["detail"] == "Incorrect email or password"

    async def test_login_unknown_user(self, client: AsyncClient):
        response = await client.post(
            "/auth/login",
            data={"username": "nobody@tutorflow.app", "password": "whatever"}
        )
        assert response.status_code == 401

    async def test_login_inactive_user(
        self,
        client: AsyncClient,
        db_session,
        test_teacher_orm: db_models.Profiles
    ):
        test_teacher_orm.is_active = False
        await db_session.flush()
        response = await client.post(
            "/auth/login",
            data={"username": test_teacher_orm.email, "password": TEST_PASSWORD_TEACHER}
        )
        assert response.status_code == 400

    async def test_me(
        self,
        client: AsyncClient,
        teacher_headers: dict,
        test_teacher_orm: db_models.Profiles
    ):
        response = await client.get("/auth/me", headers=teacher_headers)
        assert response.status_code == 200, response.json()
        data = response.json()
        assert data["id"] == str(test_teacher_orm.id)
        assert data["role"] == "teacher"
        assert "password" not in data

    async def test_me_without_token(self, client: AsyncClient):
        response = await client.get("/auth/me")
        assert response.status_code == 401

    async def test_me_with_invalid_token(self, client: AsyncClient):
        response = await client.get("/auth/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    async def test_me_with_expired_token(
        self,
        client: AsyncClient,
        test_teacher_orm: db_models.Profiles
    ):
        token = issue_access_token(test_teacher_orm, expires_delta=timedelta(minutes=-1)).access_token
        response = await client.get("/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    async def test_token_refused_after_role_change(
        self,
        client: AsyncClient,
        db_session,
        teacher_headers: dict,
        test_teacher_orm: db_models.Profiles
    ):
        test_teacher_orm.role = UserRole.STUDENT.value
        await db_session.flush()
        response = await client.get("/auth/me", headers=teacher_headers)
        assert response.status_code == 401

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
