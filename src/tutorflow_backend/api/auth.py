'''
API endpoints for Authentication.
'''
from typing import Annotated
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm

from ..database import models as db_models
from ..services.auth_service import LoginService
from ..services.security import verify_token_and_get_user
from ..models import token as token_models
from ..models import user as user_models
from ..common.logger import log


class AuthRoutes:
    """
    Login and the caller's own profile.
    """
    def __init__(self):
        self.router = APIRouter(prefix="/auth", tags=["Authentication"])
        self._register_routes()

    def _register_routes(self):
        """Registers all the API routes for this class."""
        self.router.add_api_route(
                "/login",
                self.login,
                methods=["POST"],
                response_model=token_models.Token)
        self.router.add_api_route(
                "/me",
                self.me,
                methods=["GET"],
                response_model=user_models.ProfileRead)

    async def login(
        self,
        form_data: Annotated[OAuth2PasswordRequestForm, Depends()],
        login_service: Annotated[LoginService, Depends(LoginService)]
    ):
        """
        OAuth2 password flow; `username` is the profile's e-mail.
        """
        try:
            return await login_service.login_user(form_data.username, form_data.password)
        except HTTPException:
            raise
        except Exception as e:
            log.error(f"Login failed unexpectedly for {form_data.username}: {e}", exc_info=True)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="An internal server error occurred during login.",
            )

    async def me(self, current_user: Annotated[db_models.Profiles, Depends(verify_token_and_get_user)]):
        return current_user


# Instantiate the class and export its router
auth_routes = AuthRoutes()
router = auth_routes.router
