'''

'''
from typing import Annotated
from fastapi import Depends, HTTPException, status

from .security import issue_access_token
from .user_service import UserService
from ..common.security_utils import HashedPassword
from ..models import token as token_models
from ..common.logger import log


class LoginService:
    """
    Exchanges e-mail and password for an access token.
    """
    def __init__(self, user_service: Annotated[UserService, Depends(UserService)]):
        self.user_service = user_service

    async def login_user(self, email: str, password: str) -> token_models.Token:
        log.info(f"Login attempt for {email}")
        profile = await self.user_service._get_user_by_email_with_password(email)

        if profile is None or not HashedPassword.verify(password, profile.password):
            log.warning(f"Login refused for {email}: bad credentials.")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Incorrect email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )
        if not profile.is_active:
            log.warning(f"Login refused for {email}: profile {profile.id} is inactive.")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Inactive user.")

        # Hashes from older bcrypt settings are replaced while the plain password is at hand.
        if HashedPassword.needs_rehash(profile.password):
            log.info(f"Re-hashing password of profile {profile.id}")
            profile.password = HashedPassword.get_hash(password)

        return issue_access_token(profile)
