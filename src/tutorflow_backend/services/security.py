'''
Access tokens and the current-user dependency shared by every router.
'''
from datetime import datetime, timedelta, timezone
from typing import Annotated, Optional
from jose import JWTError, jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from pydantic import ValidationError

from ..common.config import settings
from ..common.logger import log
from ..database import models as db_models
from ..models.token import Token, TokenClaims
from .user_service import UserService


def issue_access_token(profile: db_models.Profiles, expires_delta: Optional[timedelta] = None) -> Token:
    """Signs a token whose subject is the profile id and which carries its role."""
    expires_at = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    claims = {"sub": str(profile.id), "role": profile.role, "exp": expires_at}
    encoded = jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return Token(access_token=encoded, expires_at=expires_at)


def read_access_token(token: str) -> Optional[TokenClaims]:
    """Returns the validated claims, or None for a bad signature, expiry or shape."""
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        return TokenClaims.model_validate(payload)
    except (JWTError, ValidationError) as e:
        log.warning(f"Rejected access token: {e}")
        return None


oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


async def verify_token_and_get_user(
    token: Annotated[str, Depends(oauth2_scheme)],
    user_service: Annotated[UserService, Depends(UserService)]
) -> db_models.Profiles:
    """
    Resolves the bearer token to an active profile. A token issued before the
    profile's role changed is refused so that permissions are re-evaluated at login.
    """
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = read_access_token(token)
    if claims is None:
        raise unauthorized

    profile = await user_service.get_user_by_id(claims.sub)
    if profile is None or not profile.is_active:
        log.warning(f"Token subject {claims.sub} is unknown or inactive.")
        raise unauthorized
    if profile.role != claims.role.value:
        log.warning(f"SECURITY: Token for {claims.sub} claims role {claims.role.value}, profile has {profile.role}.")
        raise unauthorized

    return profile
