'''
Bearer token models.
'''
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel

from ..database.db_enums import UserRole


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_at: datetime


class TokenClaims(BaseModel):
    """Claims carried by an access token. `sub` is the profile id."""
    sub: UUID
    role: UserRole
    exp: datetime
