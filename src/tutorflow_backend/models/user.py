'''

'''
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr

from ..database.db_enums import UserRole


class ProfileRead(BaseModel):
    """
    Pydantic model for reading a profile.
    Corresponds to the db_models.Profiles ORM model.
    """
    id: UUID
    email: EmailStr
    name: str
    role: UserRole
    timezone: str

    model_config = ConfigDict(from_attributes=True)
