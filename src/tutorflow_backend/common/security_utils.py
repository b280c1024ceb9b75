'''
Password hashing helpers, kept apart from the services so that scripts and
tests can hash passwords without pulling in FastAPI.
'''
from passlib.context import CryptContext

class HashedPassword:
    pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

    @classmethod
    def verify(cls, plain_password: str, hashed_password: str) -> bool:
        return cls.pwd_context.verify(plain_password, hashed_password)

    @classmethod
    def get_hash(cls, password: str) -> str:
        return cls.pwd_context.hash(password)

    @classmethod
    def needs_rehash(cls, hashed_password: str) -> bool:
        """True when the stored hash uses outdated bcrypt settings."""
        return cls.pwd_context.needs_update(hashed_password)
