from pydantic import EmailStr, Field

from signdesk.schemas.common import ORMModel, Timestamped


class UserBase(ORMModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=255)
    is_active: bool = True


class UserCreate(UserBase):
    password: str = Field(min_length=12, max_length=72)


class UserRead(UserBase, Timestamped):
    id: str
