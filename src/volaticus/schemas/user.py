import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, field_validator

USERNAME_PATTERN = re.compile(r"[A-Za-z][A-Za-z0-9_-]{2,49}")


class UserBase(BaseModel):
    email: EmailStr
    username: str


class UserCreate(UserBase):
    password: str

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if not USERNAME_PATTERN.fullmatch(v):
            raise ValueError(
                "Username must be 3-50 characters, start with a letter and contain only "
                "letters, numbers, underscores and hyphens"
            )
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v):
        checks = (
            len(v) >= 8,
            any(c.isupper() for c in v),
            any(c.islower() for c in v),
            any(c.isdigit() for c in v),
            any(not c.isalnum() and not c.isspace() for c in v),
        )
        if not all(checks):
            raise ValueError(
                "Password must be at least 8 characters with upper and lower case letters, "
                "a number and a special character"
            )
        return v


class User(UserBase):
    id: UUID
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class Token(BaseModel):
    access_token: str
    token_type: str
