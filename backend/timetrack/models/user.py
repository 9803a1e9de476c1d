from pydantic import BaseModel, EmailStr, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from timetrack.utils.timeutil import as_utc


class UserCreate(BaseModel):
    email: EmailStr
    name: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=8)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserResponse(BaseModel):
    id: str
    email: EmailStr
    name: str
    isActive: bool
    defaultHourlyRate: Optional[Decimal] = None
    idleTimeoutSeconds: int
    createdAt: Optional[datetime] = None


class UserSettingsUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    defaultHourlyRate: Optional[Decimal] = Field(default=None, ge=0)
    idleTimeoutSeconds: Optional[int] = Field(default=None, ge=60, le=86400)


class Token(BaseModel):
    access_token: str
    token_type: str


def to_user_response(user) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        isActive=bool(user.is_active),
        defaultHourlyRate=user.default_hourly_rate,
        idleTimeoutSeconds=user.idle_timeout_seconds,
        createdAt=as_utc(user.created_at),
    )
