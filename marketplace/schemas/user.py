import re
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

PHONE_RE = re.compile(r"^\+?[0-9]{10,15}$")

# 自行註冊不能選 ADMIN
SelfServiceRole = Literal["CUSTOMER", "SELLER"]


def _check_phone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not PHONE_RE.match(v):
        raise ValueError("Please provide a valid phone number")
    return v


def check_password_strength(v: str) -> str:
    if not (re.search(r"[a-z]", v) and re.search(r"[A-Z]", v) and re.search(r"\d", v)):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, and one number"
        )
    return v


class UserCreate(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    phone: str
    password: str = Field(..., min_length=8, max_length=72)
    role: Optional[SelfServiceRole] = None

    validate_phone = field_validator("phone")(_check_phone)
    validate_password = field_validator("password")(check_password_strength)

    @field_validator("first_name", "last_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    role: str
    status: str
    email_verified: bool
    phone_verified: bool
    created_at: datetime


class ProfileUpdateIn(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)

    validate_phone = field_validator("phone")(_check_phone)


def user_payload(user) -> dict:
    return UserOut.model_validate(user).model_dump(mode="json")


class PublicProfileOut(BaseModel):
    """What anyone may see about an account: no contact data, no status."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    role: str
    member_since: datetime = Field(validation_alias="created_at")
