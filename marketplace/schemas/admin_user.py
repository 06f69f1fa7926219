from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator

from marketplace.schemas.user import UserOut, _check_phone

Role = Literal["ADMIN", "SELLER", "CUSTOMER"]
Status = Literal["ACTIVE", "SUSPENDED", "DELETED"]

# DELETED 只能走 DELETE /admin/users/{id}（要釋放 email/phone）
EditableStatus = Literal["ACTIVE", "SUSPENDED"]


class AdminUserOut(UserOut):
    google_id: Optional[str] = None
    last_login_at: Optional[datetime] = None


class AdminUserListOut(BaseModel):
    items: list[AdminUserOut]
    total: int
    page: int
    page_size: int


class AdminUserUpdateIn(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    role: Optional[Role] = None
    status: Optional[EditableStatus] = None

    validate_phone = field_validator("phone")(_check_phone)
