from pydantic import BaseModel, EmailStr, Field, field_validator

from marketplace.schemas.user import check_password_strength

class ForgotPasswordIn(BaseModel):
    email: EmailStr

class ResetPasswordIn(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=8, max_length=72)

    validate_new_password = field_validator("new_password")(check_password_strength)
