from pydantic import BaseModel, EmailStr, Field


class VerifyEmailIn(BaseModel):
    email: EmailStr
    code: str = Field(..., min_length=1, max_length=16)


class ResendVerificationIn(BaseModel):
    email: EmailStr
