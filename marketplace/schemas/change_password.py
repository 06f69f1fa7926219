from pydantic import BaseModel, Field, field_validator

from marketplace.schemas.user import check_password_strength

class ChangePasswordIn(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: str = Field(..., min_length=8, max_length=72)

    validate_new_password = field_validator("new_password")(check_password_strength)
