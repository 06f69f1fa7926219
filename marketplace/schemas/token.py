from pydantic import BaseModel


class TokenClaims(BaseModel):
    account_id: int
    email: str
    role: str


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class RefreshIn(BaseModel):
    refresh_token: str
