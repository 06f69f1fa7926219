import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import ValidationError
from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.database import get_db
from marketplace.models.user import User, UserRole
from marketplace.schemas.token import TokenClaims, TokenPair
from marketplace.utils.errors import AppError

logger = logging.getLogger("marketplace.auth")

bearer_scheme = HTTPBearer(auto_error=False)

ACCESS = "access"
REFRESH = "refresh"


def _encode(claims: TokenClaims, token_type: str, secret: str, expires_minutes: int) -> str:
    now = datetime.utcnow()
    to_encode = claims.model_dump()
    to_encode.update({
        "type": token_type,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    })
    return jwt.encode(to_encode, secret, algorithm=settings.JWT_ALGORITHM)


def _verify(token: str, token_type: str, secret: str) -> TokenClaims:
    try:
        payload = jwt.decode(token, secret, algorithms=[settings.JWT_ALGORITHM])
        if payload.get("type") != token_type:
            raise JWTError(f"expected {token_type} token")
        return TokenClaims.model_validate(payload)
    except (JWTError, ValidationError) as e:
        logger.info("Failed to verify %s token: %s", token_type, e)
        raise AppError.unauthorized(f"Invalid or expired {token_type} token")


def create_access_token(claims: TokenClaims) -> str:
    return _encode(claims, ACCESS, settings.JWT_SECRET, settings.ACCESS_TOKEN_EXPIRE_MINUTES)


def create_refresh_token(claims: TokenClaims) -> str:
    return _encode(claims, REFRESH, settings.JWT_REFRESH_SECRET, settings.REFRESH_TOKEN_EXPIRE_MINUTES)


def create_token_pair(claims: TokenClaims) -> TokenPair:
    return TokenPair(
        access_token=create_access_token(claims),
        refresh_token=create_refresh_token(claims),
    )


def claims_for(user: User) -> TokenClaims:
    return TokenClaims(account_id=user.id, email=user.email, role=user.role)


def verify_access_token(token: str) -> TokenClaims:
    return _verify(token, ACCESS, settings.JWT_SECRET)


def verify_refresh_token(token: str) -> TokenClaims:
    return _verify(token, REFRESH, settings.JWT_REFRESH_SECRET)


def decode_token(token: str) -> Optional[dict]:
    """Read claims without checking the signature. Never use for authorization."""
    try:
        return jwt.get_unverified_claims(token)
    except JWTError:
        return None


def get_token_expiration_time(token: str) -> Optional[int]:
    """Seconds until the token expires (negative once expired)."""
    decoded = decode_token(token)
    if not decoded or "exp" not in decoded:
        return None
    return int(decoded["exp"]) - int(time.time())


def is_token_expired(token: str) -> bool:
    remaining = get_token_expiration_time(token)
    return remaining is None or remaining <= 0


def get_current_claims(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> TokenClaims:
    if credentials is None or not credentials.credentials:
        raise AppError.unauthorized("Access token is required")
    return verify_access_token(credentials.credentials)


def get_current_user(
    claims: TokenClaims = Depends(get_current_claims),
    db: Session = Depends(get_db),
) -> User:
    user = db.query(User).filter(User.id == claims.account_id).first()
    if not user:
        raise AppError.unauthorized("User not found")
    if not user.is_active:
        raise AppError.forbidden("Account is not active")
    return user


def require_roles(*roles: UserRole):
    allowed = {r.value for r in roles}

    def dependency(user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            logger.warning("Unauthorized access attempt by user %s with role %s", user.id, user.role)
            raise AppError.forbidden("You do not have permission to access this resource")
        return user

    return dependency


require_admin = require_roles(UserRole.ADMIN)
