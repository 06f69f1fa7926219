import hashlib
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.models.user import User
from marketplace.utils.errors import AppError
from marketplace.utils.hashing import hash_password

INVALID_TOKEN = "Invalid or expired reset token"


def generate_reset_token() -> str:
    # 產生給使用者的原始 token（只會顯示一次）
    return secrets.token_hex(settings.RESET_TOKEN_BYTES)


def hash_token(token: str) -> str:
    # DB 存 hash，避免 DB 外洩直接拿到 token
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def reset_token_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=settings.RESET_TOKEN_EXPIRE_MINUTES)


def issue_reset_token(db: Session, user: User) -> str:
    raw_token = generate_reset_token()
    # 覆寫舊 token：每個帳號同時只有一個有效 token
    user.reset_password_token = hash_token(raw_token)
    user.reset_password_expires = reset_token_expiry()
    db.commit()
    return raw_token


def consume_reset_token(db: Session, raw_token: str, new_password: str) -> User:
    token_hash = hash_token(raw_token)

    user = (
        db.query(User)
        .filter(
            User.reset_password_token == token_hash,
            User.reset_password_expires > datetime.utcnow(),
        )
        .first()
    )
    if not user:
        raise AppError.bad_request(INVALID_TOKEN)

    password_hash = hash_password(new_password)

    # 同一個 token 只能成功一次
    updated = (
        db.query(User)
        .filter(User.id == user.id, User.reset_password_token == token_hash)
        .update(
            {
                User.password_hash: password_hash,
                User.reset_password_token: None,
                User.reset_password_expires: None,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise AppError.bad_request(INVALID_TOKEN)

    db.commit()
    db.refresh(user)
    return user
