import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.models.user import User
from marketplace.utils.errors import AppError


@dataclass
class IssuedCode:
    code: str
    expires_at: datetime


def generate_code(length: int = None) -> str:
    length = length or settings.OTP_LENGTH
    # 保留前導 0，例如 "004213"
    return str(secrets.randbelow(10 ** length)).zfill(length)


def code_expiry() -> datetime:
    return datetime.utcnow() + timedelta(minutes=settings.OTP_EXPIRE_MINUTES)


def issue_code(db: Session, email: str) -> IssuedCode:
    """Issue a fresh code for `email`, replacing any live one."""
    issued = IssuedCode(code=generate_code(), expires_at=code_expiry())
    updated = (
        db.query(User)
        .filter(User.email == email)
        .update(
            {
                User.email_verification_code: issued.code,
                User.email_verification_expires: issued.expires_at,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        db.rollback()
        raise AppError.not_found("User not found")
    db.commit()
    return issued


def verify_code(db: Session, email: str, code: str) -> bool:
    """
    Check `code` against the live code for `email` and consume it on a match.

    The match and the clear happen in one conditional UPDATE, so two
    concurrent submissions of the same code cannot both succeed.
    An expired code is cleared and rejected.
    """
    code = str(code).strip()
    if not code:
        return False

    now = datetime.utcnow()
    cleared = {
        User.email_verification_code: None,
        User.email_verification_expires: None,
    }

    consumed = (
        db.query(User)
        .filter(
            User.email == email,
            User.email_verification_code == code,
            User.email_verification_expires > now,
        )
        .update(cleared, synchronize_session=False)
    )
    if consumed:
        db.commit()
        return True

    expired = (
        db.query(User)
        .filter(
            User.email == email,
            User.email_verification_code.isnot(None),
            User.email_verification_expires <= now,
        )
        .update(cleared, synchronize_session=False)
    )
    if expired:
        db.commit()
    return False


def delete_code(db: Session, email: str):
    db.query(User).filter(User.email == email).update(
        {
            User.email_verification_code: None,
            User.email_verification_expires: None,
        },
        synchronize_session=False,
    )
    db.commit()


def cleanup_expired_codes(db: Session) -> int:
    count = (
        db.query(User)
        .filter(
            User.email_verification_code.isnot(None),
            User.email_verification_expires < datetime.utcnow(),
        )
        .update(
            {
                User.email_verification_code: None,
                User.email_verification_expires: None,
            },
            synchronize_session=False,
        )
    )
    db.commit()
    return count
