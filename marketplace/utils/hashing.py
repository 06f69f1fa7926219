from passlib.context import CryptContext

from marketplace.config import settings
from marketplace.utils.errors import AppError

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)

BCRYPT_MAX_BYTES = 72


def _too_long(password: str) -> bool:
    return len(password.encode("utf-8")) > BCRYPT_MAX_BYTES


def hash_password(password: str) -> str:
    if _too_long(password):
        raise AppError.bad_request("Password too long (bcrypt max 72 bytes)")
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    # 超過 72 bytes 的密碼不可能是用 hash_password 產生的
    if not hashed_password or _too_long(plain_password):
        return False
    return pwd_context.verify(plain_password, hashed_password)
