import enum
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text

from marketplace.database import Base


class UserRole(str, enum.Enum):
    ADMIN = "ADMIN"
    SELLER = "SELLER"
    CUSTOMER = "CUSTOMER"


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    # Google 帳號沒有電話
    phone = Column(String(64), unique=True, nullable=True)

    # null => 只能用 Google 登入
    password_hash = Column(String, nullable=True)
    google_id = Column(String(64), unique=True, nullable=True)

    avatar_url = Column(Text, nullable=True)
    bio = Column(Text, nullable=True)

    role = Column(String(20), nullable=False, default=UserRole.CUSTOMER.value)
    status = Column(String(20), nullable=False, default=UserStatus.ACTIVE.value)
    email_verified = Column(Boolean, nullable=False, default=False)
    phone_verified = Column(Boolean, nullable=False, default=False)
    last_login_at = Column(DateTime, nullable=True)

    # 存 hash，不要存明碼 token
    reset_password_token = Column(String(128), nullable=True, index=True)
    reset_password_expires = Column(DateTime, nullable=True)

    email_verification_code = Column(String(16), nullable=True)
    email_verification_expires = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE.value

    def soft_delete(self, now: datetime = None):
        """Mark deleted and rename email/phone so the unique slots are freed."""
        stamp = int((now or datetime.utcnow()).timestamp() * 1000)
        self.status = UserStatus.DELETED.value
        self.email = f"deleted_{stamp}_{self.email}"
        if self.phone:
            self.phone = f"deleted_{stamp}_{self.id}"
        self.google_id = None
        self.reset_password_token = None
        self.reset_password_expires = None
        self.email_verification_code = None
        self.email_verification_expires = None
