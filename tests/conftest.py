import os
import re
import tempfile

# 必須在 import marketplace 之前設定
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET"] = "test-access-secret"
os.environ["JWT_REFRESH_SECRET"] = "test-refresh-secret"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SMTP_HOST"] = ""
os.environ["FRONTEND_BASE_URL"] = "http://frontend.test"
os.environ["STATIC_DIR"] = tempfile.mkdtemp(prefix="marketplace-static-")
os.environ["LOG_DIR"] = tempfile.mkdtemp(prefix="marketplace-logs-")

import pytest
from fastapi.testclient import TestClient

from marketplace.database import Base, SessionLocal, engine
from marketplace.main import app
from marketplace.models.user import User, UserRole
from marketplace.utils import mailer
from marketplace.utils.hashing import hash_password


@pytest.fixture(autouse=True)
def reset_db():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


class Outbox(list):
    def last_to(self, email):
        for msg in reversed(self):
            if msg["to"] == email:
                return msg
        return None

    def otp_for(self, email):
        msg = self.last_to(email)
        return re.search(r">(\d{6})</p>", msg["html"]).group(1)

    def reset_token_for(self, email):
        msg = self.last_to(email)
        return re.search(r"token=([0-9a-f]+)", msg["html"]).group(1)


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = Outbox()

    def fake_send(to, subject, html):
        sent.append({"to": to, "subject": subject, "html": html})
        return True

    monkeypatch.setattr(mailer, "send_email", fake_send)
    return sent


REGISTER_BODY = {
    "first_name": "A",
    "last_name": "B",
    "email": "a@x.com",
    "phone": "+15550000001",
    "password": "Password1",
}


@pytest.fixture
def register(client):
    def _register(**overrides):
        body = {**REGISTER_BODY, **overrides}
        return client.post("/auth/register", json=body)

    return _register


@pytest.fixture
def make_user(db):
    def _make(email="user@x.com", phone="+15550009999", password="Password1", **fields):
        user = User(
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", "User"),
            email=email,
            phone=phone,
            password_hash=hash_password(password) if password else None,
            role=fields.pop("role", UserRole.CUSTOMER.value),
            **fields,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
