from urllib.parse import parse_qs, urlparse

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from conftest import bearer
from marketplace.models.user import User
from marketplace.routers import auth as auth_router
from marketplace.utils import google_oauth
from marketplace.utils.auth import verify_access_token


# 註冊
def test_register_returns_user_and_tokens(register):
    resp = register()
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "success"

    data = body["data"]
    assert data["user"]["email"] == "a@x.com"
    assert data["user"]["role"] == "CUSTOMER"
    assert data["user"]["status"] == "ACTIVE"
    assert data["user"]["email_verified"] is False
    assert "password_hash" not in data["user"]

    claims = verify_access_token(data["access_token"])
    assert claims.account_id == data["user"]["id"]
    assert claims.email == "a@x.com"
    assert claims.role == "CUSTOMER"


def test_register_generates_avatar_and_sends_code(register, outbox):
    data = register().json()["data"]
    assert data["user"]["avatar_url"].startswith("/static/avatars/avatar_")
    assert outbox.last_to("a@x.com")["subject"].startswith("Verify your email")


def test_register_survives_avatar_failure(register, monkeypatch):
    def boom(*args):
        raise OSError("disk full")

    monkeypatch.setattr(auth_router, "generate_and_store_avatar", boom)
    resp = register()
    assert resp.status_code == 201
    assert resp.json()["data"]["user"]["avatar_url"] is None


def test_register_seller_role(register):
    resp = register(role="SELLER")
    assert resp.json()["data"]["user"]["role"] == "SELLER"


def test_register_cannot_self_assign_admin(register):
    resp = register(role="ADMIN")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "VALIDATION_ERROR"


def test_register_duplicate_email_conflicts(register):
    register()
    resp = register(phone="+15550000002")
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT"


def test_register_duplicate_phone_conflicts(register):
    register()
    resp = register(email="b@x.com")
    assert resp.status_code == 409


def test_register_rejects_weak_password(register):
    resp = register(password="password")
    assert resp.status_code == 400


def test_register_rejects_bad_phone(register):
    resp = register(phone="12ab")
    assert resp.status_code == 400


# 登入
def test_login_scenario(register, client):
    assert register().status_code == 201

    ok = client.post("/auth/login", json={"email": "a@x.com", "password": "Password1"})
    assert ok.status_code == 200
    assert ok.json()["data"]["user"]["email"] == "a@x.com"

    bad = client.post("/auth/login", json={"email": "a@x.com", "password": "wrong"})
    assert bad.status_code == 401
    assert bad.json()["message"] == "Invalid email or password"


def test_login_unknown_email(client):
    resp = client.post("/auth/login", json={"email": "ghost@x.com", "password": "Password1"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Invalid email or password"


def test_login_records_last_login(register, client, db):
    register()
    client.post("/auth/login", json={"email": "a@x.com", "password": "Password1"})
    user = db.query(User).filter(User.email == "a@x.com").first()
    assert user.last_login_at is not None


def test_login_suspended_account_is_forbidden(client, make_user):
    make_user(email="s@x.com", status="SUSPENDED")
    resp = client.post("/auth/login", json={"email": "s@x.com", "password": "Password1"})
    assert resp.status_code == 403


def test_login_suspended_account_wrong_password_is_unauthorized(client, make_user):
    make_user(email="s@x.com", status="SUSPENDED")
    resp = client.post("/auth/login", json={"email": "s@x.com", "password": "Nope12345"})
    assert resp.status_code == 401


def test_login_google_only_account(client, make_user):
    make_user(email="g@x.com", password=None, phone=None)
    resp = client.post("/auth/login", json={"email": "g@x.com", "password": "Password1"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "Please login with Google instead"


# refresh
def test_refresh_issues_new_pair(register, client):
    tokens = register().json()["data"]
    resp = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert verify_access_token(data["access_token"]).email == "a@x.com"

    # 舊的 refresh token 仍有效（不輪替）
    again = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert again.status_code == 200


def test_refresh_rejects_access_token(register, client):
    tokens = register().json()["data"]
    resp = client.post("/auth/refresh", json={"refresh_token": tokens["access_token"]})
    assert resp.status_code == 401


def test_refresh_rejects_inactive_account(register, client, db):
    tokens = register().json()["data"]
    db.query(User).update({User.status: "SUSPENDED"})
    db.commit()
    resp = client.post("/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert resp.status_code == 401


def test_refresh_requires_token(client):
    resp = client.post("/auth/refresh", json={"refresh_token": ""})
    assert resp.status_code == 400


# forgot / reset password
def test_forgot_password_does_not_reveal_existence(register, client):
    register()
    known = client.post("/auth/forgot-password", json={"email": "a@x.com"})
    unknown = client.post("/auth/forgot-password", json={"email": "nonexistent@x.com"})

    assert known.status_code == unknown.status_code == 200
    assert known.json()["message"] == unknown.json()["message"]
    assert set(known.json()) == set(unknown.json())


def test_forgot_password_still_succeeds_when_mail_fails(register, client, monkeypatch):
    register()
    monkeypatch.setattr("marketplace.utils.mailer.send_email", lambda *a: False)
    resp = client.post("/auth/forgot-password", json={"email": "a@x.com"})
    assert resp.status_code == 200


def test_reset_password_flow(register, client, outbox):
    register()
    client.post("/auth/forgot-password", json={"email": "a@x.com"})
    token = outbox.reset_token_for("a@x.com")

    resp = client.post("/auth/reset-password", json={"token": token, "new_password": "NewPassword1"})
    assert resp.status_code == 200
    assert outbox.last_to("a@x.com")["subject"].startswith("Password changed")

    old = client.post("/auth/login", json={"email": "a@x.com", "password": "Password1"})
    new = client.post("/auth/login", json={"email": "a@x.com", "password": "NewPassword1"})
    assert old.status_code == 401
    assert new.status_code == 200

    reused = client.post("/auth/reset-password", json={"token": token, "new_password": "Another12"})
    assert reused.status_code == 400


def test_reset_password_invalid_token(client):
    resp = client.post("/auth/reset-password", json={"token": "abc", "new_password": "NewPassword1"})
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid or expired reset token"


# change password
def test_change_password(register, client):
    token = register().json()["data"]["access_token"]

    wrong = client.post(
        "/auth/change-password",
        json={"current_password": "nope", "new_password": "NewPassword1"},
        headers=bearer(token),
    )
    assert wrong.status_code == 401

    ok = client.post(
        "/auth/change-password",
        json={"current_password": "Password1", "new_password": "NewPassword1"},
        headers=bearer(token),
    )
    assert ok.status_code == 200
    login = client.post("/auth/login", json={"email": "a@x.com", "password": "NewPassword1"})
    assert login.status_code == 200


def test_change_password_requires_auth(client):
    resp = client.post(
        "/auth/change-password",
        json={"current_password": "Password1", "new_password": "NewPassword1"},
    )
    assert resp.status_code == 401
    assert resp.json()["message"] == "Access token is required"


def test_change_password_without_local_password(client, make_user):
    user = make_user(email="g@x.com", password=None, phone=None)
    from marketplace.utils.auth import claims_for, create_access_token

    token = create_access_token(claims_for(user))
    resp = client.post(
        "/auth/change-password",
        json={"current_password": "whatever", "new_password": "NewPassword1"},
        headers=bearer(token),
    )
    assert resp.status_code == 400


# email verification
def test_verify_email_flow(register, client, outbox, db):
    register()
    code = outbox.otp_for("a@x.com")

    wrong = "000000" if code != "000000" else "111111"
    bad = client.post("/auth/verify-email", json={"email": "a@x.com", "code": wrong})
    assert bad.status_code == 400

    ok = client.post("/auth/verify-email", json={"email": "a@x.com", "code": code})
    assert ok.status_code == 200

    user = db.query(User).filter(User.email == "a@x.com").first()
    assert user.email_verified is True
    assert user.email_verification_code is None

    replay = client.post("/auth/verify-email", json={"email": "a@x.com", "code": code})
    assert replay.status_code == 400


def test_resend_verification(register, client, outbox):
    unknown = client.post("/auth/resend-verification", json={"email": "ghost@x.com"})
    assert unknown.status_code == 200
    assert unknown.json()["message"] == "If an account exists, a verification code will be sent"

    register()
    first = outbox.otp_for("a@x.com")
    resp = client.post("/auth/resend-verification", json={"email": "a@x.com"})
    assert resp.json()["message"] == "Verification code sent successfully"
    second = outbox.otp_for("a@x.com")

    if first != second:
        stale = client.post("/auth/verify-email", json={"email": "a@x.com", "code": first})
        assert stale.status_code == 400
    assert client.post("/auth/verify-email", json={"email": "a@x.com", "code": second}).status_code == 200

    verified = client.post("/auth/resend-verification", json={"email": "a@x.com"})
    assert verified.json()["message"] == "Email is already verified"


# logout / profile
def test_logout(register, client):
    token = register().json()["data"]["access_token"]
    resp = client.post("/auth/logout", headers=bearer(token))
    assert resp.status_code == 200
    assert client.post("/auth/logout").status_code == 401


def test_profile_get_and_update(register, client):
    token = register().json()["data"]["access_token"]

    me = client.get("/auth/profile", headers=bearer(token))
    assert me.json()["data"]["email"] == "a@x.com"

    resp = client.put("/auth/profile", json={"first_name": "Ada", "bio": "hi"}, headers=bearer(token))
    assert resp.status_code == 200
    assert resp.json()["data"]["first_name"] == "Ada"
    assert resp.json()["data"]["bio"] == "hi"


def test_profile_phone_conflict(register, client):
    register()
    token = register(email="b@x.com", phone="+15550000002").json()["data"]["access_token"]
    resp = client.put("/auth/profile", json={"phone": "+15550000001"}, headers=bearer(token))
    assert resp.status_code == 409


# Google OAuth
def _fake_google(monkeypatch, email="g@x.com", google_id="g-1", verified=True):
    monkeypatch.setattr(google_oauth, "exchange_code", lambda code: {"access_token": "g-access"})
    monkeypatch.setattr(
        google_oauth,
        "fetch_profile",
        lambda token: google_oauth.GoogleProfile(
            id=google_id, email=email, name="Grace Hopper", given_name="Grace",
            family_name="Hopper", picture="https://img/g.png", verified_email=verified,
        ),
    )


def _start_google(client):
    resp = client.get("/auth/google")
    assert resp.status_code == 200
    state = parse_qs(urlparse(resp.json()["data"]["auth_url"]).query)["state"][0]
    assert client.cookies.get("google_oauth_state") == state
    return state


def test_google_callback_provisions_account(client, monkeypatch, db):
    _fake_google(monkeypatch)
    state = _start_google(client)

    resp = client.get(
        "/auth/google/callback",
        params={"code": "c", "state": state},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    location = urlparse(resp.headers["location"])
    assert location.netloc == "frontend.test"
    assert location.path == "/auth/callback"
    params = parse_qs(location.query)
    assert verify_access_token(params["token"][0]).email == "g@x.com"
    assert "refreshToken" in params

    user = db.query(User).filter(User.email == "g@x.com").first()
    assert user.email_verified is True
    assert user.password_hash is None
    assert user.role == "CUSTOMER"
    assert user.google_id == "g-1"


def test_google_callback_state_mismatch(client, monkeypatch):
    _fake_google(monkeypatch)
    _start_google(client)
    resp = client.get(
        "/auth/google/callback",
        params={"code": "c", "state": "forged"},
        follow_redirects=False,
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "Invalid state parameter"


def test_google_callback_inactive_account(client, monkeypatch, make_user):
    make_user(email="g@x.com", status="SUSPENDED")
    _fake_google(monkeypatch)
    state = _start_google(client)
    resp = client.get(
        "/auth/google/callback",
        params={"code": "c", "state": state},
        follow_redirects=False,
    )
    assert resp.status_code == 403


def test_google_callback_links_existing_account(client, monkeypatch, make_user, db):
    user = make_user(email="g@x.com")
    _fake_google(monkeypatch)
    state = _start_google(client)
    resp = client.get(
        "/auth/google/callback",
        params={"code": "c", "state": state},
        follow_redirects=False,
    )
    assert resp.status_code == 302
    db.expire_all()
    assert db.get(User, user.id).google_id == "g-1"


def _google_callback(client):
    state = _start_google(client)
    return client.get(
        "/auth/google/callback",
        params={"code": "c", "state": state},
        follow_redirects=False,
    )


def test_google_callback_finds_account_by_google_id_after_email_change(
    client, monkeypatch, make_user, db
):
    user = make_user(email="old@x.com", google_id="g-1")
    _fake_google(monkeypatch, email="new@x.com")

    resp = _google_callback(client)
    assert resp.status_code == 302
    token = parse_qs(urlparse(resp.headers["location"]).query)["token"][0]
    assert verify_access_token(token).account_id == user.id
    assert db.query(User).count() == 1


def test_google_callback_email_linked_to_other_google_account(client, monkeypatch, make_user):
    make_user(email="g@x.com", google_id="g-other")
    _fake_google(monkeypatch)

    resp = _google_callback(client)
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONFLICT"


def test_google_callback_unverified_email_does_not_link(client, monkeypatch, make_user, db):
    user = make_user(email="g@x.com")
    _fake_google(monkeypatch, verified=False)

    resp = _google_callback(client)
    assert resp.status_code == 403
    db.expire_all()
    assert db.get(User, user.id).google_id is None


def test_google_callback_commit_conflict_is_409(client, monkeypatch):
    _fake_google(monkeypatch)

    def fail_commit(self):
        raise IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(Session, "commit", fail_commit)
    resp = _google_callback(client)
    assert resp.status_code == 409


def test_error_envelope_shape(client):
    resp = client.post("/auth/login", json={"email": "ghost@x.com", "password": "x"})
    body = resp.json()
    assert body["status"] == "error"
    assert body["error"]["code"] == "UNAUTHORIZED"
    assert body["meta"]["path"] == "/auth/login"
    assert "timestamp" in body["meta"]
