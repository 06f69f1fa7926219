import logging
import secrets
from datetime import datetime
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.config import settings
from marketplace.database import get_db
from marketplace.models.user import User, UserRole, UserStatus
from marketplace.routers.profile import get_my_profile, update_my_profile
from marketplace.schemas.change_password import ChangePasswordIn
from marketplace.schemas.email_verification import ResendVerificationIn, VerifyEmailIn
from marketplace.schemas.password_reset import ForgotPasswordIn, ResetPasswordIn
from marketplace.schemas.token import RefreshIn, TokenClaims
from marketplace.schemas.user import UserCreate, UserLogin, user_payload
from marketplace.utils import google_oauth, mailer, otp
from marketplace.utils.auth import (
    claims_for,
    create_token_pair,
    get_current_claims,
    get_current_user,
    verify_refresh_token,
)
from marketplace.utils.avatar import generate_and_store_avatar
from marketplace.utils.errors import AppError
from marketplace.utils.hashing import hash_password, verify_password
from marketplace.utils.password_reset import consume_reset_token, issue_reset_token
from marketplace.utils.responses import created, success

logger = logging.getLogger("marketplace.auth")


router = APIRouter(prefix="/auth", tags=["Auth"])

FORGOT_PASSWORD_MESSAGE = "If an account exists, a reset link will be sent"
RESEND_MESSAGE = "If an account exists, a verification code will be sent"


def _auth_data(user: User) -> dict:
    tokens = create_token_pair(claims_for(user))
    return {"user": user_payload(user), **tokens.model_dump()}


def _send_verification_code(db: Session, email: str) -> bool:
    issued = otp.issue_code(db, email)
    return mailer.send_verification_email(email, issued.code, settings.OTP_EXPIRE_MINUTES)


# 註冊
@router.post("/register", status_code=201)
def register(body: UserCreate, db: Session = Depends(get_db)):
    email = body.email.lower()

    exists = db.query(User).filter(or_(User.email == email, User.phone == body.phone)).first()
    if exists:
        raise AppError.conflict("User with this email or phone already exists")

    user = User(
        first_name=body.first_name,
        last_name=body.last_name,
        email=email,
        phone=body.phone,
        password_hash=hash_password(body.password),
        role=body.role or UserRole.CUSTOMER.value,
        status=UserStatus.ACTIVE.value,
        email_verified=False,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AppError.conflict("User with this email or phone already exists")
    db.refresh(user)

    try:
        user.avatar_url = generate_and_store_avatar(user.first_name, user.last_name, user.id)
        db.commit()
    except Exception:
        db.rollback()
        logger.warning("Failed to generate avatar for user %s", user.id, exc_info=True)

    if not _send_verification_code(db, user.email):
        logger.warning("Verification email not delivered to %s", user.email)

    db.refresh(user)
    logger.info("User registered: %s", user.email)
    return created("User registered successfully", _auth_data(user))


# 登入
@router.post("/login")
def login(body: UserLogin, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == body.email.lower()).first()
    if not user:
        raise AppError.unauthorized("Invalid email or password")

    if not user.password_hash:
        raise AppError.unauthorized("Please login with Google instead")

    if not verify_password(body.password, user.password_hash):
        raise AppError.unauthorized("Invalid email or password")

    if not user.is_active:
        raise AppError.forbidden("Account is not active")

    user.last_login_at = datetime.utcnow()
    db.commit()
    db.refresh(user)

    logger.info("User logged in: %s", user.email)
    return success("Login successful", _auth_data(user))


@router.post("/refresh")
def refresh(body: RefreshIn, db: Session = Depends(get_db)):
    if not body.refresh_token:
        raise AppError.bad_request("Refresh token is required")

    claims = verify_refresh_token(body.refresh_token)

    user = db.query(User).filter(User.id == claims.account_id).first()
    if not user or not user.is_active:
        raise AppError.unauthorized("Invalid refresh token")

    tokens = create_token_pair(claims_for(user))
    return success("Token refreshed", tokens.model_dump())


@router.get("/google")
def google_auth_url(response: Response):
    state = google_oauth.generate_state()
    response.set_cookie(
        settings.OAUTH_STATE_COOKIE,
        state,
        max_age=settings.OAUTH_STATE_MAX_AGE_SECONDS,
        httponly=True,
        secure=settings.is_production,
        samesite="lax",
    )
    return success("Google auth URL", {"auth_url": google_oauth.build_authorization_url(state)})


@router.get("/google/callback")
def google_callback(
    request: Request,
    code: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    if not code or not state:
        raise AppError.bad_request("Authorization code and state are required")

    stored_state = request.cookies.get(settings.OAUTH_STATE_COOKIE)
    if not stored_state or not secrets.compare_digest(state.encode(), stored_state.encode()):
        raise AppError.bad_request("Invalid state parameter")

    tokens = google_oauth.exchange_code(code)
    profile = google_oauth.fetch_profile(tokens["access_token"])
    email = profile.email.lower()

    # 先用 google_id 找（Google 端 email 可能已變更），再退回 email
    user = db.query(User).filter(User.google_id == profile.id).first()
    if not user:
        user = db.query(User).filter(User.email == email).first()
        if user:
            if user.google_id and user.google_id != profile.id:
                raise AppError.conflict("Account is linked to a different Google account")
            if not profile.verified_email:
                raise AppError.forbidden("Google email is not verified")

    if not user:
        user = User(
            first_name=profile.given_name or "User",
            last_name=profile.family_name or "",
            email=email,
            phone=None,
            password_hash=None,
            google_id=profile.id,
            avatar_url=profile.picture,
            role=UserRole.CUSTOMER.value,
            status=UserStatus.ACTIVE.value,
            email_verified=True,
        )
        db.add(user)
        logger.info("Provisioned account from Google login: %s", email)
    else:
        if not user.is_active:
            raise AppError.forbidden("Account is not active")
        if not user.google_id:
            user.google_id = profile.id

    user.last_login_at = datetime.utcnow()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AppError.conflict("Google account conflicts with an existing account")
    db.refresh(user)

    pair = create_token_pair(claims_for(user))
    query = urlencode({"token": pair.access_token, "refreshToken": pair.refresh_token})
    redirect = RedirectResponse(
        f"{settings.FRONTEND_BASE_URL}/auth/callback?{query}",
        status_code=302,
    )
    redirect.delete_cookie(settings.OAUTH_STATE_COOKIE)

    logger.info("Google login successful for: %s", user.email)
    return redirect


@router.post("/forgot-password")
def forgot_password(body: ForgotPasswordIn, db: Session = Depends(get_db)):
    email = body.email.lower()

    user = db.query(User).filter(User.email == email).first()
    if not user:
        logger.info("Password reset requested for non-existent email: %s", email)
        return success(FORGOT_PASSWORD_MESSAGE)

    raw_token = issue_reset_token(db, user)
    reset_url = f"{settings.FRONTEND_BASE_URL}/reset-password?{urlencode({'token': raw_token})}"

    if mailer.send_password_reset_email(email, reset_url, settings.RESET_TOKEN_EXPIRE_MINUTES):
        logger.info("Password reset email sent to: %s", email)
    else:
        logger.warning("Password reset email not delivered to: %s", email)
    return success(FORGOT_PASSWORD_MESSAGE)


@router.post("/reset-password")
def reset_password(body: ResetPasswordIn, db: Session = Depends(get_db)):
    user = consume_reset_token(db, body.token, body.new_password)

    mailer.send_password_change_confirmation_email(user.email, user.first_name)

    logger.info("Password reset for user: %s", user.email)
    return success("Password has been reset successfully")


@router.post("/change-password")
def change_password(
    body: ChangePasswordIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not current_user.password_hash:
        raise AppError.bad_request("Please login with Google to set a password")

    if not verify_password(body.current_password, current_user.password_hash):
        raise AppError.unauthorized("Current password is incorrect")

    current_user.password_hash = hash_password(body.new_password)
    db.commit()

    mailer.send_password_change_confirmation_email(current_user.email, current_user.first_name)

    logger.info("Password changed for: %s", current_user.email)
    return success("Password changed successfully")


@router.post("/verify-email")
def verify_email(body: VerifyEmailIn, db: Session = Depends(get_db)):
    email = body.email.lower()

    if not otp.verify_code(db, email, body.code):
        raise AppError.bad_request("Invalid or expired verification code")

    user = db.query(User).filter(User.email == email).first()
    if not user:
        raise AppError.not_found("User not found")

    user.email_verified = True
    db.commit()
    otp.delete_code(db, email)

    logger.info("Email verified for: %s", email)
    return success("Email verified successfully")


@router.post("/resend-verification")
def resend_verification(body: ResendVerificationIn, db: Session = Depends(get_db)):
    email = body.email.lower()

    user = db.query(User).filter(User.email == email).first()
    if not user:
        return success(RESEND_MESSAGE)

    # 這裡會透露驗證狀態（與 forgot-password 不一致）
    if user.email_verified:
        return success("Email is already verified")

    if not _send_verification_code(db, email):
        logger.warning("Verification email not delivered to %s", email)

    logger.info("Verification code resent to: %s", email)
    return success("Verification code sent successfully")


@router.post("/logout")
def logout(claims: TokenClaims = Depends(get_current_claims)):
    # 無狀態 JWT：由前端丟棄 token
    logger.info("User logged out: %s", claims.email)
    return success("Logged out successfully")


router.get("/profile")(get_my_profile)
router.put("/profile")(update_my_profile)
