from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from marketplace.database import get_db
from marketplace.models.user import User, UserStatus
from marketplace.schemas.user import ProfileUpdateIn, PublicProfileOut, user_payload
from marketplace.utils.auth import get_current_user
from marketplace.utils.avatar import generate_and_store_avatar
from marketplace.utils.errors import AppError
from marketplace.utils.responses import success
import logging
logger = logging.getLogger("marketplace.profile")


router = APIRouter(prefix="/users", tags=["Users"])


@router.get("/me")
def get_my_profile(user: User = Depends(get_current_user)):
    return success("Profile retrieved", user_payload(user))


@router.put("/me")
def update_my_profile(
    body: ProfileUpdateIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = body.model_dump(exclude_unset=True, exclude_none=True)

    if "phone" in data and data["phone"] != user.phone:
        taken = db.query(User.id).filter(User.phone == data["phone"], User.id != user.id).first()
        if taken:
            raise AppError.conflict("Phone number already in use")

    for k, v in data.items():
        setattr(user, k, v)

    # 名字改了就重新產生頭像
    if "first_name" in data or "last_name" in data:
        try:
            user.avatar_url = generate_and_store_avatar(user.first_name, user.last_name, user.id)
        except Exception:
            logger.warning("Failed to regenerate avatar for user %s", user.id, exc_info=True)

    db.commit()
    db.refresh(user)
    return success("Profile updated", user_payload(user))


@router.delete("/me")
def delete_my_account(db: Session = Depends(get_db), user: User = Depends(get_current_user)):
    original_email = user.email
    user.soft_delete()
    db.commit()

    logger.info("Account deleted by owner: %s", original_email)
    return success("Account deleted successfully")


# 公開頁面：不需登入，已刪除帳號當作不存在
@router.get("/public/{user_id}")
def get_public_profile(user_id: int, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.id == user_id).first()
    if not user or user.status == UserStatus.DELETED.value:
        raise AppError.not_found("User not found")

    data = PublicProfileOut.model_validate(user).model_dump(mode="json")
    return success("Public profile retrieved", data)
