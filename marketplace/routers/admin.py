from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from marketplace.database import get_db
from marketplace.models.user import User, UserStatus
from marketplace.schemas.admin_user import (
    AdminUserListOut,
    AdminUserOut,
    AdminUserUpdateIn,
    Role,
    Status,
)
from marketplace.utils.auth import require_admin
from marketplace.utils.errors import AppError
from marketplace.utils.responses import success

import logging
logger = logging.getLogger("marketplace.admin")


router = APIRouter(prefix="/admin", tags=["Admin"])


def _get_user_or_404(db: Session, user_id: int) -> User:
    u = db.query(User).filter(User.id == user_id).first()
    if not u:
        raise AppError.not_found("User not found")
    return u


def _not_self(admin: User, target: User):
    if admin.id == target.id:
        raise AppError.bad_request("You cannot change the status of your own account")


def _to_out(u: User) -> dict:
    return AdminUserOut.model_validate(u, from_attributes=True).model_dump(mode="json")


@router.get("/users")
def admin_list_users(
    db: Session = Depends(get_db),
    admin=Depends(require_admin),

    search: Optional[str] = Query(None, description="email / first_name / last_name"),
    role: Optional[Role] = Query(None),
    status: Optional[Status] = Query(None),

    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    q = db.query(User)

    if search:
        like = f"%{search}%"
        q = q.filter(or_(User.email.ilike(like), User.first_name.ilike(like), User.last_name.ilike(like)))

    if role:
        q = q.filter(User.role == role)

    if status:
        q = q.filter(User.status == status)

    total = q.count()

    users = (
        q.order_by(User.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    out = AdminUserListOut(
        items=[AdminUserOut.model_validate(u, from_attributes=True) for u in users],
        total=total,
        page=page,
        page_size=page_size,
    )
    return success("Users retrieved", out.model_dump(mode="json"))


@router.get("/users/{user_id}")
def admin_get_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    return success("User retrieved", _to_out(_get_user_or_404(db, user_id)))


@router.put("/users/{user_id}")
def admin_update_user(
    user_id: int,
    body: AdminUserUpdateIn,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    u = _get_user_or_404(db, user_id)

    if u.status == UserStatus.DELETED.value:
        raise AppError.bad_request("Deleted accounts cannot be updated")

    data = body.model_dump(exclude_unset=True, exclude_none=True)

    # 不能改自己的角色或狀態（避免把自己鎖在外面）
    if ("role" in data or "status" in data) and admin.id == u.id:
        raise AppError.bad_request("You cannot change the role or status of your own account")

    if "phone" in data and data["phone"] != u.phone:
        taken = db.query(User.id).filter(User.phone == data["phone"], User.id != u.id).first()
        if taken:
            raise AppError.conflict("Phone number already in use")

    for k, v in data.items():
        setattr(u, k, v)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise AppError.conflict("Phone number already in use")
    db.refresh(u)

    logger.info("User %s updated by admin %s: %s", u.id, admin.id, sorted(data))
    return success("User updated", _to_out(u))


@router.patch("/users/{user_id}/suspend")
def admin_suspend_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    u = _get_user_or_404(db, user_id)
    _not_self(admin, u)

    if u.status == UserStatus.SUSPENDED.value:
        raise AppError.bad_request("User is already suspended")
    if u.status == UserStatus.DELETED.value:
        raise AppError.bad_request("Deleted accounts cannot be suspended")

    u.status = UserStatus.SUSPENDED.value
    db.commit()
    db.refresh(u)

    logger.info("User %s suspended by admin %s", u.id, admin.id)
    return success("User suspended", _to_out(u))


@router.patch("/users/{user_id}/activate")
def admin_activate_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    u = _get_user_or_404(db, user_id)

    if u.status == UserStatus.ACTIVE.value:
        raise AppError.bad_request("User is already active")
    if u.status == UserStatus.DELETED.value:
        raise AppError.bad_request("Deleted accounts cannot be reactivated")

    u.status = UserStatus.ACTIVE.value
    db.commit()
    db.refresh(u)

    logger.info("User %s activated by admin %s", u.id, admin.id)
    return success("User activated", _to_out(u))


@router.delete("/users/{user_id}")
def admin_delete_user(
    user_id: int,
    db: Session = Depends(get_db),
    admin=Depends(require_admin),
):
    u = _get_user_or_404(db, user_id)
    _not_self(admin, u)

    if u.status == UserStatus.DELETED.value:
        raise AppError.bad_request("User is already deleted")

    # soft delete：保留資料列
    u.soft_delete()
    db.commit()

    logger.info("User %s deleted by admin %s", u.id, admin.id)
    return success("User deleted")
