"""
Workshop staff accounts

The built-in admin user is hidden from the list and cannot be edited or
removed here. Only admins can hand out the Admin role.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import CurrentUser, require_permission
from ..models import Role, User
from ..schemas import UserCreate, UserResponse, UserUpdate
from ..services.audit import log_activity
from ..tenancy import DEFAULT_ADMIN_USERNAME, get_tenant_db, pwd_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/users", tags=["Users"])

ADMIN_ROLE_NAME = "admin"


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "role_id": user.role_id,
        "role_name": user.role_ref.name if user.role_ref else None,
    }


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def get_role_or_404(db: Session, role_id: int) -> Role:
    role = db.query(Role).filter(Role.id == role_id).first()
    if not role:
        raise HTTPException(status_code=404, detail="Role not found")
    return role


def is_admin_role(role: Role) -> bool:
    return bool(role) and role.name.lower() == ADMIN_ROLE_NAME


def ensure_can_manage(current_user: CurrentUser, role: Role, action: str) -> None:
    if is_admin_role(role) and not current_user.is_admin:
        raise HTTPException(status_code=403, detail=f"Only an admin can {action} admin users")


def ensure_username_free(db: Session, username: str, user_id: int = None) -> None:
    query = db.query(User).filter(User.username == username)
    if user_id is not None:
        query = query.filter(User.id != user_id)
    if query.first():
        raise HTTPException(status_code=409, detail="Username already exists")


@router.get("", response_model=list[UserResponse])
async def list_users(
    current_user: CurrentUser = Depends(require_permission("users")),
    db: Session = Depends(get_tenant_db),
):
    users = db.query(User).filter(User.username != DEFAULT_ADMIN_USERNAME).order_by(User.username.asc()).all()
    return [serialize_user(u) for u in users]


@router.post("", status_code=201, response_model=UserResponse)
async def create_user(
    data: UserCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("users")),
    db: Session = Depends(get_tenant_db),
):
    role = get_role_or_404(db, data.role_id)
    ensure_can_manage(current_user, role, "create")
    ensure_username_free(db, data.username)

    user = User(
        username=data.username,
        password=pwd_context.hash(data.password),
        first_name=data.first_name,
        last_name=data.last_name,
        role_id=role.id,
        role="admin" if is_admin_role(role) else "technician",
    )
    db.add(user)
    db.commit()
    db.refresh(user)

    logger.info(f"👤 User {user.username} created with role {role.name}")
    details = {"username": user.username, "role": role.name}
    log_activity(db, current_user, "CREATE_USER", "user", user.id, details, request)
    return serialize_user(user)


@router.put("/{user_id}", response_model=UserResponse)
async def update_user(
    user_id: int,
    data: UserUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("users")),
    db: Session = Depends(get_tenant_db),
):
    user = get_user_or_404(db, user_id)
    if user.username == DEFAULT_ADMIN_USERNAME and not current_user.is_superuser:
        raise HTTPException(status_code=403, detail="The main admin user cannot be edited")

    ensure_can_manage(current_user, user.role_ref, "edit")
    role = user.role_ref
    if data.role_id is not None:
        role = get_role_or_404(db, data.role_id)
        ensure_can_manage(current_user, role, "assign the role of")
        user.role_id = role.id
        user.role = "admin" if is_admin_role(role) else "technician"

    if data.username:
        ensure_username_free(db, data.username, user.id)
        user.username = data.username
    if data.first_name is not None:
        user.first_name = data.first_name
    if data.last_name is not None:
        user.last_name = data.last_name
    if data.password:
        user.password = pwd_context.hash(data.password)

    db.commit()
    db.refresh(user)

    changed = sorted(data.model_dump(exclude_none=True))
    log_activity(db, current_user, "UPDATE_USER", "user", user.id, {"fields": changed}, request)
    return serialize_user(user)


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("users")),
    db: Session = Depends(get_tenant_db),
):
    user = get_user_or_404(db, user_id)
    if user.username == DEFAULT_ADMIN_USERNAME:
        raise HTTPException(status_code=403, detail="The main admin user cannot be deleted")
    ensure_can_manage(current_user, user.role_ref, "delete")

    username = user.username
    db.delete(user)
    db.commit()

    log_activity(db, current_user, "DELETE_USER", "user", user_id, {"username": username}, request)
    return {"message": "User deleted"}
