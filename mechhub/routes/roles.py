import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ..auth import CurrentUser, get_current_user, require_permission
from ..models import Role, User
from ..schemas import RoleCreate, RoleResponse, RoleUpdate
from ..services.audit import log_activity
from ..tenancy import get_tenant_db
from .users import get_role_or_404, is_admin_role

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/{slug}/roles", tags=["Roles"])


def ensure_name_free(db: Session, name: str, role_id: int = None) -> None:
    query = db.query(Role).filter(Role.name == name)
    if role_id is not None:
        query = query.filter(Role.id != role_id)
    if query.first():
        raise HTTPException(status_code=409, detail="A role with this name already exists")


@router.get("", response_model=list[RoleResponse])
async def list_roles(
    current_user: CurrentUser = Depends(get_current_user),
    db: Session = Depends(get_tenant_db),
):
    return db.query(Role).order_by(Role.id.asc()).all()


@router.post("", status_code=201, response_model=RoleResponse)
async def create_role(
    data: RoleCreate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("roles")),
    db: Session = Depends(get_tenant_db),
):
    ensure_name_free(db, data.name)
    role = Role(name=data.name, permissions=data.permissions)
    db.add(role)
    db.commit()
    db.refresh(role)

    log_activity(db, current_user, "CREATE_ROLE", "role", role.id, {"name": role.name}, request)
    return role


@router.put("/{role_id}", response_model=RoleResponse)
async def update_role(
    role_id: int,
    data: RoleUpdate,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("roles")),
    db: Session = Depends(get_tenant_db),
):
    """Rename a role or replace its permission list. Users pick the change up on their next login."""
    role = get_role_or_404(db, role_id)
    if is_admin_role(role):
        raise HTTPException(status_code=403, detail="The Admin role is built in and cannot be edited")

    if data.name:
        ensure_name_free(db, data.name, role.id)
        role.name = data.name
    if data.permissions is not None:
        role.permissions = data.permissions
    db.commit()
    db.refresh(role)

    log_activity(db, current_user, "UPDATE_ROLE", "role", role.id, data.model_dump(exclude_none=True), request)
    return role


@router.delete("/{role_id}")
async def delete_role(
    role_id: int,
    request: Request,
    current_user: CurrentUser = Depends(require_permission("roles")),
    db: Session = Depends(get_tenant_db),
):
    role = get_role_or_404(db, role_id)
    if is_admin_role(role):
        raise HTTPException(status_code=403, detail="The Admin role cannot be deleted")
    if db.query(User).filter(User.role_id == role.id).count() > 0:
        raise HTTPException(status_code=400, detail="Role is assigned to users")

    name = role.name
    db.delete(role)
    db.commit()

    log_activity(db, current_user, "DELETE_ROLE", "role", role_id, {"name": name}, request)
    return {"message": "Role deleted"}
