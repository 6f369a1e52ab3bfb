"""
Bearer token verification

Tokens are issued by the dashboard login service; this API only verifies them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from jose import jwt as jose_jwt

from .config import JWT_ALGORITHM, SECRET_KEY

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

SUPERADMIN_ROLE = "superadmin"


@dataclass
class CurrentUser:
    id: Optional[int]
    username: str
    role: str
    slug: Optional[str] = None
    permissions: list[str] = field(default_factory=list)
    is_superuser: bool = False

    @property
    def db_user_id(self) -> Optional[int]:
        """User id usable as a tenant foreign key (superusers have no tenant row)"""
        return None if self.is_superuser else self.id

    @property
    def is_admin(self) -> bool:
        return self.is_superuser or self.role == "admin"


def create_access_token(data: dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token with the shared secret (used by the login service and tests)"""
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(hours=12))
    to_encode.update({"exp": expire})
    if "sub" in to_encode:
        to_encode["sub"] = str(to_encode["sub"])
    return jose_jwt.encode(to_encode, SECRET_KEY, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        return jose_jwt.decode(token, SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"❌ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Invalid or expired token") from e


def _user_from_payload(payload: dict[str, Any]) -> CurrentUser:
    sub = payload.get("sub")
    try:
        user_id = int(sub) if sub is not None else None
    except (TypeError, ValueError):
        user_id = None

    role = payload.get("role") or ""
    return CurrentUser(
        id=user_id,
        username=payload.get("username") or "",
        role=role,
        slug=payload.get("slug"),
        permissions=list(payload.get("permissions") or []),
        is_superuser=bool(payload.get("is_superuser")) or role == SUPERADMIN_ROLE,
    )


def _require_credentials(credentials: Optional[HTTPAuthorizationCredentials]) -> dict[str, Any]:
    if not credentials or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return decode_access_token(credentials.credentials)


def get_current_user(
    slug: str,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Verify the bearer token and that it belongs to the workshop in the path"""
    user = _user_from_payload(_require_credentials(credentials))

    if not user.is_superuser and user.slug != slug:
        logger.warning(f"⚠️ Token for '{user.slug}' used on workshop '{slug}'")
        raise HTTPException(status_code=403, detail="Token does not belong to this workshop")
    return user


def require_permission(permission: str):
    """Dependency factory: admins and superusers bypass, others need the permission listed"""

    def checker(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.is_admin:
            return user
        if permission not in user.permissions:
            raise HTTPException(status_code=403, detail=f"Missing permission: {permission}")
        return user

    return checker


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user


def get_super_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    user = _user_from_payload(_require_credentials(credentials))
    if user.role != SUPERADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Super admin access required")
    return user
