from fastapi import HTTPException, Depends
from starlette import status

from eventgate.core.security import get_current_user
from eventgate.models.user import User
from eventgate.schemas.user import RoleEnum

ADMIN_ROLES = (RoleEnum.admin, RoleEnum.superuser)


def is_admin(user: User) -> bool:
    return user.role in ADMIN_ROLES


# Dependency to check if the user may operate a scanner station
def get_admin_user(current_user: User = Depends(get_current_user)) -> User:
    if not is_admin(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not authorized: Admin access required"
        )
    return current_user


def require_self_or_admin(current_user: User, user_id: str) -> User:
    if current_user.id != user_id and not is_admin(current_user):
        raise HTTPException(status_code=403, detail="You can only access your own tickets.")
    return current_user
