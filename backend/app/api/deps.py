from collections.abc import Callable, Generator

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.orm import Session

from app.core.exceptions import PermissionDeniedError
from app.core.security import decode_token
from app.db.session import SessionLocal
from app.models.user import User, UserRole
from app.services.operations import OperationCoordinator, SessionFactory, coordinator

security = HTTPBearer()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    """Session factory for work that outlives the request, such as bulk operation runners."""
    return SessionLocal


def get_coordinator() -> OperationCoordinator:
    return coordinator


def _unauthorized(detail: str = "Could not validate credentials") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    try:
        payload = decode_token(credentials.credentials)
    except JWTError as exc:
        raise _unauthorized() from exc
    user_id = payload.get("sub")
    if user_id is None:
        raise _unauthorized()

    user = db.get(User, user_id)
    if user is None:
        raise _unauthorized()
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")
    # A token issued before a role change must not keep the old role's reach.
    claimed_role = payload.get("role")
    if claimed_role is not None and claimed_role != user.role.value:
        raise _unauthorized("Token role no longer matches the account")
    return user


def require_roles(*roles: UserRole) -> Callable[[User], User]:
    """Dependency that admits only users holding one of ``roles``."""
    allowed_roles = frozenset(roles)
    required = sorted(role.value for role in allowed_roles)

    def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in allowed_roles:
            raise PermissionDeniedError(details={"required_roles": required, "role": current_user.role.value})
        return current_user

    return role_checker
