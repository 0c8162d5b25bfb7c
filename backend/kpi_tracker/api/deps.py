from typing import Callable, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from kpi_tracker.core.security import decode_access_token_subject
from kpi_tracker.database import get_db
from kpi_tracker.models import ROLE_HIERARCHY, RoleName, User

# Tokens are minted by the identity provider; the API only verifies them.
bearer_optional = HTTPBearer(auto_error=False)

_DB_DEP = Depends(get_db)
_CREDENTIALS_OPT_DEP = Depends(bearer_optional)


def _extract_bearer_from_headers(request: Request) -> Optional[str]:
    # Some proxies strip the standard Authorization header.
    raw = request.headers.get("authorization") or request.headers.get("x-authorization")
    if not raw:
        return None
    s = str(raw).strip()
    if not s:
        return None
    if s.lower().startswith("bearer "):
        return s.split(" ", 1)[1].strip()
    return s


def get_current_user(
    request: Request,
    db: Session = _DB_DEP,
    credentials: Optional[HTTPAuthorizationCredentials] = _CREDENTIALS_OPT_DEP,
) -> User:
    token = credentials.credentials if credentials else None
    if not token:
        token = _extract_bearer_from_headers(request)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required.")

    subject = decode_access_token_subject(token)
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    user = (
        db.query(User)
        .filter(User.email == subject.strip().lower(), User.active.is_(True))
        .first()
    )
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Company profile not found.",
        )
    return user


def _role_rank(role: object) -> int:
    if isinstance(role, RoleName):
        return ROLE_HIERARCHY[role]
    try:
        return ROLE_HIERARCHY[RoleName(str(role))]
    except ValueError:
        return 0


def has_role(user_role: object, minimum: RoleName) -> bool:
    """True when ``user_role`` ranks at or above ``minimum`` (owner > manager > member)."""

    return _role_rank(user_role) >= ROLE_HIERARCHY[minimum]


def require_role(minimum: RoleName) -> Callable:
    _CURRENT_USER_DEP = Depends(get_current_user)

    def dependency(user: User = _CURRENT_USER_DEP) -> User:
        user_role = getattr(getattr(user, "role", None), "name", None)
        if not has_role(user_role, minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions."
            )
        return user

    return dependency
