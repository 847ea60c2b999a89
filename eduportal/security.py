import logging
from datetime import datetime, timedelta

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from eduportal.config import settings
from eduportal.database import get_db
from eduportal.errors import Forbidden, PendingApproval, Unauthorized
from eduportal.models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(
    schemes=["bcrypt"],
    deprecated="auto",
    bcrypt__rounds=settings.BCRYPT_ROUNDS,
)
bearer_scheme = HTTPBearer(auto_error=False)


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(user: User, expires_delta: timedelta = None) -> str:
    if expires_delta is None:
        expires_delta = timedelta(days=settings.TOKEN_EXPIRE_DAYS)
    payload = {
        "sub": str(user.id),
        "role": user.role,
        "exp": datetime.utcnow() + expires_delta,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_admin_token(user: User) -> str:
    return create_access_token(user, timedelta(hours=settings.ADMIN_TOKEN_EXPIRE_HOURS))


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise Unauthorized("Token is not valid") from exc


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> User:
    if credentials is None or not credentials.credentials:
        raise Unauthorized("No token, authorization denied")

    payload = decode_token(credentials.credentials)
    try:
        user_id = int(payload.get("sub"))
    except (TypeError, ValueError) as exc:
        raise Unauthorized("Token is not valid") from exc

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise Unauthorized("Token is not valid")
    return user


def require_roles(*roles):
    """Guard dependency: the authenticated user must hold one of ``roles``."""

    def guard(user: User = Depends(get_current_user)) -> User:
        if user.role not in roles:
            logger.debug("Role %s rejected, expected one of %s", user.role, roles)
            raise Forbidden(f"Access denied. Requires role: {', '.join(roles)}")
        return user

    return guard


def require_approved_teacher(user: User = Depends(require_roles("teacher"))) -> User:
    if not user.is_approved:
        raise PendingApproval("Your teacher account is pending admin approval")
    return user


require_student = require_roles("student")
require_parent = require_roles("parent")
require_admin = require_roles("admin")
require_teacher = require_roles("teacher")
