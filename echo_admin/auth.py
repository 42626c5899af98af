import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import jwt, JWTError
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr
from sqlalchemy.orm import Session

from .config import settings
from .db import get_db
from . import models, menu, sessions

logger = logging.getLogger(__name__)

SECRET_KEY = settings.JWT_SECRET_KEY
if not SECRET_KEY:
    raise RuntimeError("JWT_SECRET_KEY is not set")

ALGORITHM = settings.JWT_ALGORITHM
ACCESS_TOKEN_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS
LOGIN_URL = "/auth/login"

pwd_context = CryptContext(schemes=["bcrypt_sha256"], deprecated="auto")


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    message: str
    token: str
    name: str
    role: str


@dataclass(frozen=True)
class SessionContext:
    """Who is calling, resolved once per request from the bearer token."""

    staff_id: int
    session_id: str
    email: str
    name: str
    role: str


def hash_password(password: str) -> str:
    """Hash password using bcrypt_sha256."""
    return pwd_context.hash(password)


def verify_password(password: str, stored_hash: str) -> bool:
    if not stored_hash:
        return False
    try:
        return pwd_context.verify(password, stored_hash)
    except ValueError:
        # не passlib-хэш
        return False


def authenticate(db: Session, email: str, password: str) -> Optional[models.StaffUser]:
    staff = (
        db.query(models.StaffUser)
        .filter(models.StaffUser.email == email.strip().lower())
        .first()
    )
    if not staff or not verify_password(password, staff.password_hash):
        return None
    return staff


def create_staff(db: Session, email: str, name: str, password: str, role: str = menu.ROLE_EDITOR) -> models.StaffUser:
    if role not in menu.ROLES:
        raise ValueError(f"Unknown role: {role}")
    staff = models.StaffUser(
        email=email.strip().lower(),
        name=name,
        role=role,
        password_hash=hash_password(password),
    )
    db.add(staff)
    db.commit()
    db.refresh(staff)
    return staff


def ensure_bootstrap_admin(db: Session) -> Optional[models.StaffUser]:
    """Create the first admin from BOOTSTRAP_ADMIN_* settings if it is missing."""
    email = settings.BOOTSTRAP_ADMIN_EMAIL
    password = settings.BOOTSTRAP_ADMIN_PASSWORD
    if not email or not password:
        return None
    existing = db.query(models.StaffUser).filter(models.StaffUser.email == email.lower()).first()
    if existing:
        return existing
    logger.info("Creating bootstrap admin %s", email)
    return create_staff(db, email, settings.BOOTSTRAP_ADMIN_NAME, password, role=menu.ROLE_ADMIN)


def create_jwt(staff: models.StaffUser, session_id: str) -> str:
    expire = datetime.now(timezone.utc) + timedelta(hours=ACCESS_TOKEN_EXPIRE_HOURS)
    payload = {
        "sub": str(staff.id),
        "sid": session_id,
        "name": staff.name,
        "role": staff.role,
        "exp": expire,
    }
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


security = HTTPBearer()


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer", "Location": LOGIN_URL},
    )


def get_current_session(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> SessionContext:
    """
    Decode JWT from Authorization: Bearer <token> and resolve the staff session.

    Every authenticated request counts as activity. A session idle longer than
    IDLE_TIMEOUT_MINUTES is signed out here and the caller gets 401.
    """
    token = credentials.credentials
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        staff_id = payload.get("sub")
        session_id = payload.get("sid")
        if staff_id is None or session_id is None:
            raise _unauthorized("Invalid token payload.")
    except JWTError:
        raise _unauthorized("Invalid or expired token.")

    session = db.get(models.StaffSession, session_id)
    if session is None or session.staff_id != int(staff_id):
        raise _unauthorized("Session not found.")
    if session.ended_at is not None:
        raise _unauthorized("Session has ended. Please sign in again.")

    timeout = timedelta(minutes=settings.IDLE_TIMEOUT_MINUTES)
    if not sessions.touch_session(db, session, timeout):
        raise _unauthorized("Session expired due to inactivity.")

    staff = session.staff
    return SessionContext(
        staff_id=staff.id,
        session_id=session.id,
        email=staff.email,
        name=staff.name,
        role=staff.role,
    )


def require_section(path: str):
    """Dependency factory: allow only roles that see the menu section at ``path``."""
    allowed = menu.roles_for(path)

    def dependency(ctx: SessionContext = Depends(get_current_session)) -> SessionContext:
        if ctx.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Your role has no access to this section.",
            )
        return ctx

    return dependency
