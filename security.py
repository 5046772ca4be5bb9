"""
Identity gate.

Resolves a request to a ``Principal`` (user id + role). Components below this
layer never see passwords or tokens, only the principal.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from fastapi import Depends, Header, Request
from jose import ExpiredSignatureError, JWTError, jwt
from pymongo.database import Database

from config import settings
from database import USERS
from errors import Forbidden, Unauthorized
from schemas import Role

logger = logging.getLogger("marketplace.security")


@dataclass(frozen=True)
class Principal:
    id: str
    role: Role

    @property
    def is_student(self) -> bool:
        return self.role is Role.STUDENT

    @property
    def is_mentor(self) -> bool:
        return self.role is Role.MENTOR


def require_role(principal: Principal, role: Role) -> None:
    """Entry check for role-restricted operations."""
    if principal.role is not role:
        if role is Role.MENTOR:
            raise Forbidden("Only mentors can perform this action")
        raise Forbidden("Only students can perform this action")


# ---------- Passwords ----------

def hash_password(password: str) -> str:
    # Bcrypt has a 72 byte limit
    password_bytes = password.encode("utf-8")[:72]
    return bcrypt.hashpw(password_bytes, bcrypt.gensalt(rounds=settings.BCRYPT_ROUNDS)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8")[:72], hashed_password.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


# ---------- Tokens ----------

def create_access_token(principal: Principal, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=settings.ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode = {
        "sub": principal.id,
        "role": principal.role.value,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify(token: str) -> Principal:
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except ExpiredSignatureError:
        raise Unauthorized("Token has expired")
    except JWTError:
        raise Unauthorized("Invalid token")

    if payload.get("type") != "access" or not payload.get("sub"):
        raise Unauthorized("Invalid token")
    try:
        role = Role(payload.get("role"))
    except ValueError:
        raise Unauthorized("Invalid token")
    return Principal(id=str(payload["sub"]), role=role)


def authenticate(db: Database, email: str, password: str, role: Role) -> Principal:
    user = db[USERS].find_one({"email": email.strip().lower()})
    if not user or not verify_password(password, user.get("passwordHash", "")):
        raise Unauthorized("Invalid email or password")
    if user.get("role") != role.value:
        raise Forbidden("Invalid role selected")
    return Principal(id=str(user["_id"]), role=Role(user["role"]))


# ---------- FastAPI dependencies ----------

def _extract_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization:
        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise Unauthorized("Invalid authorization header format. Expected: Bearer <token>")
        return parts[1]
    return request.cookies.get(settings.AUTH_COOKIE_NAME)


def get_current_principal(
    request: Request,
    authorization: Optional[str] = Header(default=None),
) -> Principal:
    token = _extract_token(request, authorization)
    if not token:
        raise Unauthorized("Please login first")
    return verify(token)


def require_student(principal: Principal = Depends(get_current_principal)) -> Principal:
    require_role(principal, Role.STUDENT)
    return principal


def require_mentor(principal: Principal = Depends(get_current_principal)) -> Principal:
    require_role(principal, Role.MENTOR)
    return principal
