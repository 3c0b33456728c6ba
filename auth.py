import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel, EmailStr, Field

import config
import database
from schemas import Role, User as UserSchema

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

router = APIRouter()


# --------------------- Utility ---------------------

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash)


def create_token(user_id: str, expires_minutes: int = config.JWT_EXPIRE_MINUTES) -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode({"sub": user_id, "exp": expire}, config.JWT_SECRET, algorithm=config.JWT_ALG)


class AuthUser(BaseModel):
    id: str
    email: EmailStr
    display_name: str
    role: Role = "customer"


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1]


def _load_user(token: str) -> Optional[AuthUser]:
    # Role comes from the stored user document, never from the token.
    try:
        payload = jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALG])
    except JWTError:
        return None
    user_id = payload.get("sub")
    if not user_id:
        return None
    doc = database.get_document("users", user_id)
    if not doc:
        return None
    return AuthUser(
        id=doc["id"],
        email=doc["email"],
        display_name=doc.get("display_name") or "",
        role=doc.get("role") or "customer",
    )


def get_current_user(authorization: Optional[str] = Header(None)) -> AuthUser:
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing Authorization header")
    token = _bearer_token(authorization)
    if token is None:
        raise HTTPException(status_code=401, detail="Invalid Authorization header")
    user = _load_user(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user


def get_optional_user(authorization: Optional[str] = Header(None)) -> Optional[AuthUser]:
    token = _bearer_token(authorization)
    if token is None:
        return None
    return _load_user(token)


def require_admin(user: AuthUser = Depends(get_current_user)) -> AuthUser:
    if user.role != "admin":
        raise HTTPException(status_code=403, detail="Admin only")
    return user


def public_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "display_name": user.get("display_name") or "",
        "role": user.get("role") or "customer",
    }


# --------------------- Models ---------------------

class RegisterRequest(BaseModel):
    display_name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(min_length=6)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RoleUpdate(BaseModel):
    role: Role


# --------------------- Routes ---------------------

@router.post("/api/auth/register")
def register(req: RegisterRequest):
    email = req.email.lower()
    if database.get_db()["users"].find_one({"email": email}):
        raise HTTPException(status_code=400, detail="Email already registered")
    role = "admin" if email in config.ADMIN_EMAILS else "customer"
    user_doc = UserSchema(
        email=email,
        display_name=req.display_name,
        password_hash=hash_password(req.password),
        role=role,
    )
    user_id = database.create_document("users", user_doc)
    logger.info("Registered user %s with role %s", user_id, role)
    user = {"id": user_id, "email": email, "display_name": req.display_name, "role": role}
    return {"token": create_token(user_id), "user": user}


@router.post("/api/auth/login")
def login(req: LoginRequest):
    user = database.to_dict(database.get_db()["users"].find_one({"email": req.email.lower()}))
    if not user or not verify_password(req.password, user.get("password_hash", "")):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    return {"token": create_token(user["id"]), "user": public_user(user)}


@router.get("/api/auth/me")
def me(user: AuthUser = Depends(get_current_user)):
    return user


@router.patch("/api/admin/users/{user_id}/role")
def set_user_role(user_id: str, body: RoleUpdate, admin: AuthUser = Depends(require_admin)):
    if not database.update_document("users", user_id, {"role": body.role}):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s set role of %s to %s", admin.id, user_id, body.role)
    return {"id": user_id, "role": body.role}
