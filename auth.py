import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, EmailStr

from database import Store, get_store
from errors import Conflict, Forbidden, Unauthenticated, ValidationError
from schemas import User, collection_name
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

USERS = collection_name(User)
security = HTTPBearer(auto_error=False)


class RegisterBody(BaseModel):
    name: str
    email: EmailStr
    password: str
    phone: Optional[str] = None
    address: Optional[str] = None


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class UserPublic(BaseModel):
    id: str
    name: str
    email: EmailStr
    role: str
    is_verified: bool
    verification_status: str
    phone: Optional[str] = None
    location: Optional[str] = None
    created_at: Optional[datetime] = None


def public_user(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        is_verified=user.is_verified,
        verification_status=user.verification_status,
        phone=user.phone,
        location=user.location,
        created_at=user.created_at,
    )


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode()).hexdigest()


def create_token(payload: dict, settings: Settings) -> str:
    exp = datetime.now(timezone.utc) + timedelta(days=settings.token_ttl_days)
    to_encode = {**payload, "exp": exp}
    return jwt.encode(to_encode, settings.jwt_secret, algorithm=settings.jwt_algo)


def decode_token(token: str, settings: Settings) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algo])
    except jwt.ExpiredSignatureError:
        raise Unauthenticated("Token expired")
    except jwt.InvalidTokenError:
        raise Unauthenticated("Invalid token")


def find_user(store: Store, user_id: str) -> Optional[User]:
    doc = store.get(USERS, user_id)
    return User.model_validate(doc) if doc else None


def register_user(store: Store, body: RegisterBody, role: str = "user") -> User:
    if len(body.password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    email = str(body.email).lower()
    with store.lock(f"user-email:{email}"):
        if store.count(USERS, {"email": email}):
            raise Conflict("Email already registered")
        user = User(
            name=body.name,
            email=email,
            password_hash=hash_password(body.password),
            role=role,
            is_verified=role == "admin",
            phone=body.phone,
            address=body.address,
        )
        user_id = store.create_document(USERS, user)
    logger.info(f"Registered {role} {user_id}")
    return find_user(store, user_id)


def authenticate(store: Store, body: LoginBody) -> User:
    docs = store.get_documents(USERS, {"email": str(body.email).lower()}, limit=1)
    if not docs or docs[0].get("password_hash") != hash_password(body.password):
        raise Unauthenticated("Invalid credentials")
    return User.model_validate(docs[0])


def issue_token(user: User, settings: Settings) -> dict:
    token = create_token({"id": user.id, "email": user.email}, settings)
    return {"token": token, "user": public_user(user)}


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    store: Store = Depends(get_store),
    settings: Settings = Depends(get_settings),
) -> User:
    if credentials is None:
        raise Unauthenticated()
    payload = decode_token(credentials.credentials, settings)
    user_id = payload.get("id")
    if not user_id:
        raise Unauthenticated("Invalid token payload")
    user = find_user(store, user_id)
    if not user:
        raise Unauthenticated("User not found")
    return user


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise Forbidden("Admin only")
    return user
