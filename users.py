"""
Back-office user directory: admin listing and removal, public profiles and
profile edits.
"""
import logging
from typing import List, Optional

from pydantic import BaseModel

from auth import USERS, UserPublic, find_user, public_user
from cart import CART
from catalog import Catalog, ProductFilter
from database import Store
from errors import Forbidden, UserNotFound, ValidationError
from schemas import Product, Role, User

logger = logging.getLogger(__name__)


class UserUpdateBody(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None
    # honoured for admins only
    role: Optional[Role] = None


class UserDirectory:
    def __init__(self, store: Store, catalog: Catalog):
        self.store = store
        self.catalog = catalog

    def get(self, user_id: str) -> User:
        user = find_user(self.store, user_id)
        if not user:
            raise UserNotFound()
        return user

    def list_users(self, role: Optional[str] = None) -> List[UserPublic]:
        filt = {"role": role} if role else None
        docs = self.store.get_documents(USERS, filt, sort=("created_at", -1))
        return [public_user(User.model_validate(d)) for d in docs]

    def profile(self, user_id: str) -> UserPublic:
        return public_user(self.get(user_id))

    def listings(self, user_id: str) -> List[Product]:
        self.get(user_id)
        return self.catalog.list(ProductFilter(seller_id=user_id, limit=None))

    def update_profile(self, user_id: str, body: UserUpdateBody, actor: User) -> UserPublic:
        if actor.id != user_id and not actor.is_admin:
            raise Forbidden()
        patch = body.model_dump(exclude_none=True, exclude={"role"})
        if body.role and actor.is_admin:
            patch["role"] = body.role
        if "name" in patch and not patch["name"].strip():
            raise ValidationError("Name cannot be empty")
        with self.store.lock(f"user:{user_id}"):
            self.get(user_id)
            doc = self.store.update(USERS, user_id, patch) if patch else self.store.get(USERS, user_id)
        logger.info(f"User {user_id} updated by {actor.id}: {sorted(patch)}")
        return public_user(User.model_validate(doc))

    def delete_user(self, user_id: str, admin: User) -> None:
        if user_id == admin.id:
            raise ValidationError("Cannot delete your own account")
        self.get(user_id)
        self.store.delete(USERS, user_id)
        self.store.delete_many(CART, {"buyer_id": user_id})
        logger.info(f"User {user_id} deleted by {admin.id}")
