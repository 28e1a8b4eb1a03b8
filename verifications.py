"""
Seller verification requests and their admin review.

Transitions are explicit. ``pending`` may become ``approved`` or
``rejected``; re-review between those two only happens when
``allow_verification_re_review`` is enabled.
"""
import logging
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel

from auth import USERS
from database import Store, utcnow
from errors import Conflict, InvalidTransition, UserNotFound, VerificationNotFound
from schemas import IdType, SellerVerification, User, collection_name
from settings import Settings

logger = logging.getLogger(__name__)

VERIFICATIONS = collection_name(SellerVerification)

ACTIVE_STATUSES = ("pending", "approved")


def transitions(settings: Settings) -> Dict[str, Tuple[str, ...]]:
    table = {
        "pending": ("approved", "rejected"),
        "approved": (),
        "rejected": (),
    }
    if settings.allow_verification_re_review:
        table["approved"] = ("rejected",)
        table["rejected"] = ("approved",)
    return table


class VerificationBody(BaseModel):
    full_name: str
    address: str
    phone_number: str
    id_type: IdType
    id_number: str
    id_image: Optional[str] = None
    selfie_image: Optional[str] = None
    proof_of_ownership: Optional[str] = None


class StatusBody(BaseModel):
    status: Literal["approved", "rejected"]
    note: Optional[str] = None


class SellerVerifications:
    def __init__(self, store: Store, settings: Settings):
        self.store = store
        self.settings = settings

    def get(self, verification_id: str) -> SellerVerification:
        doc = self.store.get(VERIFICATIONS, verification_id)
        if not doc:
            raise VerificationNotFound()
        return SellerVerification.model_validate(doc)

    def submit(self, user: User, body: VerificationBody) -> SellerVerification:
        with self.store.lock(f"verification-user:{user.id}"):
            active = self.store.count(VERIFICATIONS, {"user_id": user.id, "status": list(ACTIVE_STATUSES)})
            if active:
                raise Conflict("You already have a pending or approved verification request")
            verification = SellerVerification(
                user_id=user.id,
                user_email=user.email,
                submitted_at=utcnow(),
                **body.model_dump(),
            )
            verification.id = self.store.create_document(VERIFICATIONS, verification)
            self.store.update(USERS, user.id, {
                "verification_status": "pending",
                "verification_id": verification.id,
            })
        logger.info(f"Verification {verification.id} submitted by {user.id}")
        return self.get(verification.id)

    def my_status(self, user_id: str) -> Optional[SellerVerification]:
        docs = self.store.get_documents(VERIFICATIONS, {"user_id": user_id}, sort=("created_at", -1), limit=1)
        return SellerVerification.model_validate(docs[0]) if docs else None

    def list_all(self, status: Optional[str] = None) -> List[SellerVerification]:
        filt = {"status": status} if status else None
        docs = self.store.get_documents(VERIFICATIONS, filt, sort=("created_at", -1))
        return [SellerVerification.model_validate(d) for d in docs]

    def update_status(self, verification_id: str, status: str, reviewer: User,
                      note: Optional[str] = None) -> SellerVerification:
        with self.store.lock(f"verification:{verification_id}"):
            current = self.get(verification_id)
            allowed = transitions(self.settings)[current.status]
            if status not in allowed:
                logger.warning(f"Rejected verification transition {current.status} -> {status} on {verification_id}")
                raise InvalidTransition(f"Verification cannot move from {current.status} to {status}")
            if not self.store.get(USERS, current.user_id):
                raise UserNotFound()

            patch = {
                "status": status,
                "reviewed_at": utcnow(),
                "reviewed_by": reviewer.id,
                "admin_notes": note,
            }
            if status == "rejected":
                patch["rejection_reason"] = note
            doc = self.store.update(VERIFICATIONS, verification_id, patch, expect={"status": current.status})
            if not doc:
                raise InvalidTransition("Verification changed while reviewing")
            self._apply_to_user(current.user_id, status)

        logger.info(f"Verification {verification_id} {status} by {reviewer.id}")
        return SellerVerification.model_validate(doc)

    def _apply_to_user(self, user_id: str, status: str) -> None:
        doc = self.store.get(USERS, user_id)
        if not doc:
            raise UserNotFound()
        user = User.model_validate(doc)
        if status == "approved":
            patch = {
                "role": "admin" if user.is_admin else "seller",
                "is_verified": True,
                "verification_status": "approved",
            }
        else:
            patch = {"verification_status": "rejected"}
            if user.role == "seller":
                patch["role"] = "user"
                patch["is_verified"] = False
        self.store.update(USERS, user_id, patch)
