import pytest

from auth import find_user
from errors import Conflict, InvalidTransition, VerificationNotFound
from settings import Settings
from verifications import SellerVerifications, VerificationBody


def body(**overrides) -> VerificationBody:
    data = {
        "full_name": "Juan Dela Cruz",
        "address": "123 Rizal St, Manila",
        "phone_number": "09171234567",
        "id_type": "National ID",
        "id_number": "1234-5678-9012",
        "id_image": "data:image/png;base64,AAAA",
        "selfie_image": "data:image/png;base64,BBBB",
    }
    data.update(overrides)
    return VerificationBody(**data)


def test_submission_starts_pending(verifications, store, buyer):
    verification = verifications.submit(buyer, body())

    assert verification.status == "pending"
    assert verification.user_id == buyer.id
    assert verification.submitted_at is not None
    user = find_user(store, buyer.id)
    assert user.verification_status == "pending"
    assert user.verification_id == verification.id


def test_duplicate_pending_submission_rejected(verifications, buyer):
    verifications.submit(buyer, body())
    with pytest.raises(Conflict):
        verifications.submit(buyer, body())


def test_approval_promotes_user_to_seller(verifications, store, buyer, admin):
    verification = verifications.submit(buyer, body())

    approved = verifications.update_status(verification.id, "approved", admin, "Documents look good")

    assert approved.status == "approved"
    assert approved.reviewed_by == admin.id
    assert approved.reviewed_at is not None
    user = find_user(store, buyer.id)
    assert user.role == "seller"
    assert user.is_verified is True
    assert user.verification_status == "approved"


def test_rejection_stores_reason_and_allows_resubmission(verifications, store, buyer, admin):
    verification = verifications.submit(buyer, body())

    rejected = verifications.update_status(verification.id, "rejected", admin, "Blurry selfie")

    assert rejected.rejection_reason == "Blurry selfie"
    user = find_user(store, buyer.id)
    assert user.role == "user"
    assert user.verification_status == "rejected"

    again = verifications.submit(buyer, body(selfie_image="data:image/png;base64,CCCC"))
    assert again.status == "pending"
    assert verifications.my_status(buyer.id).id == again.id


def test_decisions_are_final_by_default(verifications, buyer, admin):
    verification = verifications.submit(buyer, body())
    verifications.update_status(verification.id, "approved", admin)

    with pytest.raises(InvalidTransition):
        verifications.update_status(verification.id, "rejected", admin)
    with pytest.raises(InvalidTransition):
        verifications.update_status(verification.id, "approved", admin)


def test_re_review_when_enabled_revokes_seller_role(store, buyer, admin):
    verifications = SellerVerifications(store, Settings(allow_verification_re_review=True))
    verification = verifications.submit(buyer, body())
    verifications.update_status(verification.id, "approved", admin)

    verifications.update_status(verification.id, "rejected", admin, "Fake ID reported")

    user = find_user(store, buyer.id)
    assert user.role == "user"
    assert user.is_verified is False


def test_admin_keeps_admin_role_on_approval(verifications, store, admin):
    verification = verifications.submit(admin, body())
    verifications.update_status(verification.id, "approved", admin)
    assert find_user(store, admin.id).role == "admin"


def test_my_status_none_without_requests(verifications, buyer):
    assert verifications.my_status(buyer.id) is None


def test_list_all_filters_by_status(verifications, buyer, new_user, admin):
    first = verifications.submit(buyer, body())
    verifications.submit(new_user("second@example.com"), body(full_name="Maria Clara"))
    verifications.update_status(first.id, "rejected", admin, "Expired ID")

    assert len(verifications.list_all()) == 2
    assert [v.id for v in verifications.list_all("rejected")] == [first.id]


def test_update_missing_verification(verifications, admin):
    with pytest.raises(VerificationNotFound):
        verifications.update_status("000000000000000000000000", "approved", admin)


def test_my_status_returns_latest_request(verifications, buyer, admin):
    first = verifications.submit(buyer, body())
    verifications.update_status(first.id, "rejected", admin, "Blurry selfie")
    second = verifications.submit(buyer, body(selfie_image="data:image/png;base64,CCCC"))

    latest = verifications.my_status(buyer.id)
    assert latest.id == second.id
    assert latest.status == "pending"
    assert latest.created_at >= first.created_at
