import pytest

from errors import Forbidden, InvalidTransition, OrderNotFound
from orders import PAYMENTS
from payments import PaymentRecorder, SimulatedGateway


@pytest.fixture
def order(orders, cart, buyer, make_product):
    product = make_product(price=999, stock=5)
    cart.add_item(buyer.id, product.id, 2)
    return orders.create_order(buyer, "123 Rizal St, Manila", "gcash")


def test_successful_payment_moves_order_to_verification(payments, orders, order):
    payment = payments.process_payment(order.id, reference="GCASH-123")

    assert payment.status == "completed"
    assert payment.amount == order.total
    assert payment.method == "gcash"
    assert payment.reference == "GCASH-123"
    assert payment.processed_at is not None

    reloaded = orders.get_order(order.id)
    assert reloaded.status == "awaiting_verification"
    assert reloaded.payment_status == "completed"
    assert reloaded.payment_id == payment.id


def test_reference_generated_when_missing(payments, order):
    payment = payments.process_payment(order.id)
    assert payment.reference.startswith("REF-")


def test_missing_order_creates_no_payment(payments, store):
    with pytest.raises(OrderNotFound):
        payments.process_payment("000000000000000000000000", "gcash", "REF-1")
    assert store.count(PAYMENTS) == 0


def test_idempotency_key_replays_same_payment(payments, store, order):
    first = payments.process_payment(order.id, idempotency_key="key-1")
    second = payments.process_payment(order.id, idempotency_key="key-1")

    assert first.id == second.id
    assert store.count(PAYMENTS) == 1


def test_second_payment_without_key_is_rejected(payments, order):
    payments.process_payment(order.id)
    with pytest.raises(InvalidTransition):
        payments.process_payment(order.id)


def test_only_buyer_can_pay(payments, order, new_user):
    with pytest.raises(Forbidden):
        payments.process_payment(order.id, payer=new_user("stranger@example.com"))


def test_declined_payment_cancels_order_and_restocks(store, orders, catalog, order):
    recorder = PaymentRecorder(store, orders, SimulatedGateway(frozenset({"gcash"})))

    payment = recorder.process_payment(order.id)

    assert payment.status == "failed"
    assert "declined" in payment.failure_reason
    reloaded = orders.get_order(order.id)
    assert reloaded.status == "cancelled"
    assert reloaded.payment_status == "failed"
    assert catalog.get(order.items[0].product_id).stock == 5


def test_cancelling_paid_order_refunds_payment(payments, orders, buyer, order):
    payment = payments.process_payment(order.id)

    cancelled = orders.cancel_order(order.id, buyer)

    assert cancelled.payment_status == "refunded"
    assert payments.list_payments(order.id)[0].status == "refunded"
    assert payments.list_payments(order.id)[0].id == payment.id
