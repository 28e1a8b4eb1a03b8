"""
Admin settlement of paid orders.

Verifying an order releases the seller's share (``total - commission``) and
books the platform commission as a ``PlatformEarning``. No funds are moved;
``seller_amount`` is reported for display.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from database import Store, utcnow
from errors import InvalidTransition
from orders import ORDERS, OrderBuilder
from schemas import Order, PlatformEarning, ShippingStatus, User, collection_name

logger = logging.getLogger(__name__)

EARNINGS = collection_name(PlatformEarning)

SHIPPING_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "pending": ("processing",),
    "processing": ("shipped",),
    "shipped": ("delivered",),
    "delivered": (),
}


class VerifyBody(BaseModel):
    admin_notes: Optional[str] = None
    tracking_number: Optional[str] = None


class ShippingBody(BaseModel):
    status: ShippingStatus
    tracking_number: Optional[str] = None


class Settlement(BaseModel):
    order: Order
    commission: float
    seller_amount: float


def settlement_for(order: Order) -> Settlement:
    seller_amount = Decimal(str(order.total)) - Decimal(str(order.commission))
    return Settlement(order=order, commission=order.commission, seller_amount=float(seller_amount))


class SettlementAuthority:
    def __init__(self, store: Store, orders: OrderBuilder):
        self.store = store
        self.orders = orders

    def pending_verification(self) -> List[Order]:
        docs = self.store.get_documents(ORDERS, {"status": "awaiting_verification"}, sort=("created_at", 1))
        return [Order.model_validate(d) for d in docs]

    def verify_transaction(self, order_id: str, admin: User, admin_notes: Optional[str] = None,
                           tracking_number: Optional[str] = None) -> Settlement:
        with self.store.lock(f"order:{order_id}"):
            order = self.orders.get_order(order_id)
            if order.status != "awaiting_verification":
                raise InvalidTransition(f"Order is not pending verification (status {order.status})")
            now = utcnow()
            doc = self.store.update(ORDERS, order_id, {
                "status": "completed",
                "admin_notes": admin_notes,
                "tracking_number": tracking_number,
                "verified_at": now,
                "verified_by": admin.id,
                "completed_at": now,
            }, expect={"status": "awaiting_verification"})
            if not doc:
                raise InvalidTransition("Order changed while verifying")
            order = Order.model_validate(doc)
            self.store.create_document(EARNINGS, PlatformEarning(
                order_id=order_id,
                transaction_fee=order.commission,
                total_earnings=order.commission,
            ))
        settlement = settlement_for(order)
        logger.info(f"Order {order_id} verified by {admin.id}; seller amount {settlement.seller_amount}")
        return settlement

    def update_shipping_status(self, order_id: str, status: str,
                               tracking_number: Optional[str] = None) -> Order:
        with self.store.lock(f"order:{order_id}"):
            order = self.orders.get_order(order_id)
            if order.status != "completed":
                raise InvalidTransition("Only verified orders can be shipped")
            if status not in SHIPPING_TRANSITIONS[order.shipping_status]:
                raise InvalidTransition(f"Cannot move shipping from {order.shipping_status} to {status}")
            patch = {"shipping_status": status}
            if tracking_number:
                patch["tracking_number"] = tracking_number
            doc = self.store.update(ORDERS, order_id, patch, expect={"shipping_status": order.shipping_status})
            if not doc:
                raise InvalidTransition("Order changed while updating shipping")
        return Order.model_validate(doc)

    def earnings_summary(self) -> dict:
        earnings = [PlatformEarning.model_validate(d) for d in self.store.get_documents(EARNINGS)]
        total = sum((Decimal(str(e.total_earnings)) for e in earnings), Decimal("0"))
        return {"settled_orders": len(earnings), "platform_earnings": float(total)}
