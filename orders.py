"""
Order builder: turns a buyer's cart into a frozen order record.

Monetary fields (subtotal, shipping fee, commission, total) are computed
once here and never recomputed afterwards.
"""
import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Tuple

from pydantic import BaseModel

from cart import Cart, line_total
from catalog import Catalog
from database import Store, utcnow
from errors import EmptyCart, Forbidden, InvalidTransition, OrderNotFound, ValidationError
from schemas import BuyerContact, Order, OrderItem, Payment, PaymentMethod, User, collection_name
from settings import Settings

logger = logging.getLogger(__name__)

ORDERS = collection_name(Order)
PAYMENTS = collection_name(Payment)

CANCELLABLE = ("pending", "awaiting_verification")


class CheckoutBody(BaseModel):
    shipping_address: str
    payment_method: PaymentMethod


class CancelBody(BaseModel):
    reason: Optional[str] = None


def money(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def shipping_fee_for(subtotal: Decimal, settings: Settings) -> Decimal:
    if subtotal >= settings.free_shipping_threshold:
        return Decimal("0")
    return settings.flat_shipping_fee


def commission_for(subtotal: Decimal, settings: Settings) -> Decimal:
    return (subtotal * settings.commission_rate).quantize(settings.currency_quantum, rounding=ROUND_HALF_UP)


def price_order(subtotal: Decimal, settings: Settings,
                shipping_fee: Optional[Decimal] = None) -> Tuple[Decimal, Decimal, Decimal]:
    """Return (shipping_fee, commission, total) for a subtotal."""
    if shipping_fee is None:
        shipping_fee = shipping_fee_for(subtotal, settings)
    shipping_fee = money(shipping_fee)
    if shipping_fee < 0:
        raise ValidationError("Shipping fee cannot be negative")
    return shipping_fee, commission_for(subtotal, settings), subtotal + shipping_fee


class OrderBuilder:
    def __init__(self, store: Store, cart: Cart, catalog: Catalog, settings: Settings):
        self.store = store
        self.cart = cart
        self.catalog = catalog
        self.settings = settings

    def _reserve_stock(self, items: List[OrderItem]) -> None:
        reserved = []
        try:
            for item in items:
                self.catalog.reserve(item.product_id, item.quantity)
                reserved.append(item)
        except Exception:
            for item in reserved:
                self.catalog.release(item.product_id, item.quantity)
            raise

    def create_order(self, buyer: User, shipping_address: str, payment_method: str,
                     shipping_fee: Optional[Decimal] = None) -> Order:
        if not shipping_address or not shipping_address.strip():
            raise ValidationError("Shipping address is required")

        with self.store.lock(f"cart:{buyer.id}"):
            lines = self.cart.get_lines(buyer.id)
            if not lines:
                raise EmptyCart()

            subtotal = sum((line_total(line) for line in lines), Decimal("0"))
            fee, commission, total = price_order(subtotal, self.settings, shipping_fee)
            items = [
                OrderItem(
                    product_id=line.product_id,
                    name=line.name,
                    price=line.price,
                    quantity=line.quantity,
                    image=line.image,
                )
                for line in lines
            ]

            self._reserve_stock(items)
            order = Order(
                buyer_id=buyer.id,
                buyer=BuyerContact(id=buyer.id, name=buyer.name, email=buyer.email, phone=buyer.phone),
                items=items,
                shipping_address=shipping_address.strip(),
                payment_method=payment_method,
                subtotal=float(subtotal),
                shipping_fee=float(fee),
                commission=float(commission),
                total=float(total),
                estimated_delivery=utcnow() + timedelta(days=self.settings.delivery_days),
            )
            try:
                order.id = self.store.create_document(ORDERS, order)
            except Exception:
                for item in items:
                    self.catalog.release(item.product_id, item.quantity)
                raise
            logger.info(f"Order {order.id} created for {buyer.id}: total={order.total} commission={order.commission}")

            try:
                self.cart.clear(buyer.id)
            except Exception as e:
                logger.error(f"Order {order.id} placed but cart for {buyer.id} was not cleared: {e}")

        return self.get_order(order.id)

    def get_order(self, order_id: str) -> Order:
        doc = self.store.get(ORDERS, order_id)
        if not doc:
            raise OrderNotFound()
        return Order.model_validate(doc)

    def get_order_for(self, order_id: str, user: User) -> Order:
        order = self.get_order(order_id)
        if order.buyer_id != user.id and not user.is_admin:
            raise Forbidden()
        return order

    def list_orders(self, buyer_id: str) -> List[Order]:
        docs = self.store.get_documents(ORDERS, {"buyer_id": buyer_id}, sort=("created_at", -1))
        return [Order.model_validate(d) for d in docs]

    def list_all(self, status: Optional[str] = None) -> List[Order]:
        filt = {"status": status} if status else None
        docs = self.store.get_documents(ORDERS, filt, sort=("created_at", -1))
        return [Order.model_validate(d) for d in docs]

    def release_items(self, order: Order) -> None:
        for item in order.items:
            self.catalog.release(item.product_id, item.quantity)

    def cancel_order(self, order_id: str, actor: User, reason: Optional[str] = None) -> Order:
        with self.store.lock(f"order:{order_id}"):
            order = self.get_order_for(order_id, actor)
            if order.status not in CANCELLABLE:
                raise InvalidTransition(f"Order cannot be cancelled from {order.status}")
            patch = {
                "status": "cancelled",
                "cancel_reason": reason or f"Cancelled by {actor.role}",
            }
            if order.payment_status == "completed":
                patch["payment_status"] = "refunded"
            doc = self.store.update(ORDERS, order_id, patch, expect={"status": order.status})
            if not doc:
                raise InvalidTransition("Order changed while cancelling")
            if order.payment_id and order.payment_status == "completed":
                self.store.update(PAYMENTS, order.payment_id, {"status": "refunded"})
            self.release_items(order)
        logger.info(f"Order {order_id} cancelled by {actor.id} from {order.status}")
        return Order.model_validate(doc)
