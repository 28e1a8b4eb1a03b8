"""
Payment recording behind a ``PaymentGateway`` interface.

The bundled ``SimulatedGateway`` does not move money: it authorizes and
captures every request except for methods configured as declined. Real
providers plug in by implementing ``authorize`` and ``capture``.
"""
import logging
import threading
import uuid
from typing import Dict, FrozenSet, List, Literal, Optional

from pydantic import BaseModel

from database import Store, utcnow
from errors import Forbidden, InvalidTransition, OrderNotFound
from orders import ORDERS, PAYMENTS, OrderBuilder
from schemas import Order, Payment, PaymentMethod, User

logger = logging.getLogger(__name__)


class PaymentBody(BaseModel):
    method: Optional[PaymentMethod] = None
    reference: Optional[str] = None


class GatewayResponse(BaseModel):
    outcome: Literal["authorized", "captured", "failed"]
    reference: str
    failure_reason: Optional[str] = None


class PaymentGateway:
    name = "base"

    def authorize(self, *, amount: float, method: str, reference: Optional[str],
                  idempotency_key: str) -> GatewayResponse:
        raise NotImplementedError

    def capture(self, authorization: GatewayResponse, *, idempotency_key: str) -> GatewayResponse:
        raise NotImplementedError


class SimulatedGateway(PaymentGateway):
    name = "simulated"

    def __init__(self, declined_methods: FrozenSet[str] = frozenset()):
        self.declined_methods = declined_methods
        self._seen: Dict[str, GatewayResponse] = {}
        self._mutex = threading.Lock()

    def authorize(self, *, amount, method, reference, idempotency_key):
        with self._mutex:
            key = f"auth:{idempotency_key}"
            if key not in self._seen:
                ref = reference or f"REF-{uuid.uuid4().hex[:12].upper()}"
                if method in self.declined_methods:
                    response = GatewayResponse(outcome="failed", reference=ref,
                                               failure_reason=f"{method} payments are currently declined")
                else:
                    response = GatewayResponse(outcome="authorized", reference=ref)
                self._seen[key] = response
            return self._seen[key]

    def capture(self, authorization, *, idempotency_key):
        with self._mutex:
            key = f"capture:{idempotency_key}"
            if key not in self._seen:
                self._seen[key] = GatewayResponse(outcome="captured", reference=authorization.reference)
            return self._seen[key]


class PaymentRecorder:
    def __init__(self, store: Store, orders: OrderBuilder, gateway: PaymentGateway):
        self.store = store
        self.orders = orders
        self.gateway = gateway

    def _existing(self, order_id: str, idempotency_key: str) -> Optional[Payment]:
        docs = self.store.get_documents(PAYMENTS, {"order_id": order_id, "idempotency_key": idempotency_key}, limit=1)
        return Payment.model_validate(docs[0]) if docs else None

    def list_payments(self, order_id: str) -> List[Payment]:
        docs = self.store.get_documents(PAYMENTS, {"order_id": order_id}, sort=("created_at", 1))
        return [Payment.model_validate(d) for d in docs]

    def process_payment(self, order_id: str, method: Optional[str] = None, reference: Optional[str] = None,
                        idempotency_key: Optional[str] = None, payer: Optional[User] = None) -> Payment:
        with self.store.lock(f"order:{order_id}"):
            doc = self.store.get(ORDERS, order_id)
            if not doc:
                raise OrderNotFound()
            order = Order.model_validate(doc)
            if payer is not None and order.buyer_id != payer.id:
                raise Forbidden()

            if idempotency_key:
                existing = self._existing(order_id, idempotency_key)
                if existing:
                    logger.info(f"Replaying payment {existing.id} for order {order_id}")
                    return existing
            else:
                idempotency_key = uuid.uuid4().hex

            if order.status != "pending":
                raise InvalidTransition(f"Order is not awaiting payment (status {order.status})")

            method = method or order.payment_method
            response = self.gateway.authorize(
                amount=order.total, method=method, reference=reference, idempotency_key=idempotency_key
            )
            if response.outcome == "authorized":
                response = self.gateway.capture(response, idempotency_key=idempotency_key)

            payment = Payment(
                order_id=order_id,
                amount=order.total,
                method=method,
                reference=response.reference,
                provider=self.gateway.name,
                idempotency_key=idempotency_key,
            )
            if response.outcome == "captured":
                payment.status = "completed"
                payment.processed_at = utcnow()
                order_patch = {"status": "awaiting_verification", "payment_status": "completed"}
            else:
                payment.status = "failed"
                payment.failure_reason = response.failure_reason or "Payment processing failed"
                order_patch = {"status": "cancelled", "payment_status": "failed",
                               "cancel_reason": payment.failure_reason}

            payment.id = self.store.create_document(PAYMENTS, payment)
            order_patch["payment_id"] = payment.id
            if not self.store.update(ORDERS, order_id, order_patch, expect={"status": "pending"}):
                self.store.update(PAYMENTS, payment.id, {"status": "failed", "failure_reason": "Order changed"})
                raise InvalidTransition("Order changed while processing payment")
            if payment.status == "failed":
                self.orders.release_items(order)
                logger.warning(f"Payment {payment.id} for order {order_id} failed: {payment.failure_reason}")
            else:
                logger.info(f"Payment {payment.id} captured for order {order_id}: {payment.amount}")

        return Payment.model_validate(self.store.get(PAYMENTS, payment.id))
