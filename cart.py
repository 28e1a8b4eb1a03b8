"""
Cart aggregator: one stored document per cart line, serialized per buyer.
"""
import logging
from decimal import Decimal
from typing import List

from pydantic import BaseModel, Field

from catalog import Catalog
from database import Store
from errors import CartItemNotFound, InsufficientStock, ProductUnavailable
from schemas import CartItem, collection_name

logger = logging.getLogger(__name__)

CART = collection_name(CartItem)


class AddToCartBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class UpdateQuantityBody(BaseModel):
    quantity: int


def line_total(line: CartItem) -> Decimal:
    return Decimal(str(line.price)) * line.quantity


class Cart:
    def __init__(self, store: Store, catalog: Catalog):
        self.store = store
        self.catalog = catalog

    def _lock(self, buyer_id: str):
        return self.store.lock(f"cart:{buyer_id}")

    def get_lines(self, buyer_id: str) -> List[CartItem]:
        docs = self.store.get_documents(CART, {"buyer_id": buyer_id}, sort=("created_at", 1))
        return [CartItem.model_validate(d) for d in docs]

    def _find_line(self, buyer_id: str, line_id: str):
        doc = self.store.get(CART, line_id)
        if not doc or doc.get("buyer_id") != buyer_id:
            return None
        return CartItem.model_validate(doc)

    def add_item(self, buyer_id: str, product_id: str, quantity: int = 1) -> List[CartItem]:
        product = self.catalog.get(product_id)
        if not product.is_active:
            raise ProductUnavailable()
        with self._lock(buyer_id):
            existing = self.store.get_documents(CART, {"buyer_id": buyer_id, "product_id": product_id}, limit=1)
            merged = quantity + (existing[0]["quantity"] if existing else 0)
            if merged > product.stock:
                raise InsufficientStock(f"Only {product.stock} of {product.name} in stock")
            snapshot = {
                "name": product.name,
                "price": product.price,
                "image": product.images[0] if product.images else None,
                "stock": product.stock,
            }
            if existing:
                self.store.update(CART, existing[0]["id"], {"quantity": merged, **snapshot})
            else:
                line = CartItem(buyer_id=buyer_id, product_id=product_id, quantity=quantity, **snapshot)
                self.store.create_document(CART, line)
            return self.get_lines(buyer_id)

    def update_quantity(self, buyer_id: str, line_id: str, quantity: int) -> List[CartItem]:
        with self._lock(buyer_id):
            line = self._find_line(buyer_id, line_id)
            if quantity <= 0:
                if line:
                    self.store.delete(CART, line_id)
                return self.get_lines(buyer_id)
            if not line:
                raise CartItemNotFound()
            self.store.update(CART, line_id, {"quantity": quantity})
            return self.get_lines(buyer_id)

    def remove_item(self, buyer_id: str, line_id: str) -> List[CartItem]:
        with self._lock(buyer_id):
            if not self._find_line(buyer_id, line_id):
                raise CartItemNotFound()
            self.store.delete(CART, line_id)
            return self.get_lines(buyer_id)

    def clear(self, buyer_id: str) -> int:
        with self._lock(buyer_id):
            removed = self.store.delete_many(CART, {"buyer_id": buyer_id})
        logger.debug(f"Cleared {removed} cart lines for {buyer_id}")
        return removed

    def get_total(self, buyer_id: str) -> float:
        return float(sum((line_total(line) for line in self.get_lines(buyer_id)), Decimal("0")))

    def get_item_count(self, buyer_id: str) -> int:
        return sum(line.quantity for line in self.get_lines(buyer_id))
