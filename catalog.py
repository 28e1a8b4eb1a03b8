"""
Catalog store: product listing, lookup and the stock primitives used at checkout.
"""
import logging
import math
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from database import Store
from errors import Forbidden, InsufficientStock, ProductNotFound
from schemas import Category, Condition, Product, User, collection_name

logger = logging.getLogger(__name__)

PRODUCTS = collection_name(Product)


class ProductCreateBody(BaseModel):
    name: str
    brand: str
    description: str = ""
    price: float = Field(..., gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    category: Category
    model: Optional[str] = None
    condition: Condition
    stock: int = Field(1, ge=0)
    images: List[str] = []
    specs: Dict[str, str] = {}
    highlights: List[str] = []
    location: Optional[str] = None
    is_active: bool = True


class ProductUpdateBody(BaseModel):
    name: Optional[str] = None
    brand: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, gt=0)
    original_price: Optional[float] = Field(None, gt=0)
    category: Optional[Category] = None
    model: Optional[str] = None
    condition: Optional[Condition] = None
    stock: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None
    specs: Optional[Dict[str, str]] = None
    highlights: Optional[List[str]] = None
    location: Optional[str] = None
    is_active: Optional[bool] = None


class ProductFilter(BaseModel):
    category: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[str] = None
    search: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    seller_id: Optional[str] = None
    include_inactive: bool = False
    page: int = Field(1, ge=1)
    limit: Optional[int] = Field(12, ge=1, le=100)
    sort_by: Literal["created_at", "price", "name", "views"] = "created_at"
    sort_order: Literal["asc", "desc"] = "desc"


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_products: int
    has_next: bool
    has_prev: bool


def _matches(product: Product, filt: ProductFilter) -> bool:
    if filt.brand and product.brand.lower() != filt.brand.lower():
        return False
    if filt.min_price is not None and product.price < filt.min_price:
        return False
    if filt.max_price is not None and product.price > filt.max_price:
        return False
    if filt.search:
        needle = filt.search.lower()
        haystack = (product.name, product.description or "", product.brand)
        if not any(needle in field.lower() for field in haystack):
            return False
    return True


class Catalog:
    def __init__(self, store: Store):
        self.store = store

    def _equality_filter(self, filt: ProductFilter) -> dict:
        query = {}
        if not filt.include_inactive:
            query["is_active"] = True
        if filt.category:
            query["category"] = filt.category
        if filt.condition:
            query["condition"] = filt.condition
        if filt.seller_id:
            query["seller_id"] = filt.seller_id
        return query

    def _filtered(self, filt: ProductFilter) -> List[Product]:
        direction = -1 if filt.sort_order == "desc" else 1
        docs = self.store.get_documents(PRODUCTS, self._equality_filter(filt), sort=(filt.sort_by, direction))
        products = [Product.model_validate(d) for d in docs]
        return [p for p in products if _matches(p, filt)]

    def list(self, filt: Optional[ProductFilter] = None) -> List[Product]:
        filt = filt or ProductFilter()
        products = self._filtered(filt)
        if filt.limit:
            start = (filt.page - 1) * filt.limit
            products = products[start:start + filt.limit]
        return products

    def count(self, filt: Optional[ProductFilter] = None) -> int:
        return len(self._filtered(filt or ProductFilter()))

    def paginate(self, filt: ProductFilter) -> dict:
        products = self.list(filt)
        total = self.count(filt)
        limit = filt.limit or max(total, 1)
        pagination = Pagination(
            current_page=filt.page,
            total_pages=math.ceil(total / limit),
            total_products=total,
            has_next=(filt.page - 1) * limit + len(products) < total,
            has_prev=filt.page > 1,
        )
        return {"products": products, "pagination": pagination}

    def get(self, product_id: str) -> Product:
        doc = self.store.get(PRODUCTS, product_id)
        if not doc:
            raise ProductNotFound()
        return Product.model_validate(doc)

    def view(self, product_id: str) -> Product:
        """Public product page: bump the view counter."""
        doc = self.store.increment(PRODUCTS, product_id, "views", 1)
        if not doc:
            raise ProductNotFound()
        return Product.model_validate(doc)

    def create(self, body: ProductCreateBody, seller: User) -> Product:
        if seller.role not in ("seller", "admin"):
            raise Forbidden("Only verified sellers can list products")
        product = Product(**body.model_dump(), seller_id=seller.id)
        product.id = self.store.create_document(PRODUCTS, product)
        logger.info(f"Product {product.id} listed by {seller.id}")
        return self.get(product.id)

    def _check_owner(self, product: Product, user: User):
        if product.seller_id != user.id and not user.is_admin:
            raise Forbidden()

    def update(self, product_id: str, body: ProductUpdateBody, user: User) -> Product:
        self._check_owner(self.get(product_id), user)
        patch = body.model_dump(exclude_none=True)
        doc = self.store.update(PRODUCTS, product_id, patch)
        if not doc:
            raise ProductNotFound()
        return Product.model_validate(doc)

    def delete(self, product_id: str, user: User) -> None:
        self._check_owner(self.get(product_id), user)
        if not self.store.delete(PRODUCTS, product_id):
            raise ProductNotFound()
        logger.info(f"Product {product_id} deleted by {user.id}")

    def reserve(self, product_id: str, quantity: int) -> Product:
        doc = self.store.decrement_if(PRODUCTS, product_id, "stock", quantity)
        if doc:
            return Product.model_validate(doc)
        product = self.get(product_id)
        raise InsufficientStock(f"Insufficient stock for {product.name}")

    def release(self, product_id: str, quantity: int) -> None:
        if not self.store.increment(PRODUCTS, product_id, "stock", quantity):
            logger.warning(f"Could not restock {quantity} of missing product {product_id}")
