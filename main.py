import logging
import os
import threading
from typing import List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Query
from fastapi.middleware.cors import CORSMiddleware

from auth import (
    LoginBody,
    RegisterBody,
    USERS,
    authenticate,
    get_current_user,
    hash_password,
    issue_token,
    public_user,
    register_user,
    require_admin,
)
from cart import AddToCartBody, Cart, UpdateQuantityBody
from catalog import PRODUCTS, Catalog, ProductCreateBody, ProductFilter, ProductUpdateBody
from database import Store, get_store
from errors import MarketplaceError, marketplace_error_handler
from orders import ORDERS, CancelBody, CheckoutBody, OrderBuilder
from payments import PaymentBody, PaymentGateway, PaymentRecorder, SimulatedGateway
from schemas import Product, User
from settings import Settings, get_settings
from settlement import SettlementAuthority, ShippingBody, VerifyBody, settlement_for
from users import UserDirectory, UserUpdateBody
from verifications import SellerVerifications, StatusBody, VerificationBody

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="TechCycle Marketplace")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_exception_handler(MarketplaceError, marketplace_error_handler)


# ----------------------- Services -----------------------
_gateway: Optional[PaymentGateway] = None
_gateway_guard = threading.Lock()


def get_gateway(settings: Settings = Depends(get_settings)) -> PaymentGateway:
    global _gateway
    with _gateway_guard:
        if _gateway is None:
            _gateway = SimulatedGateway(settings.declined_payment_methods)
        return _gateway


def get_catalog(store: Store = Depends(get_store)) -> Catalog:
    return Catalog(store)


def get_cart(store: Store = Depends(get_store), catalog: Catalog = Depends(get_catalog)) -> Cart:
    return Cart(store, catalog)


def get_orders(
    store: Store = Depends(get_store),
    cart: Cart = Depends(get_cart),
    catalog: Catalog = Depends(get_catalog),
    settings: Settings = Depends(get_settings),
) -> OrderBuilder:
    return OrderBuilder(store, cart, catalog, settings)


def get_payments(
    store: Store = Depends(get_store),
    orders: OrderBuilder = Depends(get_orders),
    gateway: PaymentGateway = Depends(get_gateway),
) -> PaymentRecorder:
    return PaymentRecorder(store, orders, gateway)


def get_settlement(store: Store = Depends(get_store), orders: OrderBuilder = Depends(get_orders)) -> SettlementAuthority:
    return SettlementAuthority(store, orders)


def get_verifications(store: Store = Depends(get_store), settings: Settings = Depends(get_settings)) -> SellerVerifications:
    return SellerVerifications(store, settings)


def get_users(store: Store = Depends(get_store), catalog: Catalog = Depends(get_catalog)) -> UserDirectory:
    return UserDirectory(store, catalog)


def cart_view(cart: Cart, buyer_id: str) -> dict:
    return {
        "items": cart.get_lines(buyer_id),
        "total": cart.get_total(buyer_id),
        "count": cart.get_item_count(buyer_id),
    }


# ----------------------- Health -----------------------
@app.get("/")
def root():
    return {"message": "TechCycle API running"}


@app.get("/test")
def test_database(store: Store = Depends(get_store)):
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "store": store.backend,
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "✅ Set" if os.getenv("DATABASE_NAME") else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    try:
        response["collections"] = store.collections()[:10]
        response["database"] = "✅ Connected & Working"
        response["connection_status"] = "Connected"
    except Exception as e:
        logger.warning(f"Store health check failed: {e}")
        response["database"] = f"❌ Error: {str(e)[:80]}"
    return response


# ----------------------- Auth -----------------------
@app.post("/auth/register", status_code=201)
def register(body: RegisterBody, store: Store = Depends(get_store), settings: Settings = Depends(get_settings)):
    user = register_user(store, body)
    return issue_token(user, settings)


@app.post("/auth/login")
def login(body: LoginBody, store: Store = Depends(get_store), settings: Settings = Depends(get_settings)):
    user = authenticate(store, body)
    return issue_token(user, settings)


@app.get("/auth/me")
def me(user: User = Depends(get_current_user)):
    return public_user(user)


# ----------------------- Users -----------------------
@app.get("/users")
def list_users(role: Optional[str] = None, admin: User = Depends(require_admin),
               users: UserDirectory = Depends(get_users)):
    return {"users": users.list_users(role)}


@app.get("/users/{user_id}")
def get_user(user_id: str, users: UserDirectory = Depends(get_users)):
    return users.profile(user_id)


@app.get("/users/{user_id}/products")
def get_user_products(user_id: str, users: UserDirectory = Depends(get_users)):
    return {"products": users.listings(user_id)}


@app.put("/users/{user_id}")
def update_user(user_id: str, body: UserUpdateBody, user: User = Depends(get_current_user),
                users: UserDirectory = Depends(get_users)):
    return {"message": "User updated successfully", "user": users.update_profile(user_id, body, user)}


@app.delete("/users/{user_id}")
def delete_user(user_id: str, admin: User = Depends(require_admin), users: UserDirectory = Depends(get_users)):
    users.delete_user(user_id, admin)
    return {"message": "User deleted successfully"}


# ----------------------- Products -----------------------
@app.get("/products")
def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    brand: Optional[str] = None,
    condition: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    seller_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    sort_by: Literal["created_at", "price", "name", "views"] = "created_at",
    sort_order: Literal["asc", "desc"] = "desc",
    catalog: Catalog = Depends(get_catalog),
):
    filt = ProductFilter(
        search=q,
        category=category,
        brand=brand,
        condition=condition,
        min_price=min_price,
        max_price=max_price,
        seller_id=seller_id,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return catalog.paginate(filt)


@app.get("/products/{product_id}")
def get_product(product_id: str, catalog: Catalog = Depends(get_catalog)):
    return catalog.view(product_id)


@app.post("/products", status_code=201)
def create_product(body: ProductCreateBody, user: User = Depends(get_current_user),
                   catalog: Catalog = Depends(get_catalog)):
    return catalog.create(body, user)


@app.put("/products/{product_id}")
def update_product(product_id: str, body: ProductUpdateBody, user: User = Depends(get_current_user),
                   catalog: Catalog = Depends(get_catalog)):
    return catalog.update(product_id, body, user)


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user: User = Depends(get_current_user), catalog: Catalog = Depends(get_catalog)):
    catalog.delete(product_id, user)
    return {"ok": True}


# ----------------------- Cart -----------------------
@app.get("/cart")
def get_cart_items(user: User = Depends(get_current_user), cart: Cart = Depends(get_cart)):
    return cart_view(cart, user.id)


@app.get("/cart/count")
def get_cart_count(user: User = Depends(get_current_user), cart: Cart = Depends(get_cart)):
    return {"count": cart.get_item_count(user.id)}


@app.post("/cart/items")
def add_to_cart(body: AddToCartBody, user: User = Depends(get_current_user), cart: Cart = Depends(get_cart)):
    cart.add_item(user.id, body.product_id, body.quantity)
    return cart_view(cart, user.id)


@app.put("/cart/items/{line_id}")
def update_cart_item(line_id: str, body: UpdateQuantityBody, user: User = Depends(get_current_user),
                     cart: Cart = Depends(get_cart)):
    cart.update_quantity(user.id, line_id, body.quantity)
    return cart_view(cart, user.id)


@app.delete("/cart/items/{line_id}")
def remove_cart_item(line_id: str, user: User = Depends(get_current_user), cart: Cart = Depends(get_cart)):
    cart.remove_item(user.id, line_id)
    return cart_view(cart, user.id)


@app.delete("/cart")
def clear_cart(user: User = Depends(get_current_user), cart: Cart = Depends(get_cart)):
    cart.clear(user.id)
    return {"ok": True}


# ----------------------- Orders -----------------------
@app.post("/orders", status_code=201)
def create_order(body: CheckoutBody, user: User = Depends(get_current_user),
                 orders: OrderBuilder = Depends(get_orders)):
    return orders.create_order(user, body.shipping_address, body.payment_method)


@app.get("/orders")
def my_orders(user: User = Depends(get_current_user), orders: OrderBuilder = Depends(get_orders)):
    return {"orders": orders.list_orders(user.id)}


@app.get("/orders/{order_id}")
def get_order(order_id: str, user: User = Depends(get_current_user), orders: OrderBuilder = Depends(get_orders),
              payments: PaymentRecorder = Depends(get_payments)):
    order = orders.get_order_for(order_id, user)
    return {"order": order, "payments": payments.list_payments(order_id)}


@app.put("/orders/{order_id}/cancel")
def cancel_order(order_id: str, body: CancelBody, user: User = Depends(get_current_user),
                 orders: OrderBuilder = Depends(get_orders)):
    return orders.cancel_order(order_id, user, body.reason)


@app.post("/orders/{order_id}/payment")
def process_payment(
    order_id: str,
    body: PaymentBody,
    idempotency_key: Optional[str] = Header(None),
    user: User = Depends(get_current_user),
    payments: PaymentRecorder = Depends(get_payments),
):
    return payments.process_payment(order_id, body.method, body.reference, idempotency_key, payer=user)


# ----------------------- Admin -----------------------
@app.get("/admin/orders")
def admin_orders(status: Optional[str] = None, admin: User = Depends(require_admin),
                 orders: OrderBuilder = Depends(get_orders)):
    return {"orders": [settlement_for(o) for o in orders.list_all(status)]}


@app.get("/admin/orders/pending-verification")
def pending_verification(admin: User = Depends(require_admin),
                         settlement: SettlementAuthority = Depends(get_settlement)):
    return {"orders": [settlement_for(o) for o in settlement.pending_verification()]}


@app.put("/admin/orders/{order_id}/verify")
def verify_order(order_id: str, body: VerifyBody, admin: User = Depends(require_admin),
                 settlement: SettlementAuthority = Depends(get_settlement)):
    return settlement.verify_transaction(order_id, admin, body.admin_notes, body.tracking_number)


@app.put("/admin/orders/{order_id}/shipping")
def update_shipping(order_id: str, body: ShippingBody, admin: User = Depends(require_admin),
                    settlement: SettlementAuthority = Depends(get_settlement)):
    return settlement.update_shipping_status(order_id, body.status, body.tracking_number)


@app.get("/admin/stats")
def admin_stats(admin: User = Depends(require_admin), store: Store = Depends(get_store),
                settlement: SettlementAuthority = Depends(get_settlement)):
    return {
        "users": store.count(USERS),
        "products": store.count(PRODUCTS),
        "orders": store.count(ORDERS),
        "awaiting_verification": store.count(ORDERS, {"status": "awaiting_verification"}),
        **settlement.earnings_summary(),
    }


# ----------------------- Seller Verification -----------------------
@app.post("/verifications", status_code=201)
def submit_verification(body: VerificationBody, user: User = Depends(get_current_user),
                        verifications: SellerVerifications = Depends(get_verifications)):
    return verifications.submit(user, body)


@app.get("/verifications/my-status")
def my_verification(user: User = Depends(get_current_user),
                    verifications: SellerVerifications = Depends(get_verifications)):
    return {"verification": verifications.my_status(user.id)}


@app.get("/verifications/all")
def all_verifications(status: Optional[str] = None, admin: User = Depends(require_admin),
                      verifications: SellerVerifications = Depends(get_verifications)):
    return {"verifications": verifications.list_all(status)}


@app.put("/verifications/{verification_id}/status")
def update_verification_status(verification_id: str, body: StatusBody, admin: User = Depends(require_admin),
                               verifications: SellerVerifications = Depends(get_verifications)):
    verification = verifications.update_status(verification_id, body.status, admin, body.note)
    return {"message": f"Verification {body.status} successfully", "verification": verification}


# ----------------------- Seed Demo Data -----------------------
DEMO_PRODUCTS: List[dict] = [
    {
        "name": "iPhone 13 128GB",
        "brand": "Apple",
        "description": "Pre-owned, battery health 89%. Minor scuffs on the frame.",
        "price": 28999,
        "original_price": 45990,
        "category": "Smartphones",
        "condition": "Excellent",
        "images": ["https://images.unsplash.com/photo-1632661674596-df8be070a5c5"],
        "specs": {"storage": "128GB", "battery_health": "89%"},
        "stock": 3,
    },
    {
        "name": "Galaxy S21 FE",
        "brand": "Samsung",
        "description": "Used for a year, with original box and charger.",
        "price": 15999,
        "original_price": 32990,
        "category": "Smartphones",
        "condition": "Good",
        "images": ["https://images.unsplash.com/photo-1610945265064-0e34e5519bbf"],
        "specs": {"storage": "256GB", "ram": "8GB"},
        "stock": 2,
    },
    {
        "name": "MacBook Air M1",
        "brand": "Apple",
        "description": "Light use, 112 battery cycles.",
        "price": 38999,
        "original_price": 59990,
        "category": "Laptops",
        "condition": "Like New",
        "images": ["https://images.unsplash.com/photo-1517336714731-489689fd1ca8"],
        "specs": {"ram": "8GB", "storage": "256GB SSD"},
        "stock": 1,
    },
    {
        "name": "ThinkPad T480",
        "brand": "Lenovo",
        "description": "Refurbished business laptop, new keyboard.",
        "price": 14500,
        "category": "Laptops",
        "condition": "Good",
        "images": ["https://images.unsplash.com/photo-1588872657578-7efd1f1555ed"],
        "specs": {"cpu": "i5-8350U", "ram": "16GB", "storage": "512GB SSD"},
        "stock": 4,
    },
    {
        "name": "WH-1000XM4 Headphones",
        "brand": "Sony",
        "description": "Noise cancelling works perfectly; earpads replaced.",
        "price": 7999,
        "original_price": 18999,
        "category": "Audio",
        "condition": "Excellent",
        "images": ["https://images.unsplash.com/photo-1618366712010-f4ae9c647dcb"],
        "specs": {"battery": "30h"},
        "stock": 5,
    },
    {
        "name": "Fujifilm X-T30",
        "brand": "Fujifilm",
        "description": "Body only, shutter count around 8k.",
        "price": 32000,
        "category": "Cameras",
        "condition": "Excellent",
        "images": ["https://images.unsplash.com/photo-1516035069371-29a1b244cc32"],
        "specs": {"sensor": "26.1MP APS-C"},
        "stock": 1,
    },
    {
        "name": "iPad 9th Gen",
        "brand": "Apple",
        "description": "Wi-Fi, 64GB, with case.",
        "price": 12999,
        "category": "Tablets",
        "condition": "Fair",
        "images": ["https://images.unsplash.com/photo-1544244015-0df4b3ffc6b0"],
        "specs": {"storage": "64GB"},
        "stock": 2,
    },
    {
        "name": "USB-C Charger 65W",
        "brand": "Anker",
        "description": "GaN charger, barely used.",
        "price": 999,
        "category": "Accessories",
        "condition": "Like New",
        "images": ["https://images.unsplash.com/photo-1583863788434-e58a36330cf0"],
        "specs": {"output": "65W"},
        "stock": 10,
    },
]


@app.post("/seed")
def seed(store: Store = Depends(get_store)):
    if store.count(PRODUCTS) > 0:
        return {"seeded": False, "message": "Products already exist"}
    admins = store.get_documents(USERS, {"role": "admin"}, limit=1)
    if admins:
        admin_id = admins[0]["id"]
    else:
        admin = User(name="Admin", email="admin@techcycle.com", password_hash=hash_password("admin123"),
                     role="admin", is_verified=True)
        admin_id = store.create_document(USERS, admin)
    for p in DEMO_PRODUCTS:
        store.create_document(PRODUCTS, Product(**p, seller_id=admin_id))
    logger.info(f"Seeded {len(DEMO_PRODUCTS)} demo products")
    return {"seeded": True, "products": store.count(PRODUCTS)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
