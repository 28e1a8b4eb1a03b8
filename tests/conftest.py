"""
Shared pytest fixtures: a fresh local store per test, service objects wired
to it, and an API client with the store dependency overridden.
"""

import pytest
from fastapi.testclient import TestClient

from auth import RegisterBody, create_token, register_user
from cart import Cart
from catalog import PRODUCTS, Catalog
from database import LocalStore, get_store
from main import app, get_gateway
from orders import OrderBuilder
from payments import PaymentRecorder, SimulatedGateway
from schemas import Product, User
from settings import Settings, get_settings
from settlement import SettlementAuthority
from users import UserDirectory
from verifications import SellerVerifications

# ============================================================================
# STORE AND SETTINGS
# ============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(jwt_secret="test-secret-key-for-the-marketplace-suite")


@pytest.fixture
def store() -> LocalStore:
    return LocalStore()


@pytest.fixture
def gateway() -> SimulatedGateway:
    return SimulatedGateway()


# ============================================================================
# SERVICES
# ============================================================================


@pytest.fixture
def catalog(store) -> Catalog:
    return Catalog(store)


@pytest.fixture
def cart(store, catalog) -> Cart:
    return Cart(store, catalog)


@pytest.fixture
def orders(store, cart, catalog, settings) -> OrderBuilder:
    return OrderBuilder(store, cart, catalog, settings)


@pytest.fixture
def payments(store, orders, gateway) -> PaymentRecorder:
    return PaymentRecorder(store, orders, gateway)


@pytest.fixture
def settlement(store, orders) -> SettlementAuthority:
    return SettlementAuthority(store, orders)


@pytest.fixture
def verifications(store, settings) -> SellerVerifications:
    return SellerVerifications(store, settings)


@pytest.fixture
def users(store, catalog) -> UserDirectory:
    return UserDirectory(store, catalog)


# ============================================================================
# USERS AND PRODUCTS
# ============================================================================


def make_user(store, email: str, role: str = "user", name: str = "Test User") -> User:
    return register_user(store, RegisterBody(name=name, email=email, password="secret123", phone="09171234567"), role=role)


@pytest.fixture
def new_user(store):
    def _new(email: str, role: str = "user", name: str = "Test User") -> User:
        return make_user(store, email, role=role, name=name)
    return _new


@pytest.fixture
def buyer(store) -> User:
    return make_user(store, "buyer@example.com", name="Juan Buyer")


@pytest.fixture
def seller(store) -> User:
    return make_user(store, "seller@example.com", role="seller", name="Sally Seller")


@pytest.fixture
def admin(store) -> User:
    return make_user(store, "admin@techcycle.com", role="admin", name="Admin")


@pytest.fixture
def make_product(store, seller):
    def _make(**overrides) -> Product:
        data = {
            "name": "iPhone 12",
            "brand": "Apple",
            "description": "Pre-owned phone",
            "price": 999,
            "category": "Smartphones",
            "condition": "Good",
            "stock": 5,
            "images": ["https://img.example.com/iphone.jpg"],
            "seller_id": seller.id,
        }
        data.update(overrides)
        product = Product(**data)
        product.id = store.create_document(PRODUCTS, product)
        return product
    return _make


# ============================================================================
# API CLIENT
# ============================================================================


@pytest.fixture
def client(store, settings, gateway):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[get_gateway] = lambda: gateway
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(settings):
    def _headers(user: User) -> dict:
        token = create_token({"id": user.id, "email": user.email}, settings)
        return {"Authorization": f"Bearer {token}"}
    return _headers
