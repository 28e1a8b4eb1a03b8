"""
Database Schemas for the TechCycle marketplace

Each Pydantic model corresponds to one collection in the store.
Collection name is the lowercase of the class name (see ``collection_name``).
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional, Type

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Role = Literal["user", "seller", "admin"]
Category = Literal[
    "Smartphones", "Laptops", "Tablets", "Audio", "Cameras", "Gaming", "Wearables", "Accessories"
]
Condition = Literal["Like New", "Excellent", "Good", "Fair"]
PaymentMethod = Literal["gcash", "paymaya", "bank_transfer", "credit_card", "debit_card"]
OrderStatus = Literal["pending", "awaiting_verification", "completed", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed", "refunded"]
ShippingStatus = Literal["pending", "processing", "shipped", "delivered"]
VerificationStatus = Literal["pending", "approved", "rejected"]
IdType = Literal[
    "Driver's License", "Passport", "National ID", "SSS ID",
    "PhilHealth ID", "TIN ID", "Voter's ID", "Postal ID",
]


class Document(BaseModel):
    """Fields every stored record carries."""
    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def collection_name(model: Type[BaseModel]) -> str:
    return model.__name__.lower()


class User(Document):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: Role = "user"
    is_verified: bool = False
    verification_status: Literal["none", "pending", "approved", "rejected"] = "none"
    verification_id: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    location: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class Product(Document):
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
    seller_id: Optional[str] = None
    is_active: bool = True
    views: int = 0


class CartItem(Document):
    """One cart line. Price, name, image and stock are snapshots taken on add."""
    buyer_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    name: str
    price: float = Field(..., ge=0)
    image: Optional[str] = None
    stock: int = Field(0, ge=0)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class BuyerContact(BaseModel):
    id: str
    name: str
    email: EmailStr
    phone: Optional[str] = None


class Order(Document):
    buyer_id: str
    buyer: BuyerContact
    items: List[OrderItem]
    shipping_address: str
    payment_method: PaymentMethod
    subtotal: float = Field(..., ge=0)
    shipping_fee: float = Field(..., ge=0)
    commission: float = Field(..., ge=0)
    total: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"
    shipping_status: ShippingStatus = "pending"
    payment_id: Optional[str] = None
    tracking_number: Optional[str] = None
    admin_notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    estimated_delivery: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    verified_by: Optional[str] = None
    completed_at: Optional[datetime] = None


class Payment(Document):
    order_id: str
    amount: float = Field(..., ge=0)
    method: PaymentMethod
    status: Literal["pending", "completed", "failed", "refunded"] = "pending"
    reference: Optional[str] = None
    provider: str = "simulated"
    idempotency_key: Optional[str] = None
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None


class SellerVerification(Document):
    user_id: str
    user_email: Optional[EmailStr] = None
    full_name: str
    address: str
    phone_number: str
    id_type: IdType
    id_number: str
    id_image: Optional[str] = None
    selfie_image: Optional[str] = None
    proof_of_ownership: Optional[str] = None
    status: VerificationStatus = "pending"
    admin_notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None


class PlatformEarning(Document):
    order_id: str
    transaction_fee: float = Field(..., ge=0)
    total_earnings: float = Field(..., ge=0)
