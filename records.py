# records.py
"""In-memory records the scheduler, aggregator and reducers work on.

Records are frozen; reducers build changed copies with dataclasses.replace
and hand the persistence layer a list of Effect descriptors to write.
"""
from collections import namedtuple
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, Tuple

# delivery status
PENDING = "pending"
DELIVERED = "delivered"
MISSED = "missed"
CANCELLED = "cancelled"  # reserved, nothing transitions into it yet

# route item status
COMPLETED = "completed"
PARTIAL = "partial"

# route filters
FILTER_ALL = "all"
ROUTE_FILTERS = (FILTER_ALL, PENDING, DELIVERED, MISSED)

# subscription frequency
DAILY = "daily"
ALTERNATE = "alternate"
CUSTOM = "custom"
FREQUENCIES = (DAILY, ALTERNATE, CUSTOM)

PAYMENT_MODES = ("cash", "upi", "card")

# quantities are entered relative to 500 ml / 500 g
REFERENCE_UNIT_SIZE = 500


@dataclass(frozen=True)
class Customer:
    id: str
    name: str
    mobile: str
    lat: float = 0.0
    lng: float = 0.0
    address: Optional[str] = None
    is_active: bool = True
    total_dues: Decimal = Decimal("0.00")  # cache, recomputed by reducers
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Product:
    id: str
    name: str
    unit: str  # L, kg, piece
    default_price: Decimal
    is_active: bool = True
    created_by: Optional[str] = None


@dataclass(frozen=True)
class Subscription:
    id: str
    customer_id: str
    product_id: str
    quantity: int
    price_per_unit: Decimal
    frequency: str
    start_date: date
    custom_days: Tuple[int, ...] = ()  # 0 = Sunday
    is_active: bool = True
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class Delivery:
    id: str
    customer_id: str
    product_id: str
    date: date
    quantity: int
    price: Decimal
    amount: Decimal
    status: str = PENDING
    subscription_id: Optional[str] = None
    notes: Optional[str] = None
    delivered_at: Optional[datetime] = None
    version: int = 1
    created_by: Optional[str] = None


@dataclass(frozen=True)
class Payment:
    id: str
    customer_id: str
    amount: Decimal
    mode: str
    date: datetime
    notes: Optional[str] = None
    delivery_ids: Tuple[str, ...] = ()  # informational only
    created_by: Optional[str] = None


@dataclass(frozen=True)
class DeliveryLine:
    delivery: Delivery
    product: Product


@dataclass(frozen=True)
class RouteItem:
    customer: Customer
    lines: Tuple[DeliveryLine, ...]
    total_amount: Decimal
    status: str


@dataclass(frozen=True)
class State:
    customers: dict = field(default_factory=dict)
    products: dict = field(default_factory=dict)
    subscriptions: dict = field(default_factory=dict)
    deliveries: dict = field(default_factory=dict)
    payments: dict = field(default_factory=dict)


# action is "save" or "delete"
Effect = namedtuple("Effect", ["action", "record"])


def save(record):
    return Effect("save", record)


def delete(record):
    return Effect("delete", record)
