from pydantic import BaseModel, ConfigDict, Field, computed_field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from datetime import date, datetime, timezone
from enum import Enum


def today() -> str:
    return date.today().isoformat()


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CamelModel(BaseModel):
    """Records are stored and served with the camelCase keys of the mobile client"""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


# Inventory

class InventoryStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


LOW_STOCK_THRESHOLD = 10


def derive_status(quantity: int) -> InventoryStatus:
    if quantity <= 0:
        return InventoryStatus.OUT_OF_STOCK
    if quantity <= LOW_STOCK_THRESHOLD:
        return InventoryStatus.LOW_STOCK
    return InventoryStatus.IN_STOCK


class InventoryItemBase(CamelModel):
    vehicle_model: str = Field(min_length=1)
    color: str = Field(min_length=1)
    warehouse_location: str = Field(min_length=1)
    quantity: int = Field(ge=0)
    price: int = Field(default=0, ge=0)


class InventoryItemCreate(InventoryItemBase):
    pass


class InventoryItemUpdate(CamelModel):
    vehicle_model: Optional[str] = None
    color: Optional[str] = None
    warehouse_location: Optional[str] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    price: Optional[int] = Field(default=None, ge=0)


class InventoryItem(InventoryItemBase):
    id: str
    last_updated: str = Field(default_factory=today)

    @computed_field
    @property
    def status(self) -> InventoryStatus:
        # Never read back from storage
        return derive_status(self.quantity)

    def matches(self, vehicle_model: str, color: str, warehouse_location: str) -> bool:
        return (
            self.vehicle_model == vehicle_model
            and self.color == color
            and self.warehouse_location == warehouse_location
        )


class InventoryStats(CamelModel):
    total_items: int
    in_stock_items: int
    low_stock_items: int
    out_of_stock_items: int
    total_quantity: int
    total_value: int


class QuantityChange(CamelModel):
    vehicle_model: str
    color: str
    warehouse_location: str
    amount: int


# Orders and allocations

class OrderStatus(str, Enum):
    PENDING = "pending"
    PENDING_ALLOCATION = "pending_allocation"
    ALLOCATED = "allocated"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderPriority(str, Enum):
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"


class OrderCreate(CamelModel):
    dealer_id: str
    dealer_name: str = ""
    vehicle_model: str = Field(min_length=1)
    quantity: int = Field(gt=0)
    color: str = Field(min_length=1)
    status: OrderStatus = OrderStatus.PENDING
    order_date: Optional[str] = None
    expected_delivery: Optional[str] = None
    total_value: int = Field(default=0, ge=0)
    priority: OrderPriority = OrderPriority.NORMAL


class OrderUpdate(CamelModel):
    dealer_name: Optional[str] = None
    vehicle_model: Optional[str] = None
    quantity: Optional[int] = Field(default=None, gt=0)
    color: Optional[str] = None
    status: Optional[OrderStatus] = None
    expected_delivery: Optional[str] = None
    total_value: Optional[int] = Field(default=None, ge=0)
    priority: Optional[OrderPriority] = None


class Order(CamelModel):
    id: str
    dealer_id: str
    dealer_name: str = ""
    vehicle_model: str
    quantity: int
    color: str
    status: OrderStatus = OrderStatus.PENDING
    order_date: str = Field(default_factory=today)
    expected_delivery: Optional[str] = None
    total_value: int = 0
    priority: OrderPriority = OrderPriority.NORMAL
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: Optional[str] = None


class AllocationStatus(str, Enum):
    ALLOCATED = "allocated"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class AllocationCreate(CamelModel):
    order_id: str
    dealer_id: str = ""
    dealer_name: str = ""
    vehicle_model: str
    quantity: int = Field(gt=0)
    color: str
    warehouse_location: str
    estimated_delivery: Optional[str] = None
    notes: str = ""


class Allocation(AllocationCreate):
    id: str
    status: AllocationStatus = AllocationStatus.ALLOCATED
    allocated_date: str = Field(default_factory=today)
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: Optional[str] = None


class AllocationStatusUpdate(CamelModel):
    status: AllocationStatus


class AllocationRequest(CamelModel):
    """Input of the allocation flow: which order, from which warehouse"""
    order_id: str
    warehouse_location: str
    estimated_delivery: str = Field(default_factory=today)
    notes: str = ""


class IntentState(str, Enum):
    PENDING = "pending"
    REDUCED = "reduced"
    COMPENSATING = "compensating"
    COMPLETED = "completed"
    ABORTED = "aborted"
    COMPENSATED = "compensated"
    COMPENSATION_FAILED = "compensation_failed"
    NEEDS_REVIEW = "needs_review"


class AllocationIntent(CamelModel):
    id: str
    order_id: str
    vehicle_model: str
    color: str
    warehouse_location: str
    quantity: int
    state: IntentState = IntentState.PENDING
    allocation_id: Optional[str] = None
    error: Optional[str] = None
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: Optional[str] = None


class ReconcileReport(CamelModel):
    completed: List[str] = []
    compensated: List[str] = []
    needs_review: List[str] = []
    failed: List[str] = []


class Warehouse(CamelModel):
    id: str
    name: str
    location: str
    capacity: int = 0


# Dealer catalog

class CatalogEntry(CamelModel):
    id: str
    name: str
    model: str
    version: str = "N/A"
    image: Optional[str] = None
    price: int = 0
    currency: str = "VND"
    in_stock: bool = False
    stock_count: int = 0
    color_stocks: Dict[str, int] = {}
    created_at: str = Field(default_factory=today)
    updated_at: str = Field(default_factory=today)


class DeliveredVehicles(CamelModel):
    vehicle_model: str = Field(min_length=1)
    color: Optional[str] = None
    quantity: int = Field(default=1, gt=0)
    version: Optional[str] = None
    image: Optional[str] = None


class ColorStockDecrement(CamelModel):
    vehicle_model_or_id: str
    color: Optional[str] = None
    quantity: int = Field(default=1, gt=0)


class RetailPriceUpdate(CamelModel):
    price: int = Field(ge=0)
    currency: str = "VND"


class RetailPrice(CamelModel):
    model_id: str
    price: int
    currency: str = "VND"


class VersionOption(CamelModel):
    id: str
    name: str


# Dealers

class DealerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class DealerCreate(CamelModel):
    name: str = Field(min_length=1)
    address: str = ""
    phone: str = ""
    email: str = ""
    status: DealerStatus = DealerStatus.ACTIVE


class DealerUpdate(CamelModel):
    name: Optional[str] = None
    address: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    status: Optional[DealerStatus] = None
    rating: Optional[float] = Field(default=None, ge=0, le=5)


class DealerStatusUpdate(CamelModel):
    status: DealerStatus


class Dealer(DealerCreate):
    id: str
    total_sales: int = 0
    total_vehicles: int = 0
    rating: float = 0
    last_order_date: Optional[str] = None


# Promotions

class PromotionStatus(str, Enum):
    DRAFT = "draft"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    PAUSED = "paused"
    EXPIRED = "expired"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class PromotionCreate(CamelModel):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    description: str = ""
    type: DiscountType = DiscountType.PERCENTAGE
    value: int = Field(default=0, ge=0)
    min_order_value: int = Field(default=0, ge=0)
    max_discount: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: PromotionStatus = PromotionStatus.DRAFT
    usage_limit: Optional[int] = Field(default=None, ge=0)
    used_count: int = Field(default=0, ge=0)
    target_audience: str = "customers"


class PromotionUpdate(CamelModel):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    type: Optional[DiscountType] = None
    value: Optional[int] = Field(default=None, ge=0)
    min_order_value: Optional[int] = Field(default=None, ge=0)
    max_discount: Optional[int] = Field(default=None, ge=0)
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: Optional[PromotionStatus] = None
    usage_limit: Optional[int] = Field(default=None, ge=0)
    used_count: Optional[int] = Field(default=None, ge=0)
    target_audience: Optional[str] = None


class Promotion(PromotionCreate):
    id: str
    created_at: str = Field(default_factory=utcnow_iso)
    updated_at: Optional[str] = None


class PromotionStats(CamelModel):
    total: int
    active: int
    scheduled: int
    expired: int
    paused: int
    draft: int


# Service envelope

class ServiceResult(BaseModel):
    """Outcome of a service call; failures are returned, not raised"""
    success: bool
    data: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> "ServiceResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_code: str) -> "ServiceResult":
        return cls(success=False, error=error, error_code=error_code)
