from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import date as date_type, datetime, time
import re

from pizzaday.app.core.constants import MAX_TOPPINGS_PER_PIZZA, PHONE_PATTERN, VALID_ORDER_STATUSES
from pizzaday.app.core.text import sanitize_user_input, normalize_phone


# --- Categories ---
class CategoryCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    sort_order: int = Field(default=0, ge=0)
    is_topping: bool = False

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        return sanitize_user_input(v, max_length=100)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    sort_order: Optional[int] = Field(default=None, ge=0)
    is_topping: Optional[bool] = None

    @field_validator("name")
    @classmethod
    def sanitize_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=100)


class CategoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sort_order: int
    is_topping: bool


# --- Menu items ---
class MenuItemCreate(BaseModel):
    category_id: int
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    weight_grams: Optional[int] = Field(default=None, gt=0)
    active: bool = True
    sort_order: int = Field(default=0, ge=0)

    @field_validator("name", "description")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=500)


class MenuItemUpdate(BaseModel):
    """All fields optional; only the ones sent are changed."""
    category_id: Optional[int] = None
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=500)
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    weight_grams: Optional[int] = Field(default=None, gt=0)
    active: Optional[bool] = None
    sort_order: Optional[int] = Field(default=None, ge=0)

    @field_validator("name", "description")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=500)


class MenuItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    weight_grams: Optional[int] = None
    active: bool
    sort_order: int
    category_name: Optional[str] = None
    is_topping: bool = False


class MenuCategoryResponse(CategoryResponse):
    items: List[MenuItemResponse] = []


# --- Pizza days ---
class PizzaDayCreate(BaseModel):
    date: date_type
    active: bool = True
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("note")
    @classmethod
    def sanitize_note(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=500)


class PizzaDayUpdate(BaseModel):
    date: Optional[date_type] = None
    active: Optional[bool] = None
    note: Optional[str] = Field(default=None, max_length=500)

    @field_validator("note")
    @classmethod
    def sanitize_note(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=500)


# --- Time slots ---
class TimeSlotCreate(BaseModel):
    # committed_count is owned by the reservation engine and never accepted here
    model_config = ConfigDict(extra="forbid")

    time_from: time
    time_to: time
    capacity: int = Field(gt=0)
    is_open: bool = True

    @model_validator(mode="after")
    def check_range(self):
        if self.time_from >= self.time_to:
            raise ValueError("time_from must be before time_to")
        return self


class TimeSlotUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    time_from: Optional[time] = None
    time_to: Optional[time] = None
    capacity: Optional[int] = Field(default=None, gt=0)
    is_open: Optional[bool] = None

    @model_validator(mode="after")
    def check_range(self):
        if self.time_from is not None and self.time_to is not None and self.time_from >= self.time_to:
            raise ValueError("time_from must be before time_to")
        return self


class TimeSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    pizza_day_id: int
    time_from: time
    time_to: time
    capacity: int
    committed_count: int
    remaining: int
    is_open: bool
    is_frozen: bool
    frozen_reason: Optional[str] = None


class PublicTimeSlotResponse(BaseModel):
    """Slot as customers see it: no internal quarantine details."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    time_from: time
    time_to: time
    capacity: int
    remaining: int
    is_available: bool


class PizzaDayResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date_type
    active: bool
    note: Optional[str] = None
    created_at: Optional[datetime] = None
    slot_count: int = 0


class PublicPizzaDayResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: date_type
    note: Optional[str] = None
    time_slots: List[PublicTimeSlotResponse] = []


class SlotAuditResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    slot_id: int
    committed_count: int
    reserved_total: int
    consistent: bool
    frozen: bool


# --- Orders ---
class CheckoutItem(BaseModel):
    menu_item_id: int
    quantity: int = Field(ge=1, le=50)
    topping_ids: List[int] = Field(default_factory=list)

    @field_validator("topping_ids")
    @classmethod
    def limit_toppings(cls, v: List[int]) -> List[int]:
        if len(v) > MAX_TOPPINGS_PER_PIZZA:
            raise ValueError(f"At most {MAX_TOPPINGS_PER_PIZZA} toppings per pizza")
        return v


class CheckoutBody(BaseModel):
    time_slot_id: int
    pizza_day_id: Optional[int] = None
    customer_name: str = Field(min_length=2, max_length=100)
    customer_phone: str
    customer_email: Optional[EmailStr] = None
    customer_address: Optional[str] = Field(default=None, max_length=500)
    customer_note: Optional[str] = Field(default=None, max_length=500)
    items: List[CheckoutItem] = Field(min_length=1)

    @field_validator("customer_name")
    @classmethod
    def sanitize_name(cls, v: str) -> str:
        v = sanitize_user_input(v, max_length=100)
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v

    @field_validator("customer_phone")
    @classmethod
    def validate_phone(cls, v: str) -> str:
        v = v.strip()
        if not re.match(PHONE_PATTERN, v):
            raise ValueError("Invalid phone number, expected +421... or 0...")
        return normalize_phone(v)

    @field_validator("customer_address", "customer_note")
    @classmethod
    def sanitize_text_fields(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return sanitize_user_input(v, max_length=500) or None


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    menu_item_id: Optional[int] = None
    item_name: str
    item_price: Decimal
    quantity: int
    is_topping: bool


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: str
    time_slot_id: int
    pizza_day_id: int
    reservation_id: Optional[str] = None
    customer_name: str
    customer_phone: str
    customer_email: Optional[str] = None
    customer_address: Optional[str] = None
    customer_note: Optional[str] = None
    status: str
    total_price: Decimal
    pizza_count: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []


class PublicOrderResponse(BaseModel):
    """Confirmation view for the customer, looked up by public_id."""
    model_config = ConfigDict(from_attributes=True)

    public_id: str
    status: str
    customer_name: str
    time_slot_id: int
    pizza_day_id: int
    total_price: Decimal
    pizza_count: int
    created_at: datetime
    items: List[OrderItemResponse] = []


class OrderStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in VALID_ORDER_STATUSES:
            raise ValueError(f"Status must be one of {VALID_ORDER_STATUSES}")
        return v


class OrderListResponse(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    per_page: int
    pages: int


class OrderStatsResponse(BaseModel):
    total_orders: int
    by_status: dict[str, int]
    total_revenue: Decimal
    total_pizzas: int


# --- Admin ---
class AdminLoginBody(BaseModel):
    login: str
    password: str


class SweepResponse(BaseModel):
    released: int
