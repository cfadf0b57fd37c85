from datetime import datetime
from typing import List, Literal, Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator
from pydantic.alias_generators import to_camel

from .state_machine import ORDER_STATUSES, PAYMENT_STATUSES

PaymentMethod = Literal["pending", "UPI", "Debit Card", "Credit Card", "Cash on Delivery", "Net Banking"]


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


class OrderItemCreate(CamelModel):
    # The storefront historically sent the product id as "id"
    product_id: str = Field(min_length=1, validation_alias=AliasChoices("productId", "product_id", "id"))
    quantity: int = Field(gt=0)


class ShippingAddress(CamelModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(min_length=1)
    country: Optional[str] = None


class OrderCreate(CamelModel):
    items: List[OrderItemCreate] = Field(min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod = "pending"
    source: Literal["web", "mobile", "api"] = "web"
    notes: Optional[str] = None


class StatusUpdate(CamelModel):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_something_changes(self):
        if self.status is None and self.payment_status is None:
            raise ValueError("Provide status and/or paymentStatus")
        if self.status is not None and self.status not in ORDER_STATUSES:
            raise ValueError(f"status must be one of {', '.join(ORDER_STATUSES)}")
        if self.payment_status is not None and self.payment_status not in PAYMENT_STATUSES:
            raise ValueError(f"paymentStatus must be one of {', '.join(PAYMENT_STATUSES)}")
        return self


class CancelRequest(CamelModel):
    notes: Optional[str] = None


class OrderItemResponse(CamelModel):
    product_id: str
    product_name: str
    product_image: Optional[str] = None
    quantity: int
    unit_price: float
    total_price: float


class StatusHistoryResponse(CamelModel):
    status: str
    previous_status: Optional[str] = None
    changed_by: Optional[int] = None
    changed_by_role: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class OrderResponse(CamelModel):
    id: int
    order_number: str
    user_id: int
    status: str
    payment_status: str
    payment_method: str
    total_amount: float
    subtotal: float
    currency: str
    shipping_address: dict
    source: str
    notes: Optional[str] = None
    reservation_id: str
    reservation_status: str
    inventory_sync_pending: bool
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse] = []
    status_history: List[StatusHistoryResponse] = []


class ReconcileResponse(CamelModel):
    checked: int
    settled: int
    failed: int = 0
    still_pending: int
    orphans_released: int = 0
