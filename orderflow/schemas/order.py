"""
OrderFlow — Pydantic Schemas (orders)
"""
from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from orderflow.models.order import OrderStatus


class DeliveryAddress(BaseModel):
    line1: str = Field(..., min_length=1, max_length=255, examples=["1200 Rue Sainte-Catherine"])
    line2: str | None = Field(None, max_length=255)
    city: str = Field(..., min_length=1, max_length=120)
    region: str = Field(..., min_length=1, max_length=120)
    postal_code: str = Field(..., min_length=1, max_length=20)
    country: str = Field(..., min_length=1, max_length=120)


class OrderItemRequest(BaseModel):
    # Any price sent by the client is ignored; unknown fields are dropped.
    menu_item_id: str = Field(..., examples=["item-001"])
    quantity: int = Field(..., ge=1, le=100)
    notes: str | None = Field(None, max_length=1000)


class OrderCreateRequest(BaseModel):
    restaurant_id: str
    items: list[OrderItemRequest] = Field(..., max_length=50)
    delivery_address: DeliveryAddress
    special_instructions: str | None = Field(None, max_length=500)


class StatusUpdateRequest(BaseModel):
    status: OrderStatus
    notes: str | None = Field(None, max_length=500)


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class OrderItemResponse(BaseModel):
    menu_item_id: str
    name: str
    unit_price: int
    quantity: int
    line_total: int
    notes: str | None = None

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    customer_id: str
    restaurant_id: str
    delivery_partner_id: str | None = None
    status: OrderStatus
    total_price: int
    items: list[OrderItemResponse]
    delivery_address: DeliveryAddress
    special_instructions: str | None = None
    estimated_delivery_at: datetime | None = None
    delivered_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def status_label(self) -> str:
        return self.status.label


class Pagination(BaseModel):
    current_page: int
    total_pages: int
    total_orders: int
    has_next: bool
    has_prev: bool


class OrderPageResponse(BaseModel):
    orders: list[OrderResponse]
    pagination: Pagination


class StatusChangeResponse(BaseModel):
    from_status: OrderStatus | None = None
    to_status: OrderStatus
    changed_by: str
    notes: str | None = None
    changed_at: datetime

    model_config = {"from_attributes": True}
