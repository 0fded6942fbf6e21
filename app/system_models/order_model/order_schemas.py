# app/system_models/order_model/order_schemas.py
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.system_models.prescription_model.prescription_schemas import CamelModel

ORDER_STATUS = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]


class OrderItemInput(CamelModel):
    product_id: int
    quantity: int = Field(..., ge=1, le=100)


class ShippingAddress(CamelModel):
    full_name: str = Field(..., min_length=2, max_length=100)
    street: str = Field(..., min_length=3, max_length=200)
    city: str = Field(..., min_length=2, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    postal_code: str = Field(..., min_length=3, max_length=20)
    country: str = Field("US", max_length=60)
    phone: Optional[str] = None


class OrderCreate(CamelModel):
    items: List[OrderItemInput] = Field(..., min_length=1)
    prescription_ids: List[int] = Field(default_factory=list)
    shipping_address: ShippingAddress
    customer_notes: Optional[str] = Field(None, max_length=500)


class OrderStatusUpdate(CamelModel):
    status: ORDER_STATUS


class OrderItemResponse(CamelModel):
    product_id: int
    name: str
    price: Decimal
    quantity: int
    prescription_required: bool
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class OrderResponse(CamelModel):
    id: int
    order_number: str
    customer_id: int
    status: ORDER_STATUS
    items: List[OrderItemResponse]
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    shipping_address: dict
    customer_notes: Optional[str] = None
    prescription_ids: List[int] = Field(default_factory=list)
    created_at: datetime

    @classmethod
    def from_record(cls, order) -> "OrderResponse":
        return cls(
            id=order.id,
            order_number=order.order_number,
            customer_id=order.customer_id,
            status=order.status,
            items=[OrderItemResponse.model_validate(i) for i in order.items],
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping,
            total=order.total,
            shipping_address=order.shipping_address,
            customer_notes=order.customer_notes,
            prescription_ids=[p.id for p in order.prescriptions],
            created_at=order.created_at,
        )
