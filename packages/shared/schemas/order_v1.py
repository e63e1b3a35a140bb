"""Shared order schema (v1).

Used by the orders page to list a user's history and by the chat client to link replies.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class OrderStatusV1(str, Enum):
    BUILDING = "BUILDING"
    AWAITING_CONFIRMATION = "AWAITING_CONFIRMATION"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class OrderLineOutV1(BaseModel):
    catalog_item_id: str
    name: str
    quantity: int
    unit_price: int
    subtotal: int


class OrderOutV1(BaseModel):
    order_id: str
    user_id: str
    status: OrderStatusV1

    items: list[OrderLineOutV1] = Field(default_factory=list)

    # Zero until the order is confirmed.
    transport_fee: int = 0
    total_cost: int = 0

    created_at: str
    pickup_time: str
    pickup_location: str
