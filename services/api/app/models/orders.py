from __future__ import annotations

from packages.shared.schemas.chat_v1 import LineRequestV1
from pydantic import BaseModel, Field


class PlaceOrderRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    items: list[LineRequestV1] = Field(..., min_length=1)
