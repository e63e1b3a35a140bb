"""Shared chat schema (v1).

The web client renders replies from these payloads. Keep them backwards compatible.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class ReplyOutcomeV1(str, Enum):
    DRAFTED = "DRAFTED"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    OFF_TOPIC = "OFF_TOPIC"
    UNAVAILABLE = "UNAVAILABLE"
    QUANTITY_LIMIT = "QUANTITY_LIMIT"


class LineRequestV1(BaseModel):
    """One product the language model recognised in a chat message."""

    name: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class ChatReplyV1(BaseModel):
    reply: str
    outcome: ReplyOutcomeV1

    # Set whenever the turn touched an order (drafted, confirmed or cancelled).
    order_id: str | None = None
