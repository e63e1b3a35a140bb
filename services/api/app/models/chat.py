from __future__ import annotations

from pydantic import BaseModel, Field


class ChatTurnRequest(BaseModel):
    # Supplied by the session layer; this service never authenticates.
    user_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1, max_length=2000)

    # Stored on the user row so order emails have somewhere to go.
    email: str | None = None
