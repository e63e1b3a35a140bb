from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from packages.shared.schemas.chat_v1 import LineRequestV1
from services.api.app.services.pricing import PricedLine


class LanguageModelError(Exception):
    """Base class for text-generation service errors."""


class LanguageModelTimeoutError(LanguageModelError):
    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Language model call timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s


@dataclass(frozen=True, slots=True)
class ExtractionResult:
    """What the model said, and what we could make of it.

    `lines` is empty whenever `parse_error` is set: a malformed answer means nothing was
    recognised.
    """

    raw_payload: str
    lines: list[LineRequestV1] = field(default_factory=list)
    parse_error: str | None = None


class LanguageModelGateway(Protocol):
    provider: str

    def extract_lines(self, message: str) -> ExtractionResult: ...

    def compose_summary(
        self,
        lines: list[PricedLine],
        subtotal: int,
        *,
        currency: str,
        transport_fee: int | None = None,
        total: int | None = None,
    ) -> str: ...
