from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class CatalogLookupError(Exception):
    """Base class for catalog service errors."""


class CatalogTimeoutError(CatalogLookupError):
    def __init__(self, timeout_s: float) -> None:
        super().__init__(f"Catalog lookup timed out after {timeout_s:g}s")
        self.timeout_s = timeout_s


class CatalogResponseError(CatalogLookupError):
    def __init__(self, reason: str, raw_payload: str = "") -> None:
        super().__init__(f"Unexpected catalog response: {reason}")
        self.raw_payload = raw_payload


@dataclass(frozen=True, slots=True)
class CatalogItem:
    id: str
    name: str
    category: str
    price: int
    available: bool


class CatalogClient(Protocol):
    source: str

    def query(self, text: str, max_results: int = 1) -> list[CatalogItem]: ...
