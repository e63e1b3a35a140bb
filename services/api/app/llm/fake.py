from __future__ import annotations

import json
import re

from services.api.app.llm.base import ExtractionResult
from services.api.app.llm.parsing import parse_line_requests
from services.api.app.services.catalog_mock import MockCatalogClient
from services.api.app.services.pricing import PricedLine

_NUMBER_WORDS = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
}


def _default_product_names() -> list[str]:
    return [item.name for item in MockCatalogClient().query_all()]


class FakeLanguageModel:
    """Deterministic language model for tests and local dev.

    This is not intended to be "smart": it only spots known product names and a number
    right in front of them. In production, use the OpenAI or Gemini provider.
    """

    provider = "fake"

    def __init__(self, product_names: list[str] | None = None) -> None:
        if product_names is None:
            product_names = _default_product_names()
        self._product_names = product_names

    def extract_lines(self, message: str) -> ExtractionResult:
        text = (message or "").lower()

        found: list[dict[str, object]] = []
        for name in self._product_names:
            key = name.lower()
            if key not in text:
                continue
            found.append({"name": name, "quantity": _quantity_before(text, key)})

        # Round-trip through the real parser so fakes and providers behave alike.
        return parse_line_requests(json.dumps(found))

    def compose_summary(
        self,
        lines: list[PricedLine],
        subtotal: int,
        *,
        currency: str,
        transport_fee: int | None = None,
        total: int | None = None,
    ) -> str:
        parts = [f"{line.quantity} x {line.name} ({line.subtotal} {currency})" for line in lines]
        text = f"You are ordering {', '.join(parts)}. Subtotal: {subtotal} {currency}."
        if transport_fee is not None and total is not None:
            return text + f" Transport fee: {transport_fee} {currency}. Total: {total} {currency}."
        return text + " A transport fee is added once you confirm. Do you confirm this order?"


def _quantity_before(text: str, key: str) -> int:
    m = re.search(rf"\b(\d+|[a-z]+)\s+{re.escape(key)}", text)
    if not m:
        return 1

    token = m.group(1)
    if token.isdigit():
        return max(1, int(token))
    return _NUMBER_WORDS.get(token, 1)
