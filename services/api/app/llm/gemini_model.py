from __future__ import annotations

import logging
import os
from urllib.parse import quote

from services.api.app.llm.base import ExtractionResult, LanguageModelError
from services.api.app.llm.http_util import post_json
from services.api.app.llm.parsing import parse_line_requests
from services.api.app.llm.prompts import (
    COMPOSITION_SYSTEM_PROMPT,
    EXTRACTION_SYSTEM_PROMPT,
    composition_user_prompt,
    extraction_user_prompt,
)
from services.api.app.services.pricing import PricedLine

logger = logging.getLogger(__name__)

_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiLanguageModel:
    """Extraction and composition via the Gemini generateContent REST endpoint."""

    provider = "gemini"

    def __init__(self, *, api_key: str, model: str, timeout_s: float) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout_s = timeout_s

    def extract_lines(self, message: str) -> ExtractionResult:
        content = self._generate(EXTRACTION_SYSTEM_PROMPT, extraction_user_prompt(message), 0.0)
        result = parse_line_requests(content)
        if result.parse_error:
            logger.warning("Gemini extraction unparseable: %s", result.parse_error)
        return result

    def compose_summary(
        self,
        lines: list[PricedLine],
        subtotal: int,
        *,
        currency: str,
        transport_fee: int | None = None,
        total: int | None = None,
    ) -> str:
        user = composition_user_prompt(
            lines, subtotal, currency=currency, transport_fee=transport_fee, total=total
        )
        return self._generate(COMPOSITION_SYSTEM_PROMPT, user, 0.3).strip()

    def _generate(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        url = f"{_BASE_URL}/{quote(self._model)}:generateContent"
        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": {"temperature": temperature},
        }
        payload = post_json(
            url,
            body,
            headers={"x-goog-api-key": self._api_key},
            timeout_s=self._timeout_s,
            provider="Gemini",
        )

        try:
            parts = payload["candidates"][0]["content"]["parts"]
        except (KeyError, IndexError, TypeError) as e:
            raise LanguageModelError(f"Unexpected Gemini response shape: {payload!r}") from e

        # The answer may arrive split across several text parts.
        return "".join(str(p.get("text") or "") for p in parts if isinstance(p, dict))


def default_gemini_model() -> str:
    return os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
