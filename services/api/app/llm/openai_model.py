from __future__ import annotations

import logging
import os

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

_URL = "https://api.openai.com/v1/chat/completions"


class OpenAILanguageModel:
    """Extraction and composition via OpenAI chat completions.

    Extraction runs at temperature 0 and is parsed leniently; a malformed answer is
    reported as nothing recognised. Transport failures raise LanguageModelError.
    """

    provider = "openai"

    def __init__(self, *, api_key: str, model: str, timeout_s: float) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout_s = timeout_s

    def extract_lines(self, message: str) -> ExtractionResult:
        content = self._chat(EXTRACTION_SYSTEM_PROMPT, extraction_user_prompt(message), 0.0)
        result = parse_line_requests(content)
        if result.parse_error:
            logger.warning("OpenAI extraction unparseable: %s", result.parse_error)
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
        return self._chat(COMPOSITION_SYSTEM_PROMPT, user, 0.3).strip()

    def _chat(self, system_prompt: str, user_prompt: str, temperature: float) -> str:
        body = {
            "model": self._model,
            "temperature": temperature,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
        }
        payload = post_json(
            _URL,
            body,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout_s=self._timeout_s,
            provider="OpenAI",
        )

        try:
            return str(payload["choices"][0]["message"]["content"] or "")
        except (KeyError, IndexError, TypeError) as e:
            raise LanguageModelError(f"Unexpected OpenAI response shape: {payload!r}") from e


def default_openai_model() -> str:
    return os.getenv("JAJ_LLM_MODEL", "gpt-4o-mini")
