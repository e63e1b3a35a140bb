from __future__ import annotations

import os

from services.api.app.config import get_settings
from services.api.app.llm.base import LanguageModelGateway
from services.api.app.llm.fake import FakeLanguageModel


def get_language_model() -> LanguageModelGateway:
    """Select the language model provider.

    Default is the deterministic fake to keep local dev and tests stable.
    Set JAJ_LLM_PROVIDER=openai (OPENAI_API_KEY) or JAJ_LLM_PROVIDER=gemini (GEMINI_API_KEY).
    """

    provider = os.getenv("JAJ_LLM_PROVIDER", "fake").strip().lower()
    timeout_s = get_settings().llm_timeout_s

    if provider == "fake":
        return FakeLanguageModel()

    if provider == "openai":
        from services.api.app.llm.openai_model import OpenAILanguageModel, default_openai_model

        api_key = os.getenv("OPENAI_API_KEY", "").strip()
        if not api_key:
            raise ValueError("OPENAI_API_KEY is required when JAJ_LLM_PROVIDER=openai")

        return OpenAILanguageModel(
            api_key=api_key, model=default_openai_model(), timeout_s=timeout_s
        )

    if provider == "gemini":
        from services.api.app.llm.gemini_model import GeminiLanguageModel, default_gemini_model

        api_key = os.getenv("GEMINI_API_KEY", "").strip()
        if not api_key:
            raise ValueError("GEMINI_API_KEY is required when JAJ_LLM_PROVIDER=gemini")

        return GeminiLanguageModel(
            api_key=api_key, model=default_gemini_model(), timeout_s=timeout_s
        )

    raise ValueError(f"Unknown JAJ_LLM_PROVIDER={provider!r}. Expected fake, openai or gemini.")
