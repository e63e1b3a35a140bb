from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import time
from zoneinfo import ZoneInfo


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime settings for the ordering core.

    Provider selection (model, catalog, notifier) lives in the factories; this holds the
    business values the orchestrator and order service read on every turn.

    Env vars:
    - JAJ_TIMEZONE (default: Africa/Kampala)
    - JAJ_PICKUP_TIME (default: 18:00)
    - JAJ_PICKUP_LOCATION (default: F2 17)
    - JAJ_CANCEL_CUTOFF (default: 17:00)
    - JAJ_CURRENCY (default: UGX)
    - JAJ_COMPOSE_WITH_LLM (default: false)
    - JAJ_STALE_DRAFT_NOTICE (default: false)
    - JAJ_LLM_TIMEOUT_S (default: 20)
    - JAJ_CATALOG_TIMEOUT_S (default: 10)
    """

    timezone: str = "Africa/Kampala"
    pickup_time: str = "18:00"
    pickup_location: str = "F2 17"
    cancel_cutoff: time = time(17, 0)
    currency: str = "UGX"
    compose_with_llm: bool = False
    stale_draft_notice: bool = False
    llm_timeout_s: float = 20.0
    catalog_timeout_s: float = 10.0

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            timezone=os.getenv("JAJ_TIMEZONE", "Africa/Kampala").strip(),
            pickup_time=os.getenv("JAJ_PICKUP_TIME", "18:00").strip(),
            pickup_location=os.getenv("JAJ_PICKUP_LOCATION", "F2 17").strip(),
            cancel_cutoff=_parse_clock(os.getenv("JAJ_CANCEL_CUTOFF", "17:00")),
            currency=os.getenv("JAJ_CURRENCY", "UGX").strip(),
            compose_with_llm=parse_bool(os.getenv("JAJ_COMPOSE_WITH_LLM", "false")),
            stale_draft_notice=parse_bool(os.getenv("JAJ_STALE_DRAFT_NOTICE", "false")),
            llm_timeout_s=float(os.getenv("JAJ_LLM_TIMEOUT_S", "20")),
            catalog_timeout_s=float(os.getenv("JAJ_CATALOG_TIMEOUT_S", "10")),
        )

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def get_settings() -> Settings:
    return Settings.from_env()


def parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "y"}


def _parse_clock(value: str) -> time:
    try:
        hour, minute = value.strip().split(":", 1)
        return time(int(hour), int(minute))
    except ValueError as e:
        raise ValueError(f"Invalid clock time {value!r}. Expected HH:MM.") from e
