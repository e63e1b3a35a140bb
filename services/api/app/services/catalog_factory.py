from __future__ import annotations

import os

from services.api.app.config import get_settings
from services.api.app.services.catalog_base import CatalogClient
from services.api.app.services.catalog_mock import MockCatalogClient


def get_catalog_client() -> CatalogClient:
    """Select the catalog client based on env vars.

    Defaults to the in-memory mock so tests and local dev are deterministic.
    Set JAJ_CATALOG_ADAPTER=http and MCP_URL to query the real search service.
    """

    mode = os.getenv("JAJ_CATALOG_ADAPTER", "mock").strip().lower()

    if mode == "mock":
        return MockCatalogClient()

    if mode == "http":
        from services.api.app.services.catalog_http import HttpCatalogClient

        base_url = os.getenv("MCP_URL", "").strip()
        if not base_url:
            raise ValueError("MCP_URL is required when JAJ_CATALOG_ADAPTER=http")

        return HttpCatalogClient(base_url=base_url, timeout_s=get_settings().catalog_timeout_s)

    raise ValueError(f"Unknown JAJ_CATALOG_ADAPTER={mode!r}. Expected mock or http.")
