from __future__ import annotations

import json
import logging
import socket
import urllib.error
import urllib.request
from typing import Any

from services.api.app.services.catalog_base import (
    CatalogItem,
    CatalogLookupError,
    CatalogResponseError,
    CatalogTimeoutError,
)

logger = logging.getLogger(__name__)

_FIELDS = ["id", "name", "category", "price_ugx", "available"]


class HttpCatalogClient:
    """Catalog lookups against the search service's /query endpoint.

    The service does a fuzzy text match over the items table and answers with a JSON array
    of records. Records are validated one by one; anything that does not look like an item
    fails the lookup rather than being guessed at.
    """

    source = "CATALOG_HTTP"

    def __init__(self, *, base_url: str, timeout_s: float) -> None:
        self._url = base_url.rstrip("/") + "/query"
        self._timeout_s = timeout_s

    def query(self, text: str, max_results: int = 1) -> list[CatalogItem]:
        body = {
            "model": "items",
            "fields": _FIELDS,
            "queryText": text,
            "maxResults": max_results,
        }

        req = urllib.request.Request(self._url, method="POST")
        req.add_header("Content-Type", "application/json")

        try:
            with urllib.request.urlopen(
                req, data=json.dumps(body).encode("utf-8"), timeout=self._timeout_s
            ) as resp:
                raw = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            detail = e.read().decode("utf-8", errors="replace")
            raise CatalogLookupError(f"Catalog HTTP {e.code}: {detail}") from e
        except urllib.error.URLError as e:
            if isinstance(e.reason, (TimeoutError, socket.timeout)):
                raise CatalogTimeoutError(self._timeout_s) from e
            raise CatalogLookupError(f"Catalog unreachable: {e.reason}") from e
        except (TimeoutError, socket.timeout) as e:
            raise CatalogTimeoutError(self._timeout_s) from e

        items = parse_catalog_payload(raw)
        logger.debug("Catalog query %r returned %d item(s)", text, len(items))
        return items[:max_results]


def parse_catalog_payload(raw: str) -> list[CatalogItem]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CatalogResponseError("body is not JSON", raw) from e

    if not isinstance(data, list):
        raise CatalogResponseError("expected a JSON array", raw)

    return [_item_from_record(record, raw) for record in data]


def _item_from_record(record: Any, raw: str) -> CatalogItem:
    if not isinstance(record, dict):
        raise CatalogResponseError("item record is not an object", raw)

    item_id = record.get("id")
    name = record.get("name")
    if item_id is None or not isinstance(name, str) or not name.strip():
        raise CatalogResponseError("item record is missing id or name", raw)

    price = record.get("price_ugx", record.get("price"))
    if isinstance(price, bool) or not isinstance(price, (int, float)) or price < 0:
        raise CatalogResponseError(f"item {name!r} has no usable price", raw)

    available = record.get("available")
    if not isinstance(available, bool):
        available = False

    return CatalogItem(
        id=str(item_id),
        name=name.strip(),
        category=str(record.get("category") or ""),
        price=int(price),
        available=available,
    )
