from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import HTTPException
from services.api.app.db.order_store import (
    DraftConflictError,
    OrderNotActiveError,
    OrderNotFoundError,
)
from services.api.app.llm.base import LanguageModelError, LanguageModelTimeoutError
from services.api.app.services.catalog_base import CatalogLookupError, CatalogTimeoutError
from services.api.app.services.order_service import (
    CancellationWindowClosedError,
    OrderOwnershipError,
    ProductUnavailableError,
)
from services.api.app.services.pricing import PricingError

logger = logging.getLogger(__name__)


def raise_http_error(e: Exception) -> NoReturn:
    if isinstance(e, HTTPException):
        raise e

    if isinstance(e, LanguageModelTimeoutError):
        logger.error("Language model timed out: %s", e)
        raise HTTPException(status_code=504, detail="Language model timed out") from e

    if isinstance(e, LanguageModelError):
        logger.error("Language model failed: %s", e)
        raise HTTPException(status_code=502, detail="Language model unavailable") from e

    if isinstance(e, CatalogTimeoutError):
        logger.error("Catalog timed out: %s", e)
        raise HTTPException(status_code=504, detail="Catalog timed out") from e

    if isinstance(e, CatalogLookupError):
        logger.error("Catalog lookup failed: %s", e)
        raise HTTPException(status_code=502, detail="Catalog unavailable") from e

    if isinstance(e, PricingError):
        raise HTTPException(status_code=422, detail=str(e)) from e

    if isinstance(e, ProductUnavailableError):
        raise HTTPException(status_code=400, detail=str(e)) from e

    if isinstance(e, OrderNotFoundError):
        raise HTTPException(status_code=404, detail="Order not found") from e

    if isinstance(e, OrderOwnershipError):
        raise HTTPException(status_code=403, detail=str(e)) from e

    if isinstance(e, CancellationWindowClosedError):
        raise HTTPException(status_code=403, detail=str(e)) from e

    if isinstance(e, (DraftConflictError, OrderNotActiveError)):
        raise HTTPException(status_code=409, detail=str(e)) from e

    logger.exception("Unhandled error", exc_info=e)
    raise HTTPException(status_code=500, detail="Internal Server Error") from e
