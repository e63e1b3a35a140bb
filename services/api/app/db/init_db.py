from __future__ import annotations

import logging
import os

from services.api.app.config import parse_bool
from services.api.app.db.database import get_engine
from services.api.app.db.models import Base

logger = logging.getLogger(__name__)


def init_db() -> None:
    """Create missing tables. Turn JAJ_DB_AUTO_CREATE off where the schema is managed elsewhere."""

    if not parse_bool(os.getenv("JAJ_DB_AUTO_CREATE", "true")):
        logger.info("JAJ_DB_AUTO_CREATE is off; not creating tables")
        return

    engine = get_engine()
    Base.metadata.create_all(bind=engine)
    logger.info("Tables ready on %s", engine.url.render_as_string(hide_password=True))
