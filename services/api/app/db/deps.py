from __future__ import annotations

from collections.abc import Generator

from services.api.app.db.database import db_session
from sqlalchemy.orm import Session


def get_db() -> Generator[Session, None, None]:
    db = db_session()
    try:
        yield db
    except Exception:
        # Never hand a half-written draft back to the pool.
        db.rollback()
        raise
    finally:
        db.close()
