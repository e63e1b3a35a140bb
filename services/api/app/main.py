"""JAJ API service entrypoint."""

from fastapi import FastAPI

from services.api.app.db.init_db import init_db
from services.api.app.logging_config import setup_logging
from services.api.app.routers.chat import router as chat_router
from services.api.app.routers.orders import router as orders_router
from services.api.app.services.notifications import shutdown_notification_dispatcher

setup_logging()

app = FastAPI(title="JAJ API")

app.include_router(chat_router)
app.include_router(orders_router)


@app.on_event("startup")
def _startup() -> None:
    init_db()


@app.on_event("shutdown")
def _shutdown() -> None:
    shutdown_notification_dispatcher()


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}
