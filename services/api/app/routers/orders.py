from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from packages.shared.schemas.order_v1 import OrderOutV1, OrderStatusV1
from services.api.app.config import get_settings
from services.api.app.db.deps import get_db
from services.api.app.db.models import OrderStatus
from services.api.app.models.orders import PlaceOrderRequest
from services.api.app.routers.errors import raise_http_error
from services.api.app.services.catalog_factory import get_catalog_client
from services.api.app.services.notifications import get_notification_dispatcher, get_notifier
from services.api.app.services.order_service import OrderQuery, OrderService
from sqlalchemy.orm import Session

router = APIRouter()


def get_order_service(db: Session = Depends(get_db)) -> OrderService:
    try:
        catalog = get_catalog_client()
        notifier = get_notifier()
    except ValueError as e:
        raise HTTPException(status_code=500, detail=str(e)) from e

    return OrderService(
        db=db,
        catalog=catalog,
        notifier=notifier,
        dispatcher=get_notification_dispatcher(),
        settings=get_settings(),
    )


@router.post("/v1/orders", response_model=OrderOutV1, status_code=201)
def place_order(
    payload: PlaceOrderRequest,
    service: OrderService = Depends(get_order_service),
) -> OrderOutV1:
    try:
        return service.place_order(payload.user_id, payload.items)
    except Exception as e:
        raise_http_error(e)


@router.get("/v1/orders", response_model=list[OrderOutV1])
def list_orders(
    user_id: str,
    status: OrderStatusV1 | None = None,
    date: str | None = None,
    page: int | None = None,
    limit: int | None = None,
    service: OrderService = Depends(get_order_service),
) -> list[OrderOutV1]:
    query = OrderQuery.lenient(
        status=OrderStatus(status.value) if status is not None else None,
        day=date,
        page=page,
        limit=limit,
    )
    return service.list_orders(user_id, query)


@router.get("/v1/orders/{order_id}", response_model=OrderOutV1)
def get_order(
    order_id: str,
    user_id: str,
    service: OrderService = Depends(get_order_service),
) -> OrderOutV1:
    try:
        return service.get_order(user_id, order_id)
    except Exception as e:
        raise_http_error(e)


@router.delete("/v1/orders/{order_id}", status_code=204, response_class=Response)
def cancel_order(
    order_id: str,
    user_id: str,
    service: OrderService = Depends(get_order_service),
) -> Response:
    try:
        service.cancel_order(user_id, order_id)
    except Exception as e:
        raise_http_error(e)

    return Response(status_code=204)
