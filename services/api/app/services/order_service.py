from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime

from packages.shared.schemas.chat_v1 import LineRequestV1
from packages.shared.schemas.order_v1 import OrderLineOutV1, OrderOutV1, OrderStatusV1
from services.api.app.config import Settings
from services.api.app.db.models import Order, OrderStatus
from services.api.app.db.order_store import OrderNotFoundError, OrderStore, OrderStoreError
from services.api.app.services.catalog_base import CatalogClient
from services.api.app.services.clock import (
    local_day_bounds,
    local_day_start,
    to_local_iso,
    utc_now,
)
from services.api.app.services.notifications import (
    NotificationDispatcher,
    Notifier,
    OrderCancelledNotice,
    OrderConfirmedNotice,
)
from services.api.app.services.pricing import PricedLine, order_subtotal
from services.api.app.services.turn_locks import UserTurnLocks, turn_locks
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


class OrderOwnershipError(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        super().__init__("not authorized")
        self.order_id = order_id


class CancellationWindowClosedError(OrderStoreError):
    def __init__(self, cutoff: str) -> None:
        super().__init__(f"cancellation window closed at {cutoff}")
        self.cutoff = cutoff


class ProductUnavailableError(OrderStoreError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Product {name!r} is not available")
        self.name = name


@dataclass(frozen=True, slots=True)
class OrderQuery:
    status: OrderStatus | None = None
    day: date | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE

    @classmethod
    def lenient(
        cls,
        *,
        status: OrderStatus | None,
        day: str | None,
        page: int | None,
        limit: int | None,
    ) -> "OrderQuery":
        """Out-of-range paging falls back to defaults; an unreadable date is ignored."""

        parsed_day: date | None = None
        if day:
            try:
                parsed_day = date.fromisoformat(day.strip())
            except ValueError:
                parsed_day = None

        if page is None or page < 1:
            page = 1
        if limit is None or limit < 1 or limit > MAX_PAGE_SIZE:
            limit = DEFAULT_PAGE_SIZE

        return cls(status=status, day=parsed_day, page=page, limit=limit)


class OrderService:
    """Order history, direct ordering and cancel-by-id for the orders page."""

    def __init__(
        self,
        *,
        db: Session,
        catalog: CatalogClient,
        notifier: Notifier,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        locks: UserTurnLocks = turn_locks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = OrderStore(db)
        self._catalog = catalog
        self._notifier = notifier
        self._dispatcher = dispatcher
        self._settings = settings
        self._locks = locks
        self._clock = clock

    def list_orders(self, user_id: str, query: OrderQuery) -> list[OrderOutV1]:
        created_from = created_to = None
        if query.day is not None:
            created_from, created_to = local_day_bounds(query.day, self._settings.tzinfo)

        orders = self._store.list_orders(
            user_id,
            status=query.status,
            created_from=created_from,
            created_to=created_to,
            page=query.page,
            limit=query.limit,
        )
        return [self.to_out(o) for o in orders]

    def get_order(self, user_id: str, order_id: str) -> OrderOutV1:
        return self.to_out(self._owned(user_id, order_id))

    def place_order(self, user_id: str, items: list[LineRequestV1]) -> OrderOutV1:
        """Create a CONFIRMED order straight from a list of products.

        Every product must resolve to an available catalog item, otherwise nothing is stored.
        The fee is priced from today's confirmed orders, as a chat confirmation would be.
        """

        if not items:
            raise ValueError("An order needs at least one item")

        priced: list[PricedLine] = []
        for request in items:
            hits = self._catalog.query(request.name, max_results=1)
            if not hits or not hits[0].available:
                logger.info(
                    "Direct order for user %s refused: %r unavailable", user_id, request.name
                )
                raise ProductUnavailableError(request.name)
            item = hits[0]
            priced.append(
                PricedLine(
                    catalog_item_id=item.id,
                    name=item.name,
                    quantity=request.quantity,
                    unit_price=item.price,
                )
            )

        with self._locks.hold(user_id):
            user = self._store.ensure_user(user_id)
            day_start = local_day_start(self._clock(), self._settings.tzinfo)
            order = self._store.create_confirmed(user_id, priced, day_start=day_start)

            self._dispatcher.submit(
                self._notifier.notify_confirmed,
                OrderConfirmedNotice(
                    order_id=order.id,
                    user_id=user_id,
                    email=user.email,
                    lines=tuple(priced),
                    subtotal=order_subtotal((line.quantity, line.unit_price) for line in priced),
                    transport_fee=order.transport_fee,
                    total=order.total_cost,
                    currency=self._settings.currency,
                    pickup_time=self._settings.pickup_time,
                    pickup_location=self._settings.pickup_location,
                ),
            )
            return self.to_out(order)

    def cancel_order(self, user_id: str, order_id: str) -> OrderOutV1:
        """Cancel a draft or confirmed order before today's local cutoff."""

        with self._locks.hold(user_id):
            order = self._owned(user_id, order_id)

            now_local = self._clock().astimezone(self._settings.tzinfo)
            if now_local.time() > self._settings.cancel_cutoff:
                cutoff = self._settings.cancel_cutoff.strftime("%H:%M")
                logger.info("Cancel of %s refused: past cutoff %s", order.id, cutoff)
                raise CancellationWindowClosedError(cutoff)

            order = self._store.cancel(order.id)
            logger.info("Order %s cancelled by user %s from the orders page", order.id, user_id)

            user = self._store.get_user(user_id)
            self._dispatcher.submit(
                self._notifier.notify_cancelled,
                OrderCancelledNotice(
                    order_id=order.id,
                    user_id=user_id,
                    email=user.email if user else None,
                ),
            )
            return self.to_out(order)

    def to_out(self, order: Order) -> OrderOutV1:
        return OrderOutV1(
            order_id=order.id,
            user_id=order.user_id,
            status=OrderStatusV1(order.status),
            items=[
                OrderLineOutV1(
                    catalog_item_id=line.catalog_item_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    subtotal=line.subtotal,
                )
                for line in order.lines
            ],
            transport_fee=order.transport_fee,
            total_cost=order.total_cost,
            created_at=to_local_iso(order.created_at, self._settings.tzinfo),
            pickup_time=self._settings.pickup_time,
            pickup_location=self._settings.pickup_location,
        )

    def _owned(self, user_id: str, order_id: str) -> Order:
        order = self._store.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.user_id != user_id:
            raise OrderOwnershipError(order_id)
        return order
