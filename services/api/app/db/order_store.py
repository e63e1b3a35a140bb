"""Persistence for draft and finished orders.

Every method that writes commits before returning, or rolls back and re-raises. Callers
never see a header row without its lines or lines without their header.
"""

from __future__ import annotations

import logging
from datetime import datetime
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from services.api.app.db.models import (
    ACTIVE_STATUSES,
    Order,
    OrderLine,
    OrderStatus,
    User,
)
from services.api.app.services.pricing import (
    PricedLine,
    line_subtotal,
    order_total,
    transport_fee,
)

logger = logging.getLogger(__name__)


class OrderStoreError(Exception):
    """Base class for order store rejections."""


class DraftConflictError(OrderStoreError):
    def __init__(self, user_id: str, existing_order_id: str) -> None:
        super().__init__(f"User {user_id} already has an active draft ({existing_order_id})")
        self.user_id = user_id
        self.existing_order_id = existing_order_id


class OrderNotFoundError(OrderStoreError):
    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} not found")
        self.order_id = order_id


class OrderNotActiveError(OrderStoreError):
    def __init__(self, order_id: str, status: str) -> None:
        super().__init__(f"Order {order_id} is {status}, not an active draft")
        self.order_id = order_id
        self.status = status


class OrderStore:
    def __init__(self, db: Session) -> None:
        self._db = db

    def ensure_user(self, user_id: str, email: str | None = None) -> User:
        user = self._db.get(User, user_id)
        if user is None:
            user = User(id=user_id, email=email, display_name=user_id)
            self._db.add(user)
        elif email and user.email != email:
            user.email = email
        else:
            return user

        self._commit()
        return user

    def get_user(self, user_id: str) -> User | None:
        return self._db.get(User, user_id)

    def get_order(self, order_id: str) -> Order | None:
        return self._db.get(Order, order_id)

    def find_active_draft(self, user_id: str) -> Order | None:
        return self._db.scalars(
            select(Order)
            .where(Order.user_id == user_id, Order.status.in_(ACTIVE_STATUSES))
            .order_by(Order.created_at.desc())
            .limit(1)
        ).first()

    def create_draft(self, user_id: str, lines: list[PricedLine]) -> Order:
        """Insert a BUILDING order and all of its lines in one transaction.

        The unique index on active orders makes a racing second draft fail on insert, even when
        the other draft was committed by another worker after the check below.
        """

        if not lines:
            raise ValueError("A draft needs at least one line")

        try:
            existing = self.find_active_draft(user_id)
            if existing is not None:
                raise DraftConflictError(user_id, existing.id)

            order = self._insert_header(user_id, OrderStatus.BUILDING, fee=0, total=0)
            for line in lines:
                self.add_line(order.id, line)

            self._db.commit()
        except IntegrityError as e:
            self._db.rollback()
            existing_id = self._newest_active_id(user_id)
            if existing_id is None:
                raise
            raise DraftConflictError(user_id, existing_id) from e
        except Exception:
            self._db.rollback()
            raise

        logger.info("Draft %s created for user %s with %d line(s)", order.id, user_id, len(lines))
        return order

    def create_confirmed(
        self, user_id: str, lines: list[PricedLine], *, day_start: datetime
    ) -> Order:
        """Insert an already CONFIRMED order, fee and total priced, in one transaction.

        Used for orders placed from a structured item list. Active drafts are left alone.
        """

        if not lines:
            raise ValueError("An order needs at least one line")

        try:
            prior = self.count_confirmed_since(user_id, day_start)
            fee = transport_fee(prior + 1)
            total = order_total(((line.quantity, line.unit_price) for line in lines), fee)

            order = self._insert_header(user_id, OrderStatus.CONFIRMED, fee=fee, total=total)
            for line in lines:
                self._append_line(order, line)

            self._db.commit()
        except Exception:
            self._db.rollback()
            raise

        logger.info(
            "Order %s placed confirmed for user %s (confirmed today=%d, fee=%d, total=%d)",
            order.id,
            user_id,
            prior + 1,
            fee,
            total,
        )
        return order

    def add_line(self, order_id: str, line: PricedLine) -> OrderLine:
        """Add a line to an active draft. Flushes only; the caller owns the commit."""

        order = self._require(order_id)
        if not order.is_active:
            raise OrderNotActiveError(order_id, order.status)
        return self._append_line(order, line)

    def finalize(self, order_id: str, status: OrderStatus, fee: int, total: int) -> Order:
        order = self._require(order_id)
        order.status = status.value
        order.transport_fee = fee
        order.total_cost = total
        self._commit()
        return order

    def confirm(self, order_id: str, *, day_start: datetime) -> Order:
        """Confirm an active draft and price its transport fee.

        The fee tier is the count of the owner's orders already confirmed since `day_start`
        (UTC, naive) plus this one.
        """

        try:
            order = self._db.get(Order, order_id, with_for_update=True)
            if order is None:
                raise OrderNotFoundError(order_id)
            if not order.is_active:
                raise OrderNotActiveError(order_id, order.status)

            prior = self.count_confirmed_since(order.user_id, day_start, exclude_order_id=order.id)
            fee = transport_fee(prior + 1)
            total = order_total(((line.quantity, line.unit_price) for line in order.lines), fee)
        except Exception:
            self._db.rollback()
            raise

        order = self.finalize(order_id, OrderStatus.CONFIRMED, fee, total)
        logger.info(
            "Order %s confirmed (confirmed today=%d, fee=%d, total=%d)",
            order.id,
            prior + 1,
            fee,
            total,
        )
        return order

    def cancel(self, order_id: str) -> Order:
        order = self._require(order_id)
        if order.status == OrderStatus.CANCELLED.value:
            raise OrderNotActiveError(order_id, order.status)

        order.status = OrderStatus.CANCELLED.value
        self._commit()
        logger.info("Order %s cancelled", order_id)
        return order

    def count_confirmed_since(
        self,
        user_id: str,
        since: datetime,
        *,
        exclude_order_id: str | None = None,
    ) -> int:
        stmt = select(func.count(Order.id)).where(
            Order.user_id == user_id,
            Order.status == OrderStatus.CONFIRMED.value,
            Order.created_at >= since,
        )
        if exclude_order_id is not None:
            stmt = stmt.where(Order.id != exclude_order_id)
        return int(self._db.scalar(stmt) or 0)

    def list_orders(
        self,
        user_id: str,
        *,
        status: OrderStatus | None = None,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> list[Order]:
        stmt = select(Order).where(Order.user_id == user_id)
        if status is not None:
            stmt = stmt.where(Order.status == status.value)
        if created_from is not None:
            stmt = stmt.where(Order.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(Order.created_at < created_to)

        stmt = stmt.order_by(Order.created_at.desc()).limit(limit).offset((page - 1) * limit)
        return list(self._db.scalars(stmt).all())

    def _insert_header(self, user_id: str, status: OrderStatus, *, fee: int, total: int) -> Order:
        order = Order(
            id=uuid4().hex,
            user_id=user_id,
            status=status.value,
            transport_fee=fee,
            total_cost=total,
        )
        self._db.add(order)
        self._db.flush()
        return order

    def _append_line(self, order: Order, line: PricedLine) -> OrderLine:
        # Rejects out-of-range quantities and prices before anything is written.
        line_subtotal(line.quantity, line.unit_price)

        row = OrderLine(
            id=uuid4().hex,
            order_id=order.id,
            position=len(order.lines),
            catalog_item_id=line.catalog_item_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
        )
        order.lines.append(row)
        self._db.flush()
        return row

    def _newest_active_id(self, user_id: str) -> str | None:
        return self._db.scalar(
            select(Order.id)
            .where(Order.user_id == user_id, Order.status.in_(ACTIVE_STATUSES))
            .order_by(Order.created_at.desc())
            .limit(1)
        )

    def _require(self, order_id: str) -> Order:
        order = self._db.get(Order, order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def _commit(self) -> None:
        try:
            self._db.commit()
        except SQLAlchemyError:
            self._db.rollback()
            raise
