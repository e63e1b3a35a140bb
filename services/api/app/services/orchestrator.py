"""One chat turn in, one reply out.

A user has at most one active draft. A turn either answers that draft ("confirm" /
"cancel") or is read as a new shopping request: the language model lists the products it
recognises, each one is checked against the catalog, and the priced lines are stored as a
fresh BUILDING draft in a single transaction. Fees and grand totals are only worked out at
confirmation, when the day's confirmed-order count is final.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from packages.shared.schemas.chat_v1 import ReplyOutcomeV1
from services.api.app.config import Settings
from services.api.app.db.models import Order
from services.api.app.db.order_store import OrderStore
from services.api.app.llm.base import LanguageModelError, LanguageModelGateway
from services.api.app.services.catalog_base import CatalogClient
from services.api.app.services.clock import local_day_start, utc_now
from services.api.app.services.notifications import (
    NotificationDispatcher,
    Notifier,
    OrderCancelledNotice,
    OrderConfirmedNotice,
)
from services.api.app.services.pricing import MAX_LINE_QUANTITY, PricedLine, order_subtotal
from services.api.app.services.turn_locks import UserTurnLocks, turn_locks
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

OFF_TOPIC_REPLY = (
    "Sorry, we cannot help you with that, our goal is to take orders and deliveries."
)
CANCELLED_REPLY = "Your order has been cancelled. If you need anything else, just let me know."
STALE_DRAFT_NOTICE = "Your previous draft order was discarded."


def unavailable_reply(name: str) -> str:
    return f'That product "{name}" is not available at the moment.'


def quantity_limit_reply(name: str) -> str:
    return (
        f'Sorry, we can only take up to {MAX_LINE_QUANTITY} of "{name}" in one order. '
        "Please send a smaller quantity."
    )


class ReplyIntent(str, Enum):
    CONFIRM = "CONFIRM"
    CANCEL = "CANCEL"
    OTHER = "OTHER"


def classify_reply(text: str) -> ReplyIntent:
    """Cheap keyword check used only when the user already has a draft."""

    lowered = (text or "").lower()
    if "confirm" in lowered:
        return ReplyIntent.CONFIRM
    # "cancelled" contains "cancel".
    if "cancel" in lowered:
        return ReplyIntent.CANCEL
    return ReplyIntent.OTHER


@dataclass(frozen=True, slots=True)
class TurnResult:
    reply: str
    outcome: ReplyOutcomeV1
    order_id: str | None = None


class ConversationOrchestrator:
    def __init__(
        self,
        *,
        db: Session,
        language_model: LanguageModelGateway,
        catalog: CatalogClient,
        notifier: Notifier,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        locks: UserTurnLocks = turn_locks,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = OrderStore(db)
        self._language_model = language_model
        self._catalog = catalog
        self._notifier = notifier
        self._dispatcher = dispatcher
        self._settings = settings
        self._locks = locks
        self._clock = clock

    def handle_turn(self, user_id: str, message: str, *, email: str | None = None) -> TurnResult:
        """Handle one chat message.

        Collaborator failures (LanguageModelError, CatalogLookupError) and database errors
        propagate; nothing is left half-written when they do.
        """

        with self._locks.hold(user_id):
            if email:
                self._store.ensure_user(user_id, email)

            draft = self._store.find_active_draft(user_id)
            logger.info("Chat turn for user %s (active draft: %s)", user_id, draft is not None)

            discarded = False
            if draft is not None:
                intent = classify_reply(message)
                if intent is ReplyIntent.CONFIRM:
                    return self._confirm(draft)
                if intent is ReplyIntent.CANCEL:
                    return self._cancel(draft)

                # Not an answer to the draft: drop it so it cannot block the new request.
                self._store.cancel(draft.id)
                discarded = True
                logger.info("Discarded stale draft %s for user %s", draft.id, user_id)

            result = self._new_request(user_id, message)
            if discarded and self._settings.stale_draft_notice:
                return TurnResult(
                    reply=f"{STALE_DRAFT_NOTICE} {result.reply}",
                    outcome=result.outcome,
                    order_id=result.order_id,
                )
            return result

    def _confirm(self, draft: Order) -> TurnResult:
        day_start = local_day_start(self._clock(), self._settings.tzinfo)
        order = self._store.confirm(draft.id, day_start=day_start)

        lines = priced_lines(order)
        user = self._store.get_user(order.user_id)
        notice = OrderConfirmedNotice(
            order_id=order.id,
            user_id=order.user_id,
            email=user.email if user else None,
            lines=tuple(lines),
            subtotal=order_subtotal((line.quantity, line.unit_price) for line in lines),
            transport_fee=order.transport_fee,
            total=order.total_cost,
            currency=self._settings.currency,
            pickup_time=self._settings.pickup_time,
            pickup_location=self._settings.pickup_location,
        )
        self._dispatcher.submit(self._notifier.notify_confirmed, notice)

        reply = (
            "Your order has been confirmed! "
            f"We'll see you at {self._settings.pickup_time} "
            f"at {self._settings.pickup_location}."
        )
        breakdown = self._final_breakdown(notice)
        if breakdown:
            reply = f"{breakdown}\n\n{reply}"

        return TurnResult(
            reply=reply,
            outcome=ReplyOutcomeV1.CONFIRMED,
            order_id=order.id,
        )

    def _cancel(self, draft: Order) -> TurnResult:
        order = self._store.cancel(draft.id)

        user = self._store.get_user(order.user_id)
        notice = OrderCancelledNotice(
            order_id=order.id,
            user_id=order.user_id,
            email=user.email if user else None,
        )
        self._dispatcher.submit(self._notifier.notify_cancelled, notice)

        return TurnResult(
            reply=CANCELLED_REPLY, outcome=ReplyOutcomeV1.CANCELLED, order_id=order.id
        )

    def _new_request(self, user_id: str, message: str) -> TurnResult:
        extraction = self._language_model.extract_lines(message)
        if extraction.parse_error:
            logger.warning(
                "Extraction unparseable for user %s: %s", user_id, extraction.parse_error
            )
        logger.info("Extracted %d line(s) for user %s", len(extraction.lines), user_id)

        if not extraction.lines:
            return TurnResult(reply=OFF_TOPIC_REPLY, outcome=ReplyOutcomeV1.OFF_TOPIC)

        for request in extraction.lines:
            if request.quantity > MAX_LINE_QUANTITY:
                logger.info(
                    "Quantity %d of %r over the limit for user %s",
                    request.quantity,
                    request.name,
                    user_id,
                )
                return TurnResult(
                    reply=quantity_limit_reply(request.name),
                    outcome=ReplyOutcomeV1.QUANTITY_LIMIT,
                )

        # All catalog calls finish before the draft transaction opens.
        priced: list[PricedLine] = []
        for request in extraction.lines:
            hits = self._catalog.query(request.name, max_results=1)
            if not hits or not hits[0].available:
                logger.info("Product %r unavailable for user %s", request.name, user_id)
                return TurnResult(
                    reply=unavailable_reply(request.name), outcome=ReplyOutcomeV1.UNAVAILABLE
                )

            item = hits[0]
            priced.append(
                PricedLine(
                    catalog_item_id=item.id,
                    name=item.name,
                    quantity=request.quantity,
                    unit_price=item.price,
                )
            )

        subtotal = order_subtotal((line.quantity, line.unit_price) for line in priced)
        self._store.ensure_user(user_id)
        order = self._store.create_draft(user_id, priced)

        return TurnResult(
            reply=self._summary(priced, subtotal),
            outcome=ReplyOutcomeV1.DRAFTED,
            order_id=order.id,
        )

    def _final_breakdown(self, notice: OrderConfirmedNotice) -> str | None:
        """Model-phrased recap of the confirmed order, or None to send the plain reply."""

        if not self._settings.compose_with_llm:
            return None
        try:
            composed = self._language_model.compose_summary(
                list(notice.lines),
                notice.subtotal,
                currency=notice.currency,
                transport_fee=notice.transport_fee,
                total=notice.total,
            )
        except LanguageModelError as e:
            # The order is already confirmed; the fixed reply still stands.
            logger.warning("Confirmation composition failed: %s", e)
            return None
        return composed or None

    def _summary(self, lines: list[PricedLine], subtotal: int) -> str:
        if self._settings.compose_with_llm:
            try:
                composed = self._language_model.compose_summary(
                    lines, subtotal, currency=self._settings.currency
                )
            except LanguageModelError as e:
                # The draft is already committed; fall back rather than fail the turn.
                logger.warning("Summary composition failed, using template: %s", e)
            else:
                if composed:
                    return composed

        return render_summary(lines, subtotal, self._settings.currency)


def render_summary(lines: list[PricedLine], subtotal: int, currency: str) -> str:
    items = "\n".join(
        f"- {line.name} × {line.quantity} @ {line.unit_price} {currency} "
        f"= {line.subtotal} {currency}"
        for line in lines
    )
    return (
        "Okay, here's a summary of your order:\n\n"
        f"Items:\n{items}\n\n"
        f"Subtotal: {subtotal} {currency}\n\n"
        "Once you confirm, we'll add a transport fee and give you the grand total.\n\n"
        "Do you confirm the contents of this order?"
    )


def priced_lines(order: Order) -> list[PricedLine]:
    return [
        PricedLine(
            catalog_item_id=line.catalog_item_id,
            name=line.name,
            quantity=line.quantity,
            unit_price=line.unit_price,
        )
        for line in order.lines
    ]
