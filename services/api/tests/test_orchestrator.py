from __future__ import annotations

import threading
import time
from collections.abc import Iterator
from pathlib import Path

import pytest
from packages.shared.schemas.chat_v1 import ReplyOutcomeV1
from services.api.app.config import Settings
from services.api.app.db.models import ACTIVE_STATUSES, Order, OrderLine, OrderStatus
from services.api.app.db.order_store import OrderStore
from services.api.app.llm.base import ExtractionResult, LanguageModelError
from services.api.app.llm.parsing import parse_line_requests
from services.api.app.services.catalog_base import CatalogItem, CatalogLookupError
from services.api.app.services.notifications import (
    NotificationDispatcher,
    OrderCancelledNotice,
    OrderConfirmedNotice,
)
from services.api.app.services.orchestrator import (
    OFF_TOPIC_REPLY,
    STALE_DRAFT_NOTICE,
    ConversationOrchestrator,
    ReplyIntent,
    classify_reply,
    quantity_limit_reply,
)
from services.api.app.services.turn_locks import UserTurnLocks
from sqlalchemy import func, select
from sqlalchemy.orm import Session

JESA = CatalogItem(id="1", name="Jesa Milk (2L)", category="Dairy", price=5000, available=True)
COKE = CatalogItem(id="3", name="Coca-Cola (330ml)", category="Drinks", price=1500, available=True)


class StubLanguageModel:
    provider = "stub"

    def __init__(
        self,
        answers: dict[str, str] | None = None,
        error: Exception | None = None,
        compose_error: Exception | None = None,
    ):
        self._answers = answers or {}
        self._error = error
        self._compose_error = compose_error
        self.extract_calls: list[str] = []
        self.compose_calls = 0

    def extract_lines(self, message: str) -> ExtractionResult:
        self.extract_calls.append(message)
        if self._error is not None:
            raise self._error
        return parse_line_requests(self._answers.get(message, "[]"))

    def compose_summary(self, lines, subtotal, *, currency, transport_fee=None, total=None) -> str:
        self.compose_calls += 1
        if self._compose_error is not None:
            raise self._compose_error
        if transport_fee is not None:
            return f"{len(lines)} item(s), fee {transport_fee}, total {total} {currency}."
        return f"{len(lines)} item(s), {subtotal} {currency}. Shall I place it?"


class StubCatalog:
    source = "stub"

    def __init__(self, items: list[CatalogItem] | None = None, error: Exception | None = None):
        self._items = {i.name: i for i in items or []}
        self._error = error
        self.queries: list[tuple[str, int]] = []

    def query(self, text: str, max_results: int = 1) -> list[CatalogItem]:
        self.queries.append((text, max_results))
        if self._error is not None:
            raise self._error
        item = self._items.get(text)
        return [item] if item else []


class RecordingNotifier:
    channel = "recording"

    def __init__(self) -> None:
        self.confirmed: list[OrderConfirmedNotice] = []
        self.cancelled: list[OrderCancelledNotice] = []

    def notify_confirmed(self, notice: OrderConfirmedNotice) -> None:
        self.confirmed.append(notice)

    def notify_cancelled(self, notice: OrderCancelledNotice) -> None:
        self.cancelled.append(notice)


@pytest.fixture()
def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Iterator[Session]:
    monkeypatch.setenv("DATABASE_URL", f"sqlite+pysqlite:///{tmp_path / 'jaj_orch.db'}")
    monkeypatch.setenv("JAJ_DB_AUTO_CREATE", "true")

    from services.api.app.db.database import db_session
    from services.api.app.db.init_db import init_db

    init_db()
    session = db_session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def dispatcher() -> Iterator[NotificationDispatcher]:
    d = NotificationDispatcher(max_workers=1)
    yield d
    d.shutdown()


def _orchestrator(
    db: Session,
    dispatcher: NotificationDispatcher,
    *,
    language_model: StubLanguageModel,
    catalog: StubCatalog,
    notifier: RecordingNotifier | None = None,
    settings: Settings | None = None,
) -> ConversationOrchestrator:
    return ConversationOrchestrator(
        db=db,
        language_model=language_model,
        catalog=catalog,
        notifier=notifier or RecordingNotifier(),
        dispatcher=dispatcher,
        settings=settings or Settings(),
        locks=UserTurnLocks(),
    )


ORDER_MILK = "I want two Jesa Milk (2L)"
MILK_ANSWER = '```json\n[{"name": "Jesa Milk (2L)", "quantity": 2}]\n```'


def _order_count(db: Session) -> int:
    return int(db.scalar(select(func.count(Order.id))) or 0)


def test_classify_reply_keywords() -> None:
    assert classify_reply("Yes, CONFIRM please") is ReplyIntent.CONFIRM
    assert classify_reply("I cancelled my mind") is ReplyIntent.CANCEL
    assert classify_reply("cancel") is ReplyIntent.CANCEL
    assert classify_reply("add bread") is ReplyIntent.OTHER


def test_new_request_creates_building_draft(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    llm = StubLanguageModel({ORDER_MILK: MILK_ANSWER})
    catalog = StubCatalog([JESA])
    orch = _orchestrator(db, dispatcher, language_model=llm, catalog=catalog)

    result = orch.handle_turn("u-1", ORDER_MILK)

    assert result.outcome is ReplyOutcomeV1.DRAFTED
    assert "10000" in result.reply
    assert result.reply.endswith("Do you confirm the contents of this order?")
    assert "Transport" not in result.reply and "Total" not in result.reply
    assert catalog.queries == [("Jesa Milk (2L)", 1)]

    draft = OrderStore(db).find_active_draft("u-1")
    assert draft is not None
    assert draft.id == result.order_id
    assert draft.status == OrderStatus.BUILDING.value
    assert draft.transport_fee == 0 and draft.total_cost == 0
    assert [(line.quantity, line.unit_price, line.subtotal) for line in draft.lines] == [
        (2, 5000, 10000)
    ]


def test_unavailable_product_persists_nothing(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    sold_out = CatalogItem(
        id="1", name="Jesa Milk (2L)", category="Dairy", price=5000, available=False
    )
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({ORDER_MILK: MILK_ANSWER}),
        catalog=StubCatalog([sold_out]),
    )

    result = orch.handle_turn("u-1", ORDER_MILK)

    assert result.outcome is ReplyOutcomeV1.UNAVAILABLE
    assert result.reply == 'That product "Jesa Milk (2L)" is not available at the moment.'
    assert OrderStore(db).find_active_draft("u-1") is None
    assert _order_count(db) == 0


def test_one_unknown_line_fails_whole_draft(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    text = "two Jesa Milk (2L) and a unicorn"
    answer = '[{"name": "Jesa Milk (2L)", "quantity": 2}, {"name": "unicorn", "quantity": 1}]'
    catalog = StubCatalog([JESA])
    orch = _orchestrator(
        db, dispatcher, language_model=StubLanguageModel({text: answer}), catalog=catalog
    )

    result = orch.handle_turn("u-1", text)

    assert result.reply == 'That product "unicorn" is not available at the moment.'
    assert _order_count(db) == 0
    assert int(db.scalar(select(func.count(OrderLine.id))) or 0) == 0


def test_off_topic_message_makes_only_the_extraction_call(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    llm = StubLanguageModel({"What is biology?": "[]"})
    catalog = StubCatalog([JESA])
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=llm,
        catalog=catalog,
        settings=Settings(compose_with_llm=True),
    )

    result = orch.handle_turn("u-1", "What is biology?")

    assert result.reply == OFF_TOPIC_REPLY
    assert result.outcome is ReplyOutcomeV1.OFF_TOPIC
    assert llm.extract_calls == ["What is biology?"]
    assert llm.compose_calls == 0
    assert catalog.queries == []
    assert _order_count(db) == 0


def test_malformed_extraction_is_treated_as_off_topic(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    llm = StubLanguageModel({"milk pls": "Sure! Here you go: milk x2"})
    orch = _orchestrator(db, dispatcher, language_model=llm, catalog=StubCatalog([JESA]))

    result = orch.handle_turn("u-1", "milk pls")

    assert result.reply == OFF_TOPIC_REPLY
    assert _order_count(db) == 0


def test_confirm_fourth_order_of_day_pays_second_tier(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    notifier = RecordingNotifier()
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({ORDER_MILK: MILK_ANSWER}),
        catalog=StubCatalog([JESA]),
        notifier=notifier,
    )

    fees = []
    for _ in range(4):
        drafted = orch.handle_turn("u-1", ORDER_MILK)
        assert drafted.outcome is ReplyOutcomeV1.DRAFTED
        confirmed = orch.handle_turn("u-1", "confirm")
        assert confirmed.outcome is ReplyOutcomeV1.CONFIRMED
        assert confirmed.reply == "Your order has been confirmed! We'll see you at 18:00 at F2 17."

        order = db.get(Order, confirmed.order_id)
        assert order is not None
        assert order.status == OrderStatus.CONFIRMED.value
        assert order.total_cost == 10000 + order.transport_fee
        fees.append(order.transport_fee)

    dispatcher.flush()

    assert fees == [1000, 1000, 1000, 2000]
    assert len(notifier.confirmed) == 4
    last = notifier.confirmed[-1]
    assert last.transport_fee == 2000
    assert last.total == 12000
    assert last.subtotal == 10000
    assert last.pickup_time == "18:00" and last.pickup_location == "F2 17"


def test_repeated_confirm_does_not_charge_twice(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    notifier = RecordingNotifier()
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({ORDER_MILK: MILK_ANSWER}),
        catalog=StubCatalog([JESA]),
        notifier=notifier,
    )

    orch.handle_turn("u-1", ORDER_MILK)
    first = orch.handle_turn("u-1", "confirm")
    again = orch.handle_turn("u-1", "confirm")
    dispatcher.flush()

    assert first.outcome is ReplyOutcomeV1.CONFIRMED
    assert again.outcome is ReplyOutcomeV1.OFF_TOPIC
    assert len(notifier.confirmed) == 1

    order = db.get(Order, first.order_id)
    assert order is not None
    assert order.transport_fee == 1000
    assert order.total_cost == 11000


def test_cancel_keyword_cancels_draft_and_notifies(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    notifier = RecordingNotifier()
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({ORDER_MILK: MILK_ANSWER}),
        catalog=StubCatalog([JESA]),
        notifier=notifier,
    )

    drafted = orch.handle_turn("u-1", ORDER_MILK)
    cancelled = orch.handle_turn("u-1", "please cancel that")
    dispatcher.flush()

    assert cancelled.outcome is ReplyOutcomeV1.CANCELLED
    assert cancelled.order_id == drafted.order_id
    assert OrderStore(db).find_active_draft("u-1") is None
    assert [n.order_id for n in notifier.cancelled] == [drafted.order_id]

    order = db.get(Order, drafted.order_id)
    assert order is not None
    assert order.status == OrderStatus.CANCELLED.value
    assert order.transport_fee == 0 and order.total_cost == 0


def test_unrelated_message_discards_stale_draft_silently(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    notifier = RecordingNotifier()
    coke_text = "one Coca-Cola (330ml)"
    llm = StubLanguageModel(
        {ORDER_MILK: MILK_ANSWER, coke_text: '[{"name": "Coca-Cola (330ml)", "quantity": 1}]'}
    )
    orch = _orchestrator(
        db, dispatcher, language_model=llm, catalog=StubCatalog([JESA, COKE]), notifier=notifier
    )

    first = orch.handle_turn("u-1", ORDER_MILK)
    second = orch.handle_turn("u-1", coke_text)
    dispatcher.flush()

    assert second.outcome is ReplyOutcomeV1.DRAFTED
    assert not second.reply.startswith(STALE_DRAFT_NOTICE)
    assert notifier.cancelled == []

    stale = db.get(Order, first.order_id)
    assert stale is not None
    assert stale.status == OrderStatus.CANCELLED.value

    active = OrderStore(db).find_active_draft("u-1")
    assert active is not None and active.id == second.order_id


def test_stale_draft_notice_can_be_enabled(db: Session, dispatcher: NotificationDispatcher) -> None:
    llm = StubLanguageModel({ORDER_MILK: MILK_ANSWER})
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=llm,
        catalog=StubCatalog([JESA]),
        settings=Settings(stale_draft_notice=True),
    )

    orch.handle_turn("u-1", ORDER_MILK)
    result = orch.handle_turn("u-1", "what's the weather?")

    assert result.reply == f"{STALE_DRAFT_NOTICE} {OFF_TOPIC_REPLY}"
    assert OrderStore(db).find_active_draft("u-1") is None


def test_catalog_failure_aborts_turn_without_draft(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({ORDER_MILK: MILK_ANSWER}),
        catalog=StubCatalog(error=CatalogLookupError("connection refused")),
    )

    with pytest.raises(CatalogLookupError):
        orch.handle_turn("u-1", ORDER_MILK)

    assert _order_count(db) == 0


def test_model_failure_propagates(db: Session, dispatcher: NotificationDispatcher) -> None:
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel(error=LanguageModelError("HTTP 500")),
        catalog=StubCatalog([JESA]),
    )

    with pytest.raises(LanguageModelError):
        orch.handle_turn("u-1", ORDER_MILK)

    assert _order_count(db) == 0


def test_composition_mode_phrases_summary(db: Session, dispatcher: NotificationDispatcher) -> None:
    llm = StubLanguageModel({ORDER_MILK: MILK_ANSWER})
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=llm,
        catalog=StubCatalog([JESA]),
        settings=Settings(compose_with_llm=True),
    )

    result = orch.handle_turn("u-1", ORDER_MILK)

    assert llm.compose_calls == 1
    assert result.reply == "1 item(s), 10000 UGX. Shall I place it?"
    assert result.outcome is ReplyOutcomeV1.DRAFTED


def test_price_is_frozen_at_draft_time(db: Session, dispatcher: NotificationDispatcher) -> None:
    catalog = StubCatalog([JESA])
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({ORDER_MILK: MILK_ANSWER}),
        catalog=catalog,
    )

    orch.handle_turn("u-1", ORDER_MILK)
    catalog._items["Jesa Milk (2L)"] = CatalogItem(
        id="1", name="Jesa Milk (2L)", category="Dairy", price=9000, available=True
    )
    confirmed = orch.handle_turn("u-1", "confirm")

    order = db.get(Order, confirmed.order_id)
    assert order is not None
    assert order.total_cost == 2 * 5000 + 1000


def test_quantity_over_limit_gets_a_reply_not_an_error(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    text = "twenty thousand Jesa Milk (2L)"
    catalog = StubCatalog([JESA])
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=StubLanguageModel({text: '[{"name": "Jesa Milk (2L)", "quantity": 20000}]'}),
        catalog=catalog,
    )

    result = orch.handle_turn("u-1", text)

    assert result.outcome is ReplyOutcomeV1.QUANTITY_LIMIT
    assert result.reply == quantity_limit_reply("Jesa Milk (2L)")
    assert "10000" in result.reply
    assert catalog.queries == []
    assert _order_count(db) == 0


def test_composition_mode_phrases_final_breakdown_on_confirm(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    llm = StubLanguageModel({ORDER_MILK: MILK_ANSWER})
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=llm,
        catalog=StubCatalog([JESA]),
        settings=Settings(compose_with_llm=True),
    )

    orch.handle_turn("u-1", ORDER_MILK)
    confirmed = orch.handle_turn("u-1", "confirm")

    assert llm.compose_calls == 2
    assert confirmed.outcome is ReplyOutcomeV1.CONFIRMED
    assert confirmed.reply == (
        "1 item(s), fee 1000, total 11000 UGX.\n\n"
        "Your order has been confirmed! We'll see you at 18:00 at F2 17."
    )


def test_confirm_keeps_fixed_reply_when_composition_fails(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    llm = StubLanguageModel(
        {ORDER_MILK: MILK_ANSWER}, compose_error=LanguageModelError("HTTP 503")
    )
    orch = _orchestrator(
        db,
        dispatcher,
        language_model=llm,
        catalog=StubCatalog([JESA]),
        settings=Settings(compose_with_llm=True),
    )

    drafted = orch.handle_turn("u-1", ORDER_MILK)
    confirmed = orch.handle_turn("u-1", "confirm")

    assert drafted.reply.endswith("Do you confirm the contents of this order?")
    assert confirmed.reply == "Your order has been confirmed! We'll see you at 18:00 at F2 17."
    order = db.get(Order, confirmed.order_id)
    assert order is not None and order.status == OrderStatus.CONFIRMED.value


class _SlowCatalog(StubCatalog):
    def query(self, text: str, max_results: int = 1) -> list[CatalogItem]:
        time.sleep(0.05)
        return super().query(text, max_results)


def test_concurrent_turns_keep_at_most_one_active_draft(
    db: Session, dispatcher: NotificationDispatcher
) -> None:
    from services.api.app.db.database import db_session

    locks = UserTurnLocks()
    llm = StubLanguageModel({ORDER_MILK: MILK_ANSWER})
    catalog = _SlowCatalog([JESA])
    outcomes: list[ReplyOutcomeV1] = []
    errors: list[BaseException] = []

    def run() -> None:
        session = db_session()
        try:
            orch = ConversationOrchestrator(
                db=session,
                language_model=llm,
                catalog=catalog,
                notifier=RecordingNotifier(),
                dispatcher=dispatcher,
                settings=Settings(),
                locks=locks,
            )
            outcomes.append(orch.handle_turn("u-1", ORDER_MILK).outcome)
        except BaseException as e:  # surfaced by the assertion below
            errors.append(e)
        finally:
            session.close()

    threads = [threading.Thread(target=run) for _ in range(3)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert outcomes == [ReplyOutcomeV1.DRAFTED] * 3

    check = db_session()
    try:
        active = check.scalar(
            select(func.count(Order.id)).where(
                Order.user_id == "u-1",
                Order.status.in_(ACTIVE_STATUSES),
            )
        )
        assert active == 1
    finally:
        check.close()
