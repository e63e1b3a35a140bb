"""Order notifications: what is sent, who sends it, and how it stays off the request path.

Notices are built from committed order data and handed to a NotificationDispatcher, which
runs them on a small thread pool. A failing notifier is logged and otherwise ignored: the
order it describes is already durable.
"""

from __future__ import annotations

import logging
import os
import smtplib
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from email.message import EmailMessage
from typing import Protocol, TypeVar

from services.api.app.services.pricing import PricedLine

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderConfirmedNotice:
    order_id: str
    user_id: str
    email: str | None
    lines: tuple[PricedLine, ...]
    subtotal: int
    transport_fee: int
    total: int
    currency: str
    pickup_time: str
    pickup_location: str


@dataclass(frozen=True, slots=True)
class OrderCancelledNotice:
    order_id: str
    user_id: str
    email: str | None


class Notifier(Protocol):
    channel: str

    def notify_confirmed(self, notice: OrderConfirmedNotice) -> None: ...

    def notify_cancelled(self, notice: OrderCancelledNotice) -> None: ...


class LogNotifier:
    """Writes notices to the log. Default for local dev."""

    channel = "log"

    def notify_confirmed(self, notice: OrderConfirmedNotice) -> None:
        logger.info(
            "Order %s confirmed for user %s: %d line(s), fee=%d, total=%d, pickup %s at %s",
            notice.order_id,
            notice.user_id,
            len(notice.lines),
            notice.transport_fee,
            notice.total,
            notice.pickup_time,
            notice.pickup_location,
        )

    def notify_cancelled(self, notice: OrderCancelledNotice) -> None:
        logger.info("Order %s cancelled for user %s", notice.order_id, notice.user_id)


@dataclass(frozen=True, slots=True)
class _SmtpConfig:
    host: str
    port: int
    username: str
    password: str
    sender: str
    timeout_s: float


class SmtpNotifier:
    """Plain-text order emails over SMTP with STARTTLS.

    Env vars:
    - JAJ_NOTIFIER=smtp
    - SMTP_HOST, SMTP_PORT (default: 587)
    - SMTP_USER, SMTP_PASS
    - SMTP_FROM (default: SMTP_USER)
    """

    channel = "smtp"

    def __init__(self, cfg: _SmtpConfig) -> None:
        self._cfg = cfg

    @classmethod
    def from_env(cls) -> "SmtpNotifier":
        host = os.getenv("SMTP_HOST", "").strip()
        if not host:
            raise ValueError("SMTP_HOST is required when JAJ_NOTIFIER=smtp")

        username = os.getenv("SMTP_USER", "").strip()
        return cls(
            _SmtpConfig(
                host=host,
                port=int(os.getenv("SMTP_PORT", "587")),
                username=username,
                password=os.getenv("SMTP_PASS", ""),
                sender=os.getenv("SMTP_FROM", username).strip(),
                timeout_s=float(os.getenv("SMTP_TIMEOUT_S", "15")),
            )
        )

    def notify_confirmed(self, notice: OrderConfirmedNotice) -> None:
        if not notice.email:
            logger.warning("No email on file for user %s; skipping confirmation", notice.user_id)
            return
        self._send(
            notice.email,
            f"JAJ Order Confirmation #{notice.order_id}",
            render_confirmation_body(notice),
        )

    def notify_cancelled(self, notice: OrderCancelledNotice) -> None:
        if not notice.email:
            logger.warning("No email on file for user %s; skipping cancellation", notice.user_id)
            return
        self._send(
            notice.email,
            f"JAJ Order #{notice.order_id} Cancelled",
            f"Your order #{notice.order_id} has been cancelled. "
            "If you have any questions, contact support.",
        )

    def _send(self, to: str, subject: str, body: str) -> None:
        msg = EmailMessage()
        msg["From"] = self._cfg.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.set_content(body)

        with smtplib.SMTP(self._cfg.host, self._cfg.port, timeout=self._cfg.timeout_s) as smtp:
            smtp.starttls()
            if self._cfg.username:
                smtp.login(self._cfg.username, self._cfg.password)
            smtp.send_message(msg)


def render_confirmation_body(notice: OrderConfirmedNotice) -> str:
    cur = notice.currency
    lines = ["Thank you for your order!", f"Order ID: {notice.order_id}", "", "Items:"]
    for line in notice.lines:
        lines.append(
            f"{line.name} x{line.quantity} @ {cur} {line.unit_price} = {cur} {line.subtotal}"
        )
    lines += [
        "",
        f"Subtotal: {cur} {notice.subtotal}",
        f"Transport Fee: {cur} {notice.transport_fee}",
        f"Total Cost: {cur} {notice.total}",
        "",
        f"Pickup at {notice.pickup_time}, {notice.pickup_location}",
    ]
    return "\n".join(lines)


N = TypeVar("N")


class NotificationDispatcher:
    """Fire-and-forget execution of notifier calls.

    submit() returns immediately; failures surface only in the log. flush() waits for
    everything submitted so far, which tests and shutdown rely on.
    """

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notify")
        self._pending: set[Future] = set()
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._failed = 0

    @property
    def failed(self) -> int:
        """Number of notifier calls that raised since start-up."""
        return self._failed

    def submit(self, fn: Callable[[N], None], notice: N) -> Future:
        future = self._executor.submit(fn, notice)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def flush(self, timeout: float | None = 10.0) -> None:
        with self._idle:
            self._idle.wait_for(lambda: not self._pending, timeout=timeout)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True)

    def _on_done(self, future: Future) -> None:
        exc = future.exception()
        with self._idle:
            if exc is not None:
                self._failed += 1
            self._pending.discard(future)
            self._idle.notify_all()

        if exc is not None:
            logger.error("Notification failed: %s", exc, exc_info=exc)


_DISPATCHER: NotificationDispatcher | None = None
_DISPATCHER_LOCK = threading.Lock()


def get_notification_dispatcher() -> NotificationDispatcher:
    """Process-wide dispatcher, created on first use."""

    global _DISPATCHER

    with _DISPATCHER_LOCK:
        if _DISPATCHER is None:
            _DISPATCHER = NotificationDispatcher(
                max_workers=int(os.getenv("JAJ_NOTIFY_WORKERS", "2"))
            )
        return _DISPATCHER


def shutdown_notification_dispatcher() -> None:
    global _DISPATCHER

    with _DISPATCHER_LOCK:
        if _DISPATCHER is not None:
            _DISPATCHER.shutdown()
            _DISPATCHER = None


def get_notifier() -> Notifier:
    """Select the notifier. Defaults to logging; JAJ_NOTIFIER=smtp sends real email."""

    channel = os.getenv("JAJ_NOTIFIER", "log").strip().lower()

    if channel == "log":
        return LogNotifier()

    if channel == "smtp":
        return SmtpNotifier.from_env()

    raise ValueError(f"Unknown JAJ_NOTIFIER={channel!r}. Expected log or smtp.")
