"""Sequential, rate-limited delivery of notification jobs."""

from __future__ import annotations

import logging
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field, replace
from enum import Enum
from threading import Condition, Event, Thread
from typing import Any, Callable, Deque, Dict, Iterable, Optional, Tuple

logger = logging.getLogger(__name__)

# Added to computed rate-limit waits so the oldest send has left the window on wake-up.
_RATE_EPSILON = 0.05


class Channel(str, Enum):
    mail = "mail"
    webhook = "webhook"


class QueueState(str, Enum):
    idle = "idle"
    processing = "processing"
    rate_limited = "rate_limited"


@dataclass(frozen=True)
class NotificationJob:
    """One outbound message. ``to``/``cc``/``bcc`` hold addresses or webhook URLs."""

    channel: Channel
    to: Tuple[str, ...]
    subject: str
    body: str
    cc: Tuple[str, ...] = ()
    bcc: Tuple[str, ...] = ()
    payload: Optional[Dict[str, Any]] = None
    enqueued_at: Optional[float] = None

    @property
    def recipients(self) -> Tuple[str, ...]:
        return self.to + self.cc + self.bcc


class SuppressedRecipientsError(RuntimeError):
    """Every recipient of a job was notified too recently."""

    def __init__(self, addresses: Iterable[str]) -> None:
        self.addresses = tuple(addresses)
        super().__init__(
            f"All recipients were notified too recently: {', '.join(self.addresses)}"
        )


class QueueClosedError(RuntimeError):
    """The queue no longer accepts jobs."""


@dataclass
class RateState:
    send_timestamps: Deque[float] = field(default_factory=deque)
    last_sent: Dict[str, float] = field(default_factory=dict)


Deliver = Callable[[NotificationJob], Any]


class NotificationQueue:
    """FIFO dispatcher with a sliding-window rate limit and per-recipient suppression.

    A single worker thread owns the backlog's head, the send window and the
    per-recipient map. Callers only append through :meth:`enqueue`, which
    returns a :class:`~concurrent.futures.Future` resolved with the delivery
    result or failed with the delivery error.

    At most ``rate_limit`` sends happen in any trailing ``rate_window`` seconds,
    and a recipient is skipped if it was sent to less than ``suppression``
    seconds ago. A job whose recipients are all skipped fails with
    :class:`SuppressedRecipientsError`. Failed sends are not retried.
    """

    def __init__(
        self,
        deliver: Deliver,
        name: str = "notifications",
        rate_limit: int = 3,
        rate_window: float = 60.0,
        suppression: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Any]] = None,
    ) -> None:
        if rate_limit < 1:
            raise ValueError("rate_limit must be at least 1")
        self.name = name
        self.rate_limit = rate_limit
        self.rate_window = rate_window
        self.suppression = suppression
        self._deliver = deliver
        self._clock = clock
        self._stop = Event()
        self._sleep = sleep or self._stop.wait
        self._condition = Condition()
        self._backlog: Deque[Tuple[NotificationJob, Future]] = deque()
        self._closed = False
        self._state = QueueState.idle
        self._rate = RateState()
        self._worker = Thread(target=self._run, name=f"{name}-queue", daemon=True)
        self._worker.start()

    @property
    def state(self) -> QueueState:
        return self._state

    def pending(self) -> int:
        with self._condition:
            return len(self._backlog)

    def enqueue(self, job: NotificationJob) -> Future:
        future: Future = Future()
        if not job.recipients:
            future.set_exception(ValueError(f"{self.name} job has no recipients."))
            return future
        if job.enqueued_at is None:
            job = replace(job, enqueued_at=self._clock())
        with self._condition:
            if self._closed:
                future.set_exception(QueueClosedError(f"{self.name} queue is shut down."))
                return future
            self._backlog.append((job, future))
            self._condition.notify()
        return future

    def shutdown(
        self,
        wait: bool = True,
        cancel_pending: bool = True,
        timeout: Optional[float] = None,
    ) -> None:
        """Stop accepting jobs; cancel the backlog or let the worker drain it."""
        with self._condition:
            self._closed = True
            pending = list(self._backlog) if cancel_pending else []
            if cancel_pending:
                self._backlog.clear()
            self._condition.notify_all()
        if cancel_pending:
            self._stop.set()
        for _job, future in pending:
            future.cancel()
        if wait:
            self._worker.join(timeout)

    def _run(self) -> None:
        while True:
            with self._condition:
                while not self._backlog and not self._closed:
                    self._state = QueueState.idle
                    self._condition.wait()
                if not self._backlog:
                    self._state = QueueState.idle
                    return
                job, future = self._backlog[0]
                self._state = QueueState.processing

            delay = self._rate_delay()
            if delay > 0:
                self._state = QueueState.rate_limited
                logger.info(
                    "Rate limit reached; delaying next send",
                    extra={"channel": self.name, "delay_ms": int(delay * 1000)},
                )
                self._sleep(delay)
                continue

            with self._condition:
                # shutdown() may have cleared the backlog while we were deciding.
                if not self._backlog or self._backlog[0][1] is not future:
                    continue
                self._backlog.popleft()
            self._process(job, future)

    def _rate_delay(self) -> float:
        now = self._clock()
        window = self._rate.send_timestamps
        while window and now - window[0] >= self.rate_window:
            window.popleft()
        if len(window) < self.rate_limit:
            return 0.0
        return self.rate_window - (now - window[0]) + _RATE_EPSILON

    def _is_suppressed(self, address: str, now: float) -> bool:
        last = self._rate.last_sent.get(address)
        return last is not None and now - last < self.suppression

    def _process(self, job: NotificationJob, future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return

        now = self._clock()
        allowed = replace(
            job,
            to=tuple(a for a in job.to if not self._is_suppressed(a, now)),
            cc=tuple(a for a in job.cc if not self._is_suppressed(a, now)),
            bcc=tuple(a for a in job.bcc if not self._is_suppressed(a, now)),
        )
        skipped = [a for a in job.recipients if a not in allowed.recipients]
        if not allowed.recipients:
            logger.warning(
                "Dropping notification; all recipients suppressed",
                extra={"channel": self.name, "recipients": job.recipients},
            )
            future.set_exception(SuppressedRecipientsError(job.recipients))
            return
        if skipped:
            logger.info(
                "Skipping recently notified recipients",
                extra={"channel": self.name, "recipients": skipped},
            )

        try:
            result = self._deliver(allowed)
        except Exception as exc:
            logger.warning(
                "Notification delivery failed",
                extra={
                    "channel": self.name,
                    "recipients": allowed.recipients,
                    "reason": str(exc) or type(exc).__name__,
                },
            )
            future.set_exception(exc)
            return

        self._rate.send_timestamps.append(now)
        for address in allowed.recipients:
            self._rate.last_sent[address] = now
        future.set_result(result)
