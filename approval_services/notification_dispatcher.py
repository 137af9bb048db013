"""
Notification dispatcher -- delivers outbox rows after commit.

Responsibility:
    Hand committed outbox rows to a ``Mailer`` on a thread pool, record the
    outcome of every attempt, reschedule failures with linear backoff and
    give up (``dead``) after ``max_attempts``.  A background retry loop
    picks up whatever the pool did not finish.

Architecture position:
    Services -- imperative shell.  Called by the workflow engine only
    after the state transaction has committed; it never holds a request
    lock and never writes request or event rows.

Invariants enforced:
    - A failed send never rolls back or blocks the transition that planned
      it.  The row stays ``pending`` until it is delivered or dead.
    - Delivery is at-least-once: the retry loop (``start_retry_loop``)
      runs ``redeliver_due()`` on a timer, which picks up any pending row
      whose retry time has come, including rows whose first dispatch never
      ran (process exit, executor shut down).
    - One attempt per row at a time: every attempt claims its row first,
      so a pool worker and a retry pass never both send it.

Failure modes:
    - Mailer errors are logged as ``notification_failed`` and recorded on
      the row.  They do not propagate to callers of ``dispatch``.
    - Database errors while recording an outcome propagate out of the
      worker; the row stays pending and is retried once its claim lease
      runs out.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from typing import Iterable
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.ports import Mailer
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.models.approval import NotificationStatus
from approval_kernel.services.notification_outbox import NotificationOutbox

logger = get_logger("services.notification_dispatcher")


class NotificationDispatcher:
    """Delivers outbox notifications through a ``Mailer``.

    Contract:
        ``dispatch`` returns immediately; delivery happens on the pool.
        ``deliver`` and ``redeliver_due`` run synchronously in the caller's
        thread.  ``start_retry_loop`` runs ``redeliver_due`` every
        ``retry_interval`` seconds until ``shutdown``.

    Guarantees:
        - One attempt per call per row; attempts are counted on the row.
        - An attempt holds its row for ``lease_seconds``; the lease must
          outlast the mailer's own timeout.
        - ``stats`` counts sent, failed and dead outcomes since startup.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        mailer: Mailer,
        *,
        clock: Clock | None = None,
        max_attempts: int = 5,
        backoff_seconds: float = 30.0,
        max_workers: int = 4,
        dispatch_timeout: float = 30.0,
        lease_seconds: float = 120.0,
        retry_interval: float | None = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if lease_seconds <= 0:
            raise ValueError("lease_seconds must be positive")
        self._session_factory = session_factory
        self._mailer = mailer
        self._clock = clock or SystemClock()
        self._max_attempts = max_attempts
        self._backoff_seconds = backoff_seconds
        self._dispatch_timeout = dispatch_timeout
        self._lease_seconds = lease_seconds
        self._retry_interval = retry_interval or backoff_seconds or 1.0
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="approval-notify"
        )
        self._in_flight: set[Future] = set()
        self._lock = threading.Lock()
        self._stopping = threading.Event()
        self._retry_thread: threading.Thread | None = None
        self.stats = {"sent": 0, "failed": 0, "dead": 0}

    def dispatch(self, notification_ids: Iterable[UUID]) -> list[Future]:
        """Queue delivery of committed outbox rows."""
        futures: list[Future] = []
        context = LogContext.get_all()
        for notification_id in notification_ids:
            try:
                future = self._executor.submit(self._deliver_with_context, notification_id, context)
            except RuntimeError:
                # Executor shut down; the row stays pending for redeliver_due().
                logger.warning(
                    "notification_dispatch_deferred",
                    extra={"notification_id": str(notification_id)},
                )
                continue
            with self._lock:
                self._in_flight.add(future)
            future.add_done_callback(self._forget)
            futures.append(future)
        return futures

    def deliver(self, notification_id: UUID) -> str | None:
        """One delivery attempt for one row.

        Returns the row's status afterwards, or None if the row could not
        be claimed (already sent, dead, unknown, not due yet, or taken by
        another attempt).
        """
        with session_scope(self._session_factory) as session:
            row = NotificationOutbox(session, self._clock).claim(
                notification_id, self._lease_seconds
            )
        if row is None:
            logger.debug(
                "notification_not_claimed",
                extra={"notification_id": str(notification_id)},
            )
            return None

        try:
            self._mailer.send(row.email_format, row.audience, row.context)
        except Exception as exc:
            with session_scope(self._session_factory) as session:
                status = NotificationOutbox(session, self._clock).mark_failed(
                    notification_id,
                    str(exc),
                    max_attempts=self._max_attempts,
                    backoff_seconds=self._backoff_seconds,
                )
            self._count("dead" if status == NotificationStatus.DEAD else "failed")
            logger.warning(
                "notification_failed",
                exc_info=True,
                extra={
                    "notification_id": str(notification_id),
                    "email_format": row.email_format.value,
                    "audience": row.audience.value,
                    "attempt": row.attempts + 1,
                    "outcome": status,
                },
            )
            return status

        with session_scope(self._session_factory) as session:
            NotificationOutbox(session, self._clock).mark_sent(notification_id)
        self._count("sent")
        logger.info(
            "notification_sent",
            extra={
                "notification_id": str(notification_id),
                "email_format": row.email_format.value,
                "audience": row.audience.value,
                "attempt": row.attempts + 1,
            },
        )
        return NotificationStatus.SENT

    def redeliver_due(self, limit: int = 100) -> int:
        """Attempt every due pending row once. Returns how many were sent."""
        with session_scope(self._session_factory) as session:
            due = NotificationOutbox(session, self._clock).due(limit=limit)
        sent = 0
        for row in due:
            with LogContext.bind(
                request_id=row.request_id,
                request_no=row.context.get("request_no"),
                workflow_type=row.context.get("workflow_type"),
            ):
                if self.deliver(row.notification_id) == NotificationStatus.SENT:
                    sent += 1
        if due:
            logger.info("notification_redelivery_pass", extra={"due": len(due), "sent": sent})
        return sent

    def start_retry_loop(self) -> None:
        """Start the background thread that runs ``redeliver_due`` on a timer.

        Idempotent.  The thread is a daemon and stops on ``shutdown``.
        """
        with self._lock:
            if self._retry_thread is not None or self._stopping.is_set():
                return
            self._retry_thread = threading.Thread(
                target=self._retry_loop,
                name="approval-notify-retry",
                daemon=True,
            )
            self._retry_thread.start()
        logger.info("notification_retry_loop_started", extra={"interval": self._retry_interval})

    @property
    def retry_loop_running(self) -> bool:
        thread = self._retry_thread
        return thread is not None and thread.is_alive()

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until queued deliveries finish; False if the timeout hit."""
        with self._lock:
            pending = list(self._in_flight)
        if not pending:
            return True
        if timeout is None:
            timeout = self._dispatch_timeout
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait: bool = True) -> None:
        """Stop the retry loop and the pool.  Undelivered rows stay pending."""
        self._stopping.set()
        thread = self._retry_thread
        if thread is not None and wait:
            thread.join(timeout=self._dispatch_timeout)
        self._executor.shutdown(wait=wait)

    def _retry_loop(self) -> None:
        while not self._stopping.wait(self._retry_interval):
            try:
                self.redeliver_due()
            except SQLAlchemyError:
                # Next pass retries; claimed rows come back when their lease ends.
                logger.error("notification_redelivery_error", exc_info=True)

    def _deliver_with_context(self, notification_id: UUID, context: dict) -> str | None:
        with LogContext.bind(**context):
            return self.deliver(notification_id)

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._in_flight.discard(future)
        exc = future.exception()
        if exc is not None:
            logger.error(
                "notification_delivery_error",
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    def _count(self, key: str) -> None:
        with self._lock:
            self.stats[key] += 1

    def __enter__(self) -> NotificationDispatcher:
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown(wait=True)
