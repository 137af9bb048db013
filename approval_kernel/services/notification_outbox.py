"""
NotificationOutbox -- transactional outbox for planned notifications.

Responsibility:
    Record planned notifications in the same transaction as the event
    that planned them, and track their delivery afterwards (attempts,
    backoff, sent/dead).

Architecture position:
    Kernel > Services.  Written by the workflow engine inside the submit
    transaction; read and updated by the notification dispatcher in its
    own short transactions after commit.

Invariants enforced:
    - A committed transition always has its notifications recorded.
    - A row leaves ``pending`` only as ``sent`` or, after ``max_attempts``
      failures, ``dead``.  Nothing is deleted.
    - At most one attempt per row is in flight: senders ``claim()`` a row
      before sending it.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Iterable, Mapping
from uuid import UUID

from sqlalchemy import func, select, update

from approval_kernel.domain.approval import (
    ApprovalEvent,
    OutboxNotification,
    PlannedNotification,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import NotificationModel, NotificationStatus
from approval_kernel.services.base import BaseService

logger = get_logger("services.notification_outbox")


class NotificationOutbox(BaseService[NotificationModel]):
    """Outbox rows for one session."""

    def enqueue(
        self,
        event: ApprovalEvent,
        planned: Iterable[PlannedNotification],
        context: Mapping[str, Any],
    ) -> tuple[UUID, ...]:
        """Insert one pending row per planned notification; return their ids."""
        now = self._clock.now()
        rows = [
            NotificationModel(
                request_id=event.request_id,
                event_sequence=event.sequence,
                email_format=p.email_format.value,
                audience=p.audience.value,
                context=dict(context),
                status=NotificationStatus.PENDING,
                attempts=0,
                created_at=now,
                next_attempt_at=now,
            )
            for p in planned
        ]
        if not rows:
            return ()
        self.session.add_all(rows)
        self.session.flush()
        return tuple(row.id for row in rows)

    def get(self, notification_id: UUID) -> OutboxNotification | None:
        row = self.session.get(NotificationModel, notification_id)
        return row.to_dto() if row is not None else None

    def due(self, limit: int = 100) -> tuple[OutboxNotification, ...]:
        """Pending rows whose next attempt is due, oldest first."""
        rows = self.session.execute(
            select(NotificationModel)
            .where(
                NotificationModel.status == NotificationStatus.PENDING,
                NotificationModel.next_attempt_at <= self._clock.now(),
            )
            .order_by(NotificationModel.created_at, NotificationModel.event_sequence)
            .limit(limit)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def for_request(self, request_id: UUID) -> tuple[OutboxNotification, ...]:
        rows = self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.request_id == request_id)
            .order_by(NotificationModel.event_sequence, NotificationModel.created_at)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def count_by_status(self) -> dict[str, int]:
        rows = self.session.execute(
            select(NotificationModel.status, func.count())
            .group_by(NotificationModel.status)
        ).all()
        return {status: count for status, count in rows}

    def claim(
        self, notification_id: UUID, lease_seconds: float
    ) -> OutboxNotification | None:
        """Take a due pending row for one delivery attempt.

        Pushes ``next_attempt_at`` out by ``lease_seconds`` with a guarded
        UPDATE, so a concurrent ``due()`` scan or a second claim no longer
        sees the row.  Returns None if the row was not pending and due, or
        another worker claimed it first.  An attempt that never records its
        outcome leaves the row pending; it becomes due again when the lease
        runs out.
        """
        now = self._clock.now()
        result = self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.status == NotificationStatus.PENDING,
                NotificationModel.next_attempt_at <= now,
            )
            .values(next_attempt_at=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return None
        self.session.expire_all()
        return self.get(notification_id)

    def mark_sent(self, notification_id: UUID) -> None:
        row = self._get_pending(notification_id)
        if row is None:
            return
        row.attempts += 1
        row.status = NotificationStatus.SENT
        row.sent_at = self._clock.now()
        row.last_error = None
        self.session.flush()

    def mark_failed(
        self,
        notification_id: UUID,
        error: str,
        max_attempts: int,
        backoff_seconds: float,
    ) -> str | None:
        """Record a failed attempt; reschedule or give up.

        Backoff is linear: the n-th failure waits ``n * backoff_seconds``.
        Returns the row's new status, or None if it was no longer pending.
        """
        row = self._get_pending(notification_id)
        if row is None:
            return None
        row.attempts += 1
        row.last_error = error[:2000]
        if row.attempts >= max_attempts:
            row.status = NotificationStatus.DEAD
            logger.error(
                "notification_dead",
                extra={
                    "notification_id": str(row.id),
                    "request_id": str(row.request_id),
                    "email_format": row.email_format,
                    "attempts": row.attempts,
                },
            )
        else:
            row.next_attempt_at = self._clock.now() + timedelta(
                seconds=backoff_seconds * row.attempts
            )
        self.session.flush()
        return row.status

    def _get_pending(self, notification_id: UUID) -> NotificationModel | None:
        row = self.session.get(NotificationModel, notification_id)
        if row is None or row.status != NotificationStatus.PENDING:
            return None
        return row
