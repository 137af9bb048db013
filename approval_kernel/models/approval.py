"""
Module: approval_kernel.models.approval
Responsibility: ORM persistence for approval requests, their append-only
    event history and the notification outbox.

Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

Invariants enforced:
    - Status values are limited by a DB check constraint; the state machine
      enforces which transitions are legal.
    - Event sequences are unique per request: UNIQUE(request_id, sequence)
      is the second guard behind the optimistic version check.
    - Events are append-only: UPDATE/DELETE raise
      ImmutabilityViolationError at the ORM layer.
    - Requests are never hard-deleted; ``Remove`` sets ``is_active=False``.

Failure modes:
    - IntegrityError on duplicate (request_id, sequence).
    - IntegrityError on duplicate request_no.
    - ImmutabilityViolationError on event UPDATE/DELETE or request DELETE.

Audit relevance:
    The event table is the audit trail.  Replaying it from ``Draft``
    reproduces ``approval_requests.status``; ``verify_history`` checks
    exactly that.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, UUIDString, audit_composite
from approval_kernel.db.types import UTCDateTime
from approval_kernel.domain.approval import AuditInfo, RequestStatus
from approval_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from approval_kernel.domain.approval import (
        ApprovalEvent,
        ApprovalRequest,
        OutboxNotification,
    )

_STATUS_VALUES = ", ".join(f"'{s.value}'" for s in RequestStatus)


class ApprovalRequestModel(Base):
    """Persistent approval request.

    Contract:
        ``status`` is a cached projection of the event history and changes
        only together with an appended event.  ``version`` equals the
        number of committed events.

    Guarantees:
        - request_no is unique.
        - No DELETE; soft delete through ``is_active``.
    """

    __tablename__ = "approval_requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_approval_requests_valid_status",
        ),
        CheckConstraint("version >= 0", name="ck_approval_requests_version"),
        Index(
            "ix_approval_requests_entity",
            "entity_type", "entity_ref", "is_active",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(), nullable=False, unique=True,
    )
    request_no: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    workflow_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_ref: Mapped[str] = mapped_column(String(100), nullable=False)
    submitted_by: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=RequestStatus.DRAFT.value,
    )
    version: Mapped[int] = mapped_column(nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    audit: Mapped[AuditInfo] = audit_composite()

    def __repr__(self) -> str:
        return (
            f"<ApprovalRequest {self.request_no} "
            f"{self.workflow_type} status={self.status} v{self.version}>"
        )

    def to_dto(self) -> ApprovalRequest:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import ApprovalRequest as ApprovalRequestDTO

        return ApprovalRequestDTO(
            request_id=self.request_id,
            request_no=self.request_no,
            workflow_type=self.workflow_type,
            entity_type=self.entity_type,
            entity_ref=self.entity_ref,
            submitted_by=self.submitted_by,
            status=RequestStatus(self.status),
            version=self.version,
            audit=self.audit,
            is_active=self.is_active,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalRequest) -> ApprovalRequestModel:
        """Create ORM model from domain DTO."""
        return cls(
            request_id=dto.request_id,
            request_no=dto.request_no,
            workflow_type=dto.workflow_type,
            entity_type=dto.entity_type,
            entity_ref=dto.entity_ref,
            submitted_by=dto.submitted_by,
            status=dto.status.value,
            version=dto.version,
            is_active=dto.is_active,
            audit=dto.audit,
        )


class ApprovalEventModel(Base):
    """Persistent approval event. Append-only.

    Contract:
        Events are immutable once created -- no UPDATE, no DELETE.

    Guarantees:
        - UNIQUE(request_id, sequence).
    """

    __tablename__ = "approval_events"

    __table_args__ = (
        UniqueConstraint(
            "request_id", "sequence",
            name="uq_approval_events_sequence",
        ),
        CheckConstraint("sequence >= 1", name="ck_approval_events_sequence"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(nullable=False)
    activity: Mapped[str] = mapped_column(String(30), nullable=False)
    actor_id: Mapped[int] = mapped_column(nullable=False)
    actor_role: Mapped[str | None] = mapped_column(String(50), nullable=True)
    from_status: Mapped[str] = mapped_column(String(30), nullable=False)
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalEvent request={self.request_id} #{self.sequence} "
            f"{self.activity} {self.from_status}->{self.to_status}>"
        )

    def to_dto(self) -> ApprovalEvent:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            ApprovalEvent as ApprovalEventDTO,
            RequestActivity,
        )

        return ApprovalEventDTO(
            request_id=self.request_id,
            sequence=self.sequence,
            activity=RequestActivity(self.activity),
            actor_id=self.actor_id,
            from_status=RequestStatus(self.from_status),
            to_status=RequestStatus(self.to_status),
            occurred_at=self.occurred_at,
            actor_role=self.actor_role,
            comment=self.comment,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalEvent) -> ApprovalEventModel:
        """Create ORM model from domain DTO."""
        return cls(
            request_id=dto.request_id,
            sequence=dto.sequence,
            activity=dto.activity.value,
            actor_id=dto.actor_id,
            actor_role=dto.actor_role,
            from_status=dto.from_status.value,
            to_status=dto.to_status.value,
            comment=dto.comment,
            occurred_at=dto.occurred_at,
        )


class NotificationStatus:
    """Outbox row states."""

    PENDING = "pending"
    SENT = "sent"
    DEAD = "dead"


class NotificationModel(Base):
    """Transactional outbox row for one planned notification.

    Contract:
        Inserted in the same transaction as the event that planned it, so
        a committed transition always has its notifications recorded.
        Delivery updates ``status``/``attempts`` afterwards.
    """

    __tablename__ = "approval_notifications"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'sent', 'dead')",
            name="ck_approval_notifications_status",
        ),
        Index(
            "ix_approval_notifications_due",
            "status", "next_attempt_at",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("approval_requests.request_id"),
        nullable=False,
    )
    event_sequence: Mapped[int] = mapped_column(nullable=False)
    email_format: Mapped[str] = mapped_column(String(30), nullable=False)
    audience: Mapped[str] = mapped_column(String(30), nullable=False)
    context: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=NotificationStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    next_attempt_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    sent_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<Notification {self.email_format}->{self.audience} "
            f"request={self.request_id} status={self.status}>"
        )

    def to_dto(self) -> OutboxNotification:
        """Convert ORM model to frozen domain DTO."""
        from approval_kernel.domain.approval import (
            Audience,
            EmailFormat,
            OutboxNotification as OutboxNotificationDTO,
        )

        return OutboxNotificationDTO(
            notification_id=self.id,
            request_id=self.request_id,
            event_sequence=self.event_sequence,
            email_format=EmailFormat(self.email_format),
            audience=Audience(self.audience),
            context=dict(self.context),
            status=self.status,
            attempts=self.attempts,
            next_attempt_at=self.next_attempt_at,
            last_error=self.last_error,
            sent_at=self.sent_at,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


@event.listens_for(ApprovalEventModel, "before_update")
def prevent_event_update(mapper, connection, target):
    """Prevent updates to approval event records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalEvent",
        entity_id=f"{target.request_id}#{target.sequence}",
        reason="Approval events are immutable -- cannot modify",
    )


@event.listens_for(ApprovalEventModel, "before_delete")
def prevent_event_delete(mapper, connection, target):
    """Prevent deletion of approval event records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalEvent",
        entity_id=f"{target.request_id}#{target.sequence}",
        reason="Approval events are immutable -- cannot delete",
    )


@event.listens_for(ApprovalRequestModel, "before_delete")
def prevent_request_delete(mapper, connection, target):
    """Requests are soft-deleted with the Remove activity, never deleted."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalRequest",
        entity_id=str(target.request_id),
        reason="Approval requests cannot be deleted -- use Remove",
    )
