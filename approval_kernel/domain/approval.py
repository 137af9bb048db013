"""
Approval domain types (``approval_kernel.domain.approval``).

Responsibility
--------------
Pure value objects for the request approval workflow: status and
activity vocabularies, the per-workflow-type policy (``ApprovalConfig``),
the request aggregate, its append-only event history, and the audit
value every persisted aggregate embeds.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Terminal statuses (``Reject``, ``Complete``) are listed once, in
  ``TERMINAL_STATUSES``; the state machine reads them from here.
* ``ApprovalConfig`` is frozen and passed by value into every decision.
  There is no module-level mutable policy.
* Audit columns are composed (``AuditInfo``), not inherited.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Protocol, runtime_checkable
from uuid import UUID


# =========================================================================
# Status and activity vocabularies
# =========================================================================


class RequestStatus(str, Enum):
    """Approval request lifecycle states."""

    DRAFT = "Draft"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    REFER = "Refer"
    CLARIFY = "Clarify"
    AMEND = "Amend"
    RETURN = "Return"
    REJECT = "Reject"
    FINAL_APPROVE = "FinalApprove"
    COMPLETE = "Complete"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.REJECT,
    RequestStatus.COMPLETE,
})

INITIAL_STATUS = RequestStatus.DRAFT


class RequestActivity(str, Enum):
    """The verb an actor applies to a request."""

    APPROVE = "Approve"
    RECOMMEND = "Recommend"
    REJECT = "Reject"
    CLARIFY = "Clarify"
    REFER = "Refer"
    COMPLETE = "Complete"
    REMOVE = "Remove"
    CHANGE = "Change"
    AMEND = "Amend"
    CANCEL = "Cancel"
    RETURN = "Return"
    FINAL_APPROVE = "FinalApprove"


class EmailFormat(str, Enum):
    """Named e-mail templates the dispatcher can request."""

    NEW_REQUEST = "NewRequest"
    UPDATE_REQUEST = "UpdateRequest"
    REFER = "Refer"
    CLARIFY = "Clarify"
    RETURN = "Return"
    REJECT = "Reject"
    CANCEL = "Cancel"
    COMPLETE = "Complete"


class Audience(str, Enum):
    """Who a notification is addressed to."""

    REQUESTER = "Requester"
    APPROVER = "Approver"
    REFEREE = "Referee"


# =========================================================================
# Policy
# =========================================================================


@dataclass(frozen=True)
class ApprovalConfig:
    """Immutable approval policy for one workflow type.

    Loaded per workflow type by a ``PolicyStore`` and passed by value into
    the state machine, chain tracker and notification planner.

    ``approver_sequence`` is an optional ordered list of actor ids.  When
    set, every listed actor must approve before final approval, and the
    ``Approve`` that completes the list promotes the request to
    ``FinalApprove``.
    """

    workflow_type: str
    version: int = 1
    module_name: str = ""
    is_single_refer_clarify_option: bool = False
    is_send_email: bool = False
    is_send_email_to_approver: bool = False
    is_send_email_to_refer_clarify: bool = False
    is_send_email_to_reject: bool = False
    is_send_final_email: bool = False
    is_minimum_two_approval: bool = False
    is_consecutive_approval: bool = False
    approver_sequence: tuple[int, ...] = ()
    policy_hash: str | None = None

    @property
    def required_distinct_approvers(self) -> int:
        """Distinct ``Approve`` actors needed before ``FinalApprove``."""
        required = 2 if self.is_minimum_two_approval else 0
        return max(required, len(set(self.approver_sequence)))


# =========================================================================
# Audit composition
# =========================================================================


@dataclass(frozen=True)
class AuditInfo:
    """Creation/modification audit fields owned by an aggregate."""

    created_at: datetime
    updated_at: datetime
    created_by: int
    updated_by: int | None = None

    def touched(self, at: datetime, by: int) -> AuditInfo:
        """Return a copy stamped with a new modification."""
        return replace(self, updated_at=at, updated_by=by)


@runtime_checkable
class Auditable(Protocol):
    """Capability: anything carrying audit fields and a soft-delete flag."""

    audit: AuditInfo
    is_active: bool


# =========================================================================
# Request aggregate and history
# =========================================================================


@dataclass(frozen=True)
class ApprovalEvent:
    """One committed activity on a request. Immutable, append-only."""

    request_id: UUID
    sequence: int
    activity: RequestActivity
    actor_id: int
    from_status: RequestStatus
    to_status: RequestStatus
    occurred_at: datetime
    actor_role: str | None = None
    comment: str = ""


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request.

    ``status`` is a cached projection of ``history``; ``version`` counts
    committed events and backs the optimistic concurrency check.
    """

    request_id: UUID
    request_no: str
    workflow_type: str
    entity_type: str
    entity_ref: str
    submitted_by: int
    status: RequestStatus
    version: int
    audit: AuditInfo
    is_active: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True)
class PlannedNotification:
    """A notification the dispatcher must deliver after commit."""

    email_format: EmailFormat
    audience: Audience


@dataclass(frozen=True)
class TransitionOutcome:
    """Result of a committed ``submit``: the new aggregate and what was planned."""

    request: ApprovalRequest
    event: ApprovalEvent
    notifications: tuple[PlannedNotification, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class EmailTemplate:
    """Subject/body pair rendered for one ``EmailFormat``."""

    email_format: EmailFormat
    subject: str
    body: str
    is_active: bool = True


@dataclass(frozen=True)
class OutboxNotification:
    """A persisted notification awaiting (or done with) delivery."""

    notification_id: UUID
    request_id: UUID
    event_sequence: int
    email_format: EmailFormat
    audience: Audience
    context: Mapping[str, Any]
    status: str
    attempts: int
    next_attempt_at: datetime
    last_error: str | None = None
    sent_at: datetime | None = None
