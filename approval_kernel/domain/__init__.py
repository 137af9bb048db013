"""Pure domain layer: value objects, state machine, chain rules, ports."""

from approval_kernel.domain.approval import (
    INITIAL_STATUS,
    TERMINAL_STATUSES,
    ApprovalConfig,
    ApprovalEvent,
    ApprovalRequest,
    Audience,
    Auditable,
    AuditInfo,
    EmailFormat,
    EmailTemplate,
    OutboxNotification,
    PlannedNotification,
    RequestActivity,
    RequestStatus,
    TransitionOutcome,
)
from approval_kernel.domain.chain_tracker import ApprovalChain, check_and_record
from approval_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from approval_kernel.domain.notification_policy import plan_notifications
from approval_kernel.domain.replay import replay
from approval_kernel.domain.state_machine import (
    ADMIN_ROLE,
    APPROVER_ROLE,
    TRANSITION_TABLE,
    TransitionDecision,
    allowed_activities,
    transition,
)

__all__ = [
    "ADMIN_ROLE",
    "APPROVER_ROLE",
    "INITIAL_STATUS",
    "TERMINAL_STATUSES",
    "TRANSITION_TABLE",
    "ApprovalChain",
    "ApprovalConfig",
    "ApprovalEvent",
    "ApprovalRequest",
    "Audience",
    "Auditable",
    "AuditInfo",
    "Clock",
    "DeterministicClock",
    "EmailFormat",
    "EmailTemplate",
    "OutboxNotification",
    "PlannedNotification",
    "RequestActivity",
    "RequestStatus",
    "SystemClock",
    "TransitionDecision",
    "TransitionOutcome",
    "allowed_activities",
    "check_and_record",
    "plan_notifications",
    "replay",
    "transition",
]
