"""
History replay (``approval_kernel.domain.replay``).

Folds an ordered event history from ``Draft`` through the state machine
and chain tracker.  The request's cached ``status`` must equal the
result; any divergence is an audit failure, raised as
``ReplayMismatchError`` at the first event that disagrees.
"""

from __future__ import annotations

from typing import Iterable

from approval_kernel.domain.approval import (
    INITIAL_STATUS,
    ApprovalConfig,
    ApprovalEvent,
    RequestStatus,
)
from approval_kernel.domain.chain_tracker import ApprovalChain, check_and_record
from approval_kernel.domain.state_machine import transition
from approval_kernel.exceptions import ReplayMismatchError


def replay(
    events: Iterable[ApprovalEvent],
    policy: ApprovalConfig,
    submitted_by: int,
) -> RequestStatus:
    """Recompute the status a history leads to.

    Raises:
        ReplayMismatchError: a recorded ``from_status``/``to_status`` does
            not match the recomputed one, or sequences are not contiguous.
        InvalidTransitionError / PolicyViolationError: the history
            contains a step the rules never allow.
    """
    status = INITIAL_STATUS
    chain = ApprovalChain()
    expected_sequence = 1

    for event in events:
        if event.sequence != expected_sequence:
            raise ReplayMismatchError(event.sequence, event.to_status.value, status.value)
        if event.from_status != status:
            raise ReplayMismatchError(event.sequence, event.from_status.value, status.value)

        decision = transition(
            status,
            event.activity,
            event.actor_role,
            policy,
            actor_id=event.actor_id,
            submitted_by=submitted_by,
        )
        chain, next_status = check_and_record(
            chain, decision, event.actor_id, policy, event.occurred_at
        )
        if next_status != event.to_status:
            raise ReplayMismatchError(event.sequence, event.to_status.value, next_status.value)

        status = next_status
        expected_sequence += 1

    return status
