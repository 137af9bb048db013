"""
Approval chain tracker (``approval_kernel.domain.chain_tracker``).

Responsibility
--------------
Counting and ordering rules over a request's history that a one-step
state machine cannot express: minimum distinct approvers, no two
approvals in a row from the same actor, configured approver order, and
the single Refer/Clarify allowance.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ``ApprovalChain`` is a frozen value;
``check_and_record`` returns a new chain and never mutates its input, so
the caller can commit the chain together with the event or drop both.

Invariants enforced
-------------------
* Policy violations are raised before anything is recorded.
* ``FinalApprove`` is reachable only when
  ``ApprovalConfig.required_distinct_approvers`` distinct actors (and
  every actor in ``approver_sequence``) appear among ``Approve`` entries.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Iterable

from approval_kernel.domain.approval import (
    ApprovalConfig,
    ApprovalEvent,
    RequestActivity,
    RequestStatus,
)
from approval_kernel.domain.state_machine import TransitionDecision
from approval_kernel.exceptions import (
    ConsecutiveApprovalNotAllowedError,
    InsufficientApprovalsError,
    ReferClarifyLimitExceededError,
)

_REFER_CLARIFY = frozenset({RequestActivity.REFER, RequestActivity.CLARIFY})


@dataclass(frozen=True)
class ApprovalEntry:
    actor_id: int
    occurred_at: datetime


@dataclass(frozen=True)
class ApprovalChain:
    """Ordered ``Approve`` entries plus the combined Refer/Clarify count."""

    approvals: tuple[ApprovalEntry, ...] = ()
    refer_clarify_count: int = 0

    @classmethod
    def from_events(cls, events: Iterable[ApprovalEvent]) -> ApprovalChain:
        """Rebuild the chain from committed history."""
        approvals: list[ApprovalEntry] = []
        refer_clarify = 0
        for event in events:
            if event.activity == RequestActivity.APPROVE:
                approvals.append(ApprovalEntry(event.actor_id, event.occurred_at))
            elif event.activity in _REFER_CLARIFY:
                refer_clarify += 1
        return cls(approvals=tuple(approvals), refer_clarify_count=refer_clarify)

    @property
    def distinct_approvers(self) -> frozenset[int]:
        return frozenset(a.actor_id for a in self.approvals)

    @property
    def last_approver(self) -> int | None:
        return self.approvals[-1].actor_id if self.approvals else None

    def missing_from_sequence(self, sequence: tuple[int, ...]) -> tuple[int, ...]:
        """Actors in ``sequence`` who have not approved yet, in order."""
        seen = self.distinct_approvers
        return tuple(a for a in sequence if a not in seen)


def _check_final_approval(chain: ApprovalChain, policy: ApprovalConfig) -> None:
    required = policy.required_distinct_approvers
    distinct = len(chain.distinct_approvers)
    missing = chain.missing_from_sequence(policy.approver_sequence)
    if distinct < required or missing:
        raise InsufficientApprovalsError(required, distinct, missing)


def _final_approval_satisfied(chain: ApprovalChain, policy: ApprovalConfig) -> bool:
    return (
        len(chain.distinct_approvers) >= policy.required_distinct_approvers
        and not chain.missing_from_sequence(policy.approver_sequence)
    )


def _check_approve(chain: ApprovalChain, actor_id: int, policy: ApprovalConfig) -> None:
    if not policy.is_consecutive_approval:
        return
    if chain.last_approver == actor_id:
        raise ConsecutiveApprovalNotAllowedError(actor_id)
    if policy.approver_sequence:
        missing = chain.missing_from_sequence(policy.approver_sequence)
        if missing and missing[0] != actor_id:
            raise ConsecutiveApprovalNotAllowedError(actor_id, expected_actor_id=missing[0])


def check_and_record(
    chain: ApprovalChain,
    decision: TransitionDecision,
    actor_id: int,
    policy: ApprovalConfig,
    occurred_at: datetime,
) -> tuple[ApprovalChain, RequestStatus]:
    """Apply chain rules to an accepted decision.

    Returns the updated chain and the final status, which differs from
    ``decision.to_status`` only when an ``Approve`` completes the
    approver sequence and is promoted to ``FinalApprove``.

    Raises:
        InsufficientApprovalsError
        ConsecutiveApprovalNotAllowedError
        ReferClarifyLimitExceededError
    """
    activity = decision.activity

    if activity in _REFER_CLARIFY:
        if policy.is_single_refer_clarify_option and chain.refer_clarify_count >= 1:
            raise ReferClarifyLimitExceededError(activity.value, chain.refer_clarify_count)
        return (
            replace(chain, refer_clarify_count=chain.refer_clarify_count + 1),
            decision.to_status,
        )

    if activity == RequestActivity.APPROVE:
        _check_approve(chain, actor_id, policy)
        updated = replace(
            chain, approvals=chain.approvals + (ApprovalEntry(actor_id, occurred_at),)
        )
        if decision.may_promote and _final_approval_satisfied(updated, policy):
            return updated, RequestStatus.FINAL_APPROVE
        return updated, decision.to_status

    if decision.to_status == RequestStatus.FINAL_APPROVE:
        _check_final_approval(chain, policy)

    return chain, decision.to_status
