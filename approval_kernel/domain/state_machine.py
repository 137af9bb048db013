"""
Request state machine (``approval_kernel.domain.state_machine``).

Responsibility
--------------
Pure decision logic mapping (current status, activity, actor role,
policy) to the next status.  Counting and ordering rules over the
approval history live in ``chain_tracker``; this module only knows the
one-step table.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over frozen values.  ZERO I/O.

Invariants enforced
-------------------
* ``TRANSITION_TABLE`` is the only source of legal (status, activity)
  pairs.  Anything else raises ``InvalidTransitionError``.
* Terminal statuses accept nothing but ``Remove``.
* Role and submitter checks raise ``ActorNotPermittedError`` (a subclass
  of ``InvalidTransitionError``) before any write happens.
"""

from __future__ import annotations

from dataclasses import dataclass

from approval_kernel.domain.approval import (
    TERMINAL_STATUSES,
    ApprovalConfig,
    RequestActivity,
    RequestStatus,
)
from approval_kernel.exceptions import ActorNotPermittedError, InvalidTransitionError

APPROVER_ROLE = "approver"
ADMIN_ROLE = "admin"

NON_TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    s for s in RequestStatus if s not in TERMINAL_STATUSES
)


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table.

    ``to_status=None`` leaves the status unchanged (``Remove``).
    ``allowed_roles`` empty means any role.
    """

    from_statuses: frozenset[RequestStatus]
    activity: RequestActivity
    to_status: RequestStatus | None
    allowed_roles: frozenset[str] = frozenset()
    submitter_only: bool = False


@dataclass(frozen=True)
class TransitionDecision:
    """Accepted one-step transition, before chain rules are applied.

    ``may_promote`` marks an ``Approve`` the chain tracker may lift to
    ``FinalApprove`` once the configured approver sequence is complete.
    """

    from_status: RequestStatus
    activity: RequestActivity
    to_status: RequestStatus
    may_promote: bool = False


_S = RequestStatus
_A = RequestActivity

TRANSITION_RULES: tuple[TransitionRule, ...] = (
    TransitionRule(frozenset({_S.DRAFT}), _A.COMPLETE, _S.PENDING),
    TransitionRule(
        frozenset({_S.PENDING, _S.AMEND}), _A.RECOMMEND, _S.IN_PROGRESS,
        allowed_roles=frozenset({APPROVER_ROLE}),
    ),
    TransitionRule(frozenset({_S.PENDING, _S.IN_PROGRESS}), _A.REFER, _S.REFER),
    TransitionRule(frozenset({_S.PENDING, _S.IN_PROGRESS}), _A.CLARIFY, _S.CLARIFY),
    TransitionRule(frozenset({_S.REFER, _S.CLARIFY, _S.RETURN}), _A.CHANGE, _S.AMEND),
    TransitionRule(frozenset({_S.REFER, _S.CLARIFY, _S.RETURN}), _A.AMEND, _S.AMEND),
    TransitionRule(frozenset({_S.IN_PROGRESS}), _A.APPROVE, _S.IN_PROGRESS),
    TransitionRule(frozenset({_S.IN_PROGRESS}), _A.FINAL_APPROVE, _S.FINAL_APPROVE),
    TransitionRule(
        NON_TERMINAL_STATUSES, _A.REJECT, _S.REJECT,
        allowed_roles=frozenset({APPROVER_ROLE, ADMIN_ROLE}),
    ),
    TransitionRule(NON_TERMINAL_STATUSES, _A.RETURN, _S.RETURN),
    TransitionRule(NON_TERMINAL_STATUSES, _A.CANCEL, _S.REJECT, submitter_only=True),
    TransitionRule(frozenset({_S.FINAL_APPROVE}), _A.COMPLETE, _S.COMPLETE),
    TransitionRule(frozenset(RequestStatus), _A.REMOVE, None),
)


def _build_table(
    rules: tuple[TransitionRule, ...],
) -> dict[tuple[RequestStatus, RequestActivity], TransitionRule]:
    table: dict[tuple[RequestStatus, RequestActivity], TransitionRule] = {}
    for rule in rules:
        for status in rule.from_statuses:
            key = (status, rule.activity)
            if key in table:
                raise ValueError(f"Duplicate transition rule for {key}")
            table[key] = rule
    return table


TRANSITION_TABLE: dict[tuple[RequestStatus, RequestActivity], TransitionRule] = _build_table(
    TRANSITION_RULES
)


def allowed_activities(status: RequestStatus) -> tuple[RequestActivity, ...]:
    """Activities legal from ``status``, in enum declaration order."""
    return tuple(a for a in RequestActivity if (status, a) in TRANSITION_TABLE)


def transition(
    current_status: RequestStatus,
    activity: RequestActivity,
    actor_role: str | None,
    policy: ApprovalConfig,
    *,
    actor_id: int,
    submitted_by: int,
) -> TransitionDecision:
    """Decide the one-step transition for ``activity`` from ``current_status``.

    Raises:
        InvalidTransitionError: no rule for (status, activity).
        ActorNotPermittedError: role or submitter check failed.
    """
    rule = TRANSITION_TABLE.get((current_status, activity))
    if rule is None:
        reason = "status is terminal" if current_status in TERMINAL_STATUSES else ""
        raise InvalidTransitionError(current_status.value, activity.value, reason)

    if rule.allowed_roles and actor_role not in rule.allowed_roles:
        raise ActorNotPermittedError(
            current_status.value,
            activity.value,
            actor_id,
            actor_role,
            required="one of " + "/".join(sorted(rule.allowed_roles)),
        )

    if rule.submitter_only and actor_id != submitted_by:
        raise ActorNotPermittedError(
            current_status.value,
            activity.value,
            actor_id,
            actor_role,
            required="the original submitter",
        )

    to_status = rule.to_status if rule.to_status is not None else current_status
    return TransitionDecision(
        from_status=current_status,
        activity=activity,
        to_status=to_status,
        may_promote=activity == RequestActivity.APPROVE and bool(policy.approver_sequence),
    )
