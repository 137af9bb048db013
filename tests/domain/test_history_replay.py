"""Tests for folding a recorded history back to a status."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from approval_kernel.domain.approval import (
    INITIAL_STATUS,
    ApprovalConfig,
    ApprovalEvent,
    RequestActivity,
    RequestStatus,
)
from approval_kernel.domain.chain_tracker import ApprovalChain, check_and_record
from approval_kernel.domain.replay import replay
from approval_kernel.domain.state_machine import transition
from approval_kernel.exceptions import (
    InsufficientApprovalsError,
    InvalidTransitionError,
    ReplayMismatchError,
)

S = RequestStatus
A = RequestActivity
SUBMITTER = 1
START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

TWO_APPROVERS = ApprovalConfig(workflow_type="two", is_minimum_two_approval=True)


def build_history(policy, steps):
    """Run (activity, actor_id, role) steps through the rules, recording events."""
    request_id = uuid4()
    status = INITIAL_STATUS
    chain = ApprovalChain()
    events = []
    for sequence, (activity, actor_id, role) in enumerate(steps, start=1):
        occurred_at = START + timedelta(minutes=sequence)
        decision = transition(
            status, activity, role, policy, actor_id=actor_id, submitted_by=SUBMITTER
        )
        chain, next_status = check_and_record(chain, decision, actor_id, policy, occurred_at)
        events.append(
            ApprovalEvent(
                request_id=request_id,
                sequence=sequence,
                activity=activity,
                actor_id=actor_id,
                from_status=status,
                to_status=next_status,
                occurred_at=occurred_at,
                actor_role=role,
            )
        )
        status = next_status
    return events, status


FULL_RUN = [
    (A.COMPLETE, SUBMITTER, None),
    (A.RECOMMEND, 7, "approver"),
    (A.APPROVE, 7, "approver"),
    (A.APPROVE, 9, "approver"),
    (A.FINAL_APPROVE, 9, "approver"),
    (A.COMPLETE, 9, "approver"),
]


def test_empty_history_is_draft():
    assert replay([], TWO_APPROVERS, SUBMITTER) == S.DRAFT


def test_full_run_replays_to_complete():
    events, status = build_history(TWO_APPROVERS, FULL_RUN)
    assert status == S.COMPLETE
    assert replay(events, TWO_APPROVERS, SUBMITTER) == S.COMPLETE


def test_every_prefix_replays_to_its_last_status():
    events, _ = build_history(TWO_APPROVERS, FULL_RUN)
    for n in range(1, len(events) + 1):
        assert replay(events[:n], TWO_APPROVERS, SUBMITTER) == events[n - 1].to_status


def test_amend_loop_and_remove():
    steps = [
        (A.COMPLETE, SUBMITTER, None),
        (A.CLARIFY, 7, "approver"),
        (A.AMEND, SUBMITTER, None),
        (A.RECOMMEND, 7, "approver"),
        (A.RETURN, 7, "approver"),
        (A.CHANGE, SUBMITTER, None),
        (A.REMOVE, SUBMITTER, None),
    ]
    policy = ApprovalConfig(workflow_type="plain")
    events, status = build_history(policy, steps)
    assert status == S.AMEND
    assert replay(events, policy, SUBMITTER) == S.AMEND


def test_promoted_approve_replays():
    policy = ApprovalConfig(
        workflow_type="seq", is_consecutive_approval=True, approver_sequence=(7, 9)
    )
    steps = FULL_RUN[:4] + [(A.COMPLETE, 9, "approver")]
    events, status = build_history(policy, steps)
    assert events[3].to_status == S.FINAL_APPROVE
    assert status == S.COMPLETE
    assert replay(events, policy, SUBMITTER) == S.COMPLETE


def test_tampered_to_status_detected():
    events, _ = build_history(TWO_APPROVERS, FULL_RUN[:3])
    events[2] = replace(events[2], to_status=S.FINAL_APPROVE)
    with pytest.raises(ReplayMismatchError) as exc_info:
        replay(events, TWO_APPROVERS, SUBMITTER)
    assert exc_info.value.sequence == 3
    assert exc_info.value.recorded_status == "FinalApprove"
    assert exc_info.value.replayed_status == "InProgress"


def test_tampered_from_status_detected():
    events, _ = build_history(TWO_APPROVERS, FULL_RUN[:3])
    events[1] = replace(events[1], from_status=S.AMEND)
    with pytest.raises(ReplayMismatchError) as exc_info:
        replay(events, TWO_APPROVERS, SUBMITTER)
    assert exc_info.value.sequence == 2


def test_sequence_gap_detected():
    events, _ = build_history(TWO_APPROVERS, FULL_RUN[:3])
    del events[1]
    with pytest.raises(ReplayMismatchError) as exc_info:
        replay(events, TWO_APPROVERS, SUBMITTER)
    assert exc_info.value.sequence == 3


def test_illegal_step_in_history_raises_rule_error():
    request_id = uuid4()
    bogus = ApprovalEvent(
        request_id, 1, A.APPROVE, 7, S.DRAFT, S.IN_PROGRESS, START, actor_role="approver"
    )
    with pytest.raises(InvalidTransitionError):
        replay([bogus], TWO_APPROVERS, SUBMITTER)


def test_history_recorded_under_looser_policy_fails_under_stricter():
    plain = ApprovalConfig(workflow_type="plain")
    steps = FULL_RUN[:3] + [(A.FINAL_APPROVE, 7, "approver")]
    events, status = build_history(plain, steps)
    assert status == S.FINAL_APPROVE
    with pytest.raises(InsufficientApprovalsError):
        replay(events, TWO_APPROVERS, SUBMITTER)
