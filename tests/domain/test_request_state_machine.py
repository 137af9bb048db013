"""Tests for the request state machine transition table."""

import pytest

from approval_kernel.domain.approval import (
    TERMINAL_STATUSES,
    ApprovalConfig,
    RequestActivity,
    RequestStatus,
)
from approval_kernel.domain.state_machine import (
    ADMIN_ROLE,
    APPROVER_ROLE,
    NON_TERMINAL_STATUSES,
    TRANSITION_TABLE,
    allowed_activities,
    transition,
)
from approval_kernel.exceptions import ActorNotPermittedError, InvalidTransitionError

S = RequestStatus
A = RequestActivity

SUBMITTER = 1
APPROVER = 7
POLICY = ApprovalConfig(workflow_type="plain")


def step(status, activity, role=APPROVER_ROLE, actor_id=APPROVER, policy=POLICY):
    return transition(
        status, activity, role, policy, actor_id=actor_id, submitted_by=SUBMITTER
    )


class TestHappyPath:
    @pytest.mark.parametrize(
        "status, activity, expected",
        [
            (S.DRAFT, A.COMPLETE, S.PENDING),
            (S.PENDING, A.RECOMMEND, S.IN_PROGRESS),
            (S.PENDING, A.REFER, S.REFER),
            (S.IN_PROGRESS, A.REFER, S.REFER),
            (S.PENDING, A.CLARIFY, S.CLARIFY),
            (S.IN_PROGRESS, A.CLARIFY, S.CLARIFY),
            (S.REFER, A.CHANGE, S.AMEND),
            (S.REFER, A.AMEND, S.AMEND),
            (S.CLARIFY, A.CHANGE, S.AMEND),
            (S.CLARIFY, A.AMEND, S.AMEND),
            (S.RETURN, A.AMEND, S.AMEND),
            (S.RETURN, A.CHANGE, S.AMEND),
            (S.AMEND, A.RECOMMEND, S.IN_PROGRESS),
            (S.IN_PROGRESS, A.APPROVE, S.IN_PROGRESS),
            (S.IN_PROGRESS, A.FINAL_APPROVE, S.FINAL_APPROVE),
            (S.FINAL_APPROVE, A.COMPLETE, S.COMPLETE),
        ],
    )
    def test_transition(self, status, activity, expected):
        decision = step(status, activity)
        assert decision.from_status == status
        assert decision.activity == activity
        assert decision.to_status == expected

    def test_approve_without_sequence_is_not_promotable(self):
        assert step(S.IN_PROGRESS, A.APPROVE).may_promote is False

    def test_approve_with_sequence_is_promotable(self):
        policy = ApprovalConfig(workflow_type="seq", approver_sequence=(7, 9))
        assert step(S.IN_PROGRESS, A.APPROVE, policy=policy).may_promote is True


class TestAnyNonTerminal:
    @pytest.mark.parametrize("status", sorted(NON_TERMINAL_STATUSES, key=lambda s: s.value))
    def test_reject_by_approver(self, status):
        assert step(status, A.REJECT).to_status == S.REJECT

    @pytest.mark.parametrize("status", sorted(NON_TERMINAL_STATUSES, key=lambda s: s.value))
    def test_reject_by_admin(self, status):
        assert step(status, A.REJECT, role=ADMIN_ROLE).to_status == S.REJECT

    @pytest.mark.parametrize("status", sorted(NON_TERMINAL_STATUSES, key=lambda s: s.value))
    def test_return(self, status):
        assert step(status, A.RETURN, role=None).to_status == S.RETURN

    @pytest.mark.parametrize("status", sorted(NON_TERMINAL_STATUSES, key=lambda s: s.value))
    def test_cancel_by_submitter(self, status):
        decision = step(status, A.CANCEL, role=None, actor_id=SUBMITTER)
        assert decision.to_status == S.REJECT


class TestTerminal:
    @pytest.mark.parametrize("status", [S.REJECT, S.COMPLETE])
    @pytest.mark.parametrize("activity", [a for a in RequestActivity if a != A.REMOVE])
    def test_terminal_rejects_everything_but_remove(self, status, activity):
        with pytest.raises(InvalidTransitionError) as exc_info:
            step(status, activity)
        assert exc_info.value.reason == "status is terminal"
        assert exc_info.value.code == "INVALID_TRANSITION"

    @pytest.mark.parametrize("status", [S.REJECT, S.COMPLETE])
    def test_remove_on_terminal_keeps_status(self, status):
        assert step(status, A.REMOVE).to_status == status

    def test_allowed_activities_for_terminal(self):
        for status in TERMINAL_STATUSES:
            assert allowed_activities(status) == (A.REMOVE,)


class TestGuards:
    def test_recommend_requires_approver_role(self):
        with pytest.raises(ActorNotPermittedError) as exc_info:
            step(S.PENDING, A.RECOMMEND, role="clerk")
        assert exc_info.value.actor_role == "clerk"
        assert exc_info.value.code == "ACTOR_NOT_PERMITTED"

    def test_recommend_with_no_role(self):
        with pytest.raises(ActorNotPermittedError):
            step(S.AMEND, A.RECOMMEND, role=None)

    def test_reject_requires_approver_or_admin(self):
        with pytest.raises(ActorNotPermittedError):
            step(S.IN_PROGRESS, A.REJECT, role="clerk")

    def test_cancel_by_other_actor_fails(self):
        with pytest.raises(ActorNotPermittedError) as exc_info:
            step(S.PENDING, A.CANCEL, actor_id=APPROVER)
        assert exc_info.value.required == "the original submitter"

    def test_actor_not_permitted_is_invalid_transition(self):
        with pytest.raises(InvalidTransitionError):
            step(S.PENDING, A.RECOMMEND, role=None)


class TestIllegalPairs:
    @pytest.mark.parametrize(
        "status, activity",
        [
            (S.DRAFT, A.APPROVE),
            (S.DRAFT, A.RECOMMEND),
            (S.PENDING, A.APPROVE),
            (S.PENDING, A.FINAL_APPROVE),
            (S.REFER, A.REFER),
            (S.CLARIFY, A.APPROVE),
            (S.AMEND, A.APPROVE),
            (S.IN_PROGRESS, A.COMPLETE),
            (S.FINAL_APPROVE, A.APPROVE),
        ],
    )
    def test_not_in_table(self, status, activity):
        assert (status, activity) not in TRANSITION_TABLE
        with pytest.raises(InvalidTransitionError) as exc_info:
            step(status, activity)
        assert exc_info.value.reason == ""

    def test_every_status_allows_remove(self):
        for status in RequestStatus:
            assert A.REMOVE in allowed_activities(status)
            assert step(status, A.REMOVE).to_status == status

    def test_draft_allowed_activities(self):
        assert allowed_activities(S.DRAFT) == (
            A.REJECT,
            A.COMPLETE,
            A.REMOVE,
            A.CANCEL,
            A.RETURN,
        )
