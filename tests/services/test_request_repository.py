"""Tests for RequestRepository and the ORM immutability guards."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy import select

from approval_kernel.domain.approval import ApprovalEvent, RequestActivity, RequestStatus
from approval_kernel.exceptions import (
    ConcurrentModificationError,
    ImmutabilityViolationError,
    RequestNotFoundError,
)
from approval_kernel.models.approval import ApprovalEventModel, ApprovalRequestModel
from approval_kernel.services.request_repository import RequestRepository, new_request_no

A = RequestActivity
S = RequestStatus
REQUESTER = 1


@pytest.fixture
def repo(session, deterministic_clock):
    return RequestRepository(session, deterministic_clock)


def make_event(request, sequence, activity, from_status, to_status, at, actor_id=REQUESTER):
    return ApprovalEvent(
        request_id=request.request_id,
        sequence=sequence,
        activity=activity,
        actor_id=actor_id,
        from_status=from_status,
        to_status=to_status,
        occurred_at=at,
    )


def test_new_request_no_format():
    number = new_request_no()
    assert number.startswith("REQ-")
    assert len(number) == 12
    assert number[4:] == number[4:].upper()


class TestCreateAndLoad:
    def test_create_sets_draft_and_audit(self, repo, deterministic_clock):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        assert request.status == S.DRAFT
        assert request.version == 0
        assert request.audit.created_by == REQUESTER
        assert request.audit.created_at == deterministic_clock.now()
        assert request.audit.updated_by is None

    def test_load_round_trip(self, repo):
        created = repo.create_request("plain", "menu", "M-1", REQUESTER)
        loaded = repo.load_request(created.request_id)
        assert loaded == created

    def test_load_unknown(self, repo):
        with pytest.raises(RequestNotFoundError):
            repo.load_request(uuid4())

    def test_create_logs(self, repo, captured_logs):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        created = [r for r in captured_logs() if r["message"] == "request_created"]
        assert created[0]["request_no"] == request.request_no


class TestAppend:
    def test_append_moves_status_and_version(self, repo, deterministic_clock):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        at = deterministic_clock.now() + timedelta(minutes=5)
        event = make_event(request, 1, A.COMPLETE, S.DRAFT, S.PENDING, at)

        updated = repo.append_event_and_status(request.request_id, event, S.PENDING, 0)

        assert updated.status == S.PENDING
        assert updated.version == 1
        assert updated.audit.updated_at == at
        assert updated.audit.updated_by == REQUESTER
        assert repo.load_history(request.request_id) == (event,)

    def test_history_ordered_by_sequence(self, repo, deterministic_clock):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        now = deterministic_clock.now()
        repo.append_event_and_status(
            request.request_id,
            make_event(request, 1, A.COMPLETE, S.DRAFT, S.PENDING, now),
            S.PENDING,
            0,
        )
        repo.append_event_and_status(
            request.request_id,
            make_event(request, 2, A.RETURN, S.PENDING, S.RETURN, now, actor_id=7),
            S.RETURN,
            1,
        )
        assert [e.sequence for e in repo.load_history(request.request_id)] == [1, 2]

    def test_stale_version(self, repo, deterministic_clock):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        now = deterministic_clock.now()
        repo.append_event_and_status(
            request.request_id,
            make_event(request, 1, A.COMPLETE, S.DRAFT, S.PENDING, now),
            S.PENDING,
            0,
        )
        with pytest.raises(ConcurrentModificationError) as exc_info:
            repo.append_event_and_status(
                request.request_id,
                make_event(request, 1, A.REJECT, S.DRAFT, S.REJECT, now),
                S.REJECT,
                0,
            )
        assert exc_info.value.actual_version == 1

    def test_unknown_request(self, repo, deterministic_clock):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        ghost = make_event(request, 1, A.COMPLETE, S.DRAFT, S.PENDING, deterministic_clock.now())
        with pytest.raises(RequestNotFoundError):
            repo.append_event_and_status(uuid4(), ghost, S.PENDING, 0)

    def test_inactive_flag(self, repo, deterministic_clock):
        request = repo.create_request("plain", "menu", "M-1", REQUESTER)
        event = make_event(request, 1, A.REMOVE, S.DRAFT, S.DRAFT, deterministic_clock.now())
        updated = repo.append_event_and_status(
            request.request_id, event, S.DRAFT, 0, is_active=False
        )
        assert updated.is_active is False
        assert repo.list_requests("menu", "M-1") == ()
        assert len(repo.list_requests("menu", "M-1", include_inactive=True)) == 1


class TestImmutability:
    def _committed_request_with_event(self, session_factory, deterministic_clock):
        with session_factory.begin() as session:
            repo = RequestRepository(session, deterministic_clock)
            request = repo.create_request("plain", "menu", "M-1", REQUESTER)
            repo.append_event_and_status(
                request.request_id,
                make_event(
                    request, 1, A.COMPLETE, S.DRAFT, S.PENDING, deterministic_clock.now()
                ),
                S.PENDING,
                0,
            )
        return request

    def _load_event(self, session, request):
        return session.execute(
            select(ApprovalEventModel).where(
                ApprovalEventModel.request_id == request.request_id
            )
        ).scalar_one()

    def test_event_update_blocked(self, session_factory, deterministic_clock):
        request = self._committed_request_with_event(session_factory, deterministic_clock)
        with session_factory() as session:
            event = self._load_event(session, request)
            event.comment = "rewritten"
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
            session.rollback()

    def test_event_delete_blocked(self, session_factory, deterministic_clock):
        request = self._committed_request_with_event(session_factory, deterministic_clock)
        with session_factory() as session:
            session.delete(self._load_event(session, request))
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
            session.rollback()

    def test_request_delete_blocked(self, session_factory, deterministic_clock):
        request = self._committed_request_with_event(session_factory, deterministic_clock)
        with session_factory() as session:
            model = session.execute(
                select(ApprovalRequestModel).where(
                    ApprovalRequestModel.request_id == request.request_id
                )
            ).scalar_one()
            session.delete(model)
            with pytest.raises(ImmutabilityViolationError):
                session.flush()
            session.rollback()
