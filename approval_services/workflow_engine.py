"""
approval_services.workflow_engine -- request workflow orchestration.

Responsibility:
    Public entry point for approval requests.  ``submit`` loads the request
    and its history, loads the policy for its workflow type, asks the state
    machine and the chain tracker for the next status, and commits the new
    status, the event and the planned notifications in one transaction.
    Notifications are handed to the dispatcher only after that commit.

Architecture position:
    Services layer.  Thin coordinator: decision logic lives in
    ``approval_kernel.domain``; persistence in
    ``approval_kernel.services``; delivery in ``notification_dispatcher``.

Invariants enforced:
    - Ordering: validate, then commit state + event + outbox, then dispatch.
      Transition and policy errors are raised before anything is written.
    - Per-request linearization: the write carries the version read at the
      start of the call; a concurrent commit makes it fail with
      ``ConcurrentModificationError`` and nothing is written.
    - No shared mutable state between calls; one session per call.

Failure modes:
    - RequestNotFoundError, RequestInactiveError, InvalidTransitionError,
      PolicyViolationError subclasses: command rejected, nothing written.
    - ConcurrentModificationError: retryable.
    - RepositoryFailureError: database failure, nothing committed.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Any, Iterator
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import (
    ApprovalConfig,
    ApprovalEvent,
    ApprovalRequest,
    RequestActivity,
    RequestStatus,
)
from approval_kernel.domain.chain_tracker import ApprovalChain, check_and_record
from approval_kernel.domain.clock import Clock, SystemClock
from approval_kernel.domain.notification_policy import plan_notifications
from approval_kernel.domain.ports import PolicyStore, RoleSource
from approval_kernel.domain.replay import replay
from approval_kernel.domain.state_machine import transition
from approval_kernel.exceptions import (
    ApprovalKernelError,
    ConcurrentModificationError,
    ReplayMismatchError,
    RepositoryFailureError,
    RequestInactiveError,
)
from approval_kernel.logging_config import LogContext, get_logger
from approval_kernel.services.notification_outbox import NotificationOutbox
from approval_kernel.services.request_repository import RequestRepository
from approval_services.notification_dispatcher import NotificationDispatcher

logger = get_logger("services.workflow_engine")

OUTCOME_SUCCESS = "success"
OUTCOME_REJECTED = "rejected"


def _emit_workflow_trace(
    request: ApprovalRequest,
    from_status: RequestStatus,
    outcome: str,
    duration_ms: float,
    to_status: RequestStatus | None = None,
    error: ApprovalKernelError | None = None,
    notification_count: int = 0,
) -> None:
    """Emit one structured record per submit, accepted or not."""
    extra: dict[str, Any] = {
        "entity_type": request.entity_type,
        "entity_ref": request.entity_ref,
        "from_status": from_status.value,
        "outcome": outcome,
        "duration_ms": round(duration_ms, 3),
    }
    if to_status is not None:
        extra["to_status"] = to_status.value
        extra["version"] = request.version
        extra["notification_count"] = notification_count
    if error is not None:
        extra["error_code"] = error.code
        extra["reason"] = str(error)
        logger.warning("workflow_transition_rejected", extra=extra)
    else:
        logger.info("workflow_transition", extra=extra)


class WorkflowEngine:
    """Request workflow entry point.

    Contract:
        Stateless between calls.  Every public method opens its own
        session from ``session_factory`` and commits or rolls back before
        returning, so one engine is safe to share across threads.

    Non-goals:
        - Does NOT authenticate actors; ``actor_role`` is trusted input.
        - Does NOT retry on ``ConcurrentModificationError``.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        policy_store: PolicyStore,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        role_source: RoleSource | None = None,
    ):
        self._session_factory = session_factory
        self._policies = policy_store
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._roles = role_source

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_request(
        self,
        workflow_type: str,
        entity_type: str,
        entity_ref: str,
        submitted_by: int,
    ) -> ApprovalRequest:
        """Open a new request in ``Draft`` (version 0).

        Raises:
            PolicyNotFoundError: no policy for ``workflow_type``.
        """
        self._policies.load_policy(workflow_type)
        with self._transaction("create_request") as session:
            return RequestRepository(session, self._clock).create_request(
                workflow_type, entity_type, entity_ref, submitted_by
            )

    def submit(
        self,
        request_id: UUID,
        activity: RequestActivity | str,
        actor_id: int,
        actor_role: str | None = None,
        *,
        comment: str = "",
        expected_version: int | None = None,
    ) -> ApprovalRequest:
        """Apply ``activity`` by ``actor_id`` and return the updated request.

        ``expected_version``, when given, must equal the stored version or
        the call fails fast with ``ConcurrentModificationError``.
        ``actor_role=None`` is resolved through the role source, if any.

        Timeouts are not taken per call.  Database waits are bounded by
        the engine (``pool_timeout``, the SQLite busy timeout); mail is
        sent after commit on the dispatcher, bounded by ``smtp_timeout``.
        Neither can hold this call open past the engine's own bounds.
        """
        activity = RequestActivity(activity)
        if actor_role is None and self._roles is not None:
            actor_role = self._roles.role_for(actor_id)

        with LogContext.bind(
            request_id=str(request_id),
            actor_id=actor_id,
            activity=activity.value,
        ):
            started = time.monotonic()
            request: ApprovalRequest | None = None
            try:
                with self._transaction("submit") as session:
                    repo = RequestRepository(session, self._clock)
                    request = repo.load_request(request_id)
                    LogContext.set(
                        request_no=request.request_no,
                        workflow_type=request.workflow_type,
                    )
                    if expected_version is not None and expected_version != request.version:
                        raise ConcurrentModificationError(
                            str(request_id), expected_version, request.version
                        )
                    if not request.is_active:
                        raise RequestInactiveError(
                            str(request_id), request.status.value, activity.value
                        )

                    policy = self._policies.load_policy(request.workflow_type)
                    history = repo.load_history(request_id)
                    decision = transition(
                        request.status,
                        activity,
                        actor_role,
                        policy,
                        actor_id=actor_id,
                        submitted_by=request.submitted_by,
                    )
                    occurred_at = self._clock.now()
                    _, new_status = check_and_record(
                        ApprovalChain.from_events(history),
                        decision,
                        actor_id,
                        policy,
                        occurred_at,
                    )

                    event = ApprovalEvent(
                        request_id=request_id,
                        sequence=request.version + 1,
                        activity=activity,
                        actor_id=actor_id,
                        from_status=request.status,
                        to_status=new_status,
                        occurred_at=occurred_at,
                        actor_role=actor_role,
                        comment=comment,
                    )
                    updated = repo.append_event_and_status(
                        request_id,
                        event,
                        new_status,
                        request.version,
                        is_active=activity != RequestActivity.REMOVE,
                    )

                    planned = plan_notifications(request.status, new_status, activity, policy)
                    notification_ids = NotificationOutbox(session, self._clock).enqueue(
                        event, planned, self._notification_context(updated, event, policy)
                    )
            except ApprovalKernelError as exc:
                if request is not None:
                    _emit_workflow_trace(
                        request,
                        request.status,
                        OUTCOME_REJECTED,
                        (time.monotonic() - started) * 1000,
                        error=exc,
                    )
                raise

            _emit_workflow_trace(
                updated,
                request.status,
                OUTCOME_SUCCESS,
                (time.monotonic() - started) * 1000,
                to_status=new_status,
                notification_count=len(notification_ids),
            )

            if notification_ids and self._dispatcher is not None:
                self._dispatcher.dispatch(notification_ids)
            return updated

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ApprovalRequest:
        with self._transaction("get_request") as session:
            return RequestRepository(session, self._clock).load_request(request_id)

    def get_status(self, request_id: UUID) -> RequestStatus:
        return self.get_request(request_id).status

    def get_history(self, request_id: UUID) -> tuple[ApprovalEvent, ...]:
        """Committed events in sequence order, read fresh from the database."""
        with self._transaction("get_history") as session:
            repo = RequestRepository(session, self._clock)
            repo.load_request(request_id)
            return repo.load_history(request_id)

    def list_requests(
        self,
        entity_type: str,
        entity_ref: str,
        include_inactive: bool = False,
    ) -> tuple[ApprovalRequest, ...]:
        with self._transaction("list_requests") as session:
            return RequestRepository(session, self._clock).list_requests(
                entity_type, entity_ref, include_inactive=include_inactive
            )

    def verify_history(self, request_id: UUID) -> RequestStatus:
        """Replay the history and check it reproduces the stored status.

        Raises:
            ReplayMismatchError: the history and the stored status disagree.
        """
        with self._transaction("verify_history") as session:
            repo = RequestRepository(session, self._clock)
            request = repo.load_request(request_id)
            history = repo.load_history(request_id)
        policy = self._policies.load_policy(request.workflow_type)

        replayed = replay(history, policy, request.submitted_by)
        if replayed != request.status or len(history) != request.version:
            raise ReplayMismatchError(len(history), request.status.value, replayed.value)

        logger.info(
            "history_verified",
            extra={
                "request_no": request.request_no,
                "status": replayed.value,
                "event_count": len(history),
            },
        )
        return replayed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        """One session per call; database errors surface as RepositoryFailureError."""
        try:
            with session_scope(self._session_factory) as session:
                yield session
        except SQLAlchemyError as exc:
            raise RepositoryFailureError(operation, str(exc)) from exc

    @staticmethod
    def _notification_context(
        request: ApprovalRequest,
        event: ApprovalEvent,
        policy: ApprovalConfig,
    ) -> dict[str, Any]:
        return {
            "request_id": str(request.request_id),
            "request_no": request.request_no,
            "workflow_type": request.workflow_type,
            "module_name": policy.module_name or request.workflow_type,
            "entity_type": request.entity_type,
            "entity_ref": request.entity_ref,
            "submitted_by": request.submitted_by,
            "actor_id": event.actor_id,
            "activity": event.activity.value,
            "status": event.to_status.value,
            "comment": event.comment,
        }

