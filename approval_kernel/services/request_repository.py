"""
RequestRepository -- SQLAlchemy adapter for the request aggregate.

Responsibility:
    Load requests and their ordered event history, create new requests in
    ``Draft``, and append one event together with the new status as a
    single unit guarded by an optimistic version check.

Architecture position:
    Kernel > Services.  Implements ``RequestRepositoryPort``.  Flushes only;
    the workflow engine owns the transaction.

Invariants enforced:
    - Optimistic concurrency: the status UPDATE carries
      ``WHERE version = :expected``.  Zero matched rows means another writer
      committed first.
    - UNIQUE(request_id, sequence) backs the version check; a duplicate
      sequence is reported the same way.

Failure modes:
    - RequestNotFoundError for unknown request ids.
    - ConcurrentModificationError on a stale version or duplicate sequence.
    - RepositoryFailureError wrapping any other SQLAlchemy error.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from approval_kernel.domain.approval import (
    INITIAL_STATUS,
    ApprovalEvent,
    ApprovalRequest,
    AuditInfo,
    RequestStatus,
)
from approval_kernel.exceptions import (
    ConcurrentModificationError,
    RepositoryFailureError,
    RequestNotFoundError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.approval import ApprovalEventModel, ApprovalRequestModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.request_repository")


def new_request_no() -> str:
    """Human readable request number, e.g. ``REQ-3F9A0C21``."""
    return "REQ-" + uuid4().hex[:8].upper()


class RequestRepository(BaseService[ApprovalRequestModel]):
    """Persistence for approval requests and their history.

    Contract:
        Every write happens in the caller's transaction.  Reads go to the
        database, never to a cache, so ``load_history`` reflects the last
        commit.
    """

    def create_request(
        self,
        workflow_type: str,
        entity_type: str,
        entity_ref: str,
        submitted_by: int,
    ) -> ApprovalRequest:
        """Insert a new request in ``Draft`` with version 0."""
        now = self._clock.now()
        model = ApprovalRequestModel(
            request_id=uuid4(),
            request_no=new_request_no(),
            workflow_type=workflow_type,
            entity_type=entity_type,
            entity_ref=entity_ref,
            submitted_by=submitted_by,
            status=INITIAL_STATUS.value,
            version=0,
            is_active=True,
            audit=AuditInfo(created_at=now, updated_at=now, created_by=submitted_by),
        )
        self.session.add(model)
        try:
            self.session.flush()
        except SQLAlchemyError as exc:
            raise RepositoryFailureError("create_request", str(exc)) from exc

        logger.info(
            "request_created",
            extra={
                "request_id": str(model.request_id),
                "request_no": model.request_no,
                "workflow_type": workflow_type,
                "entity_type": entity_type,
            },
        )
        return model.to_dto()

    def load_request(self, request_id: UUID) -> ApprovalRequest:
        return self._get_model(request_id).to_dto()

    def load_history(self, request_id: UUID) -> tuple[ApprovalEvent, ...]:
        try:
            rows = self.session.execute(
                select(ApprovalEventModel)
                .where(ApprovalEventModel.request_id == request_id)
                .order_by(ApprovalEventModel.sequence)
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryFailureError("load_history", str(exc)) from exc
        return tuple(row.to_dto() for row in rows)

    def list_requests(
        self,
        entity_type: str,
        entity_ref: str,
        include_inactive: bool = False,
    ) -> tuple[ApprovalRequest, ...]:
        """Requests owned by one entity, oldest first."""
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.entity_type == entity_type,
            ApprovalRequestModel.entity_ref == entity_ref,
        )
        if not include_inactive:
            stmt = stmt.where(ApprovalRequestModel.is_active.is_(True))
        stmt = stmt.order_by(ApprovalRequestModel.__table__.c.created_at)
        try:
            rows = self.session.execute(stmt).scalars().all()
        except SQLAlchemyError as exc:
            raise RepositoryFailureError("list_requests", str(exc)) from exc
        return tuple(row.to_dto() for row in rows)

    def append_event_and_status(
        self,
        request_id: UUID,
        event: ApprovalEvent,
        new_status: RequestStatus,
        expected_version: int,
        *,
        is_active: bool = True,
    ) -> ApprovalRequest:
        """Append ``event`` and move the request to ``new_status``.

        The UPDATE runs first so a losing writer fails before inserting.
        """
        table = ApprovalRequestModel.__table__
        try:
            result = self.session.execute(
                update(table)
                .where(
                    table.c.request_id == request_id,
                    table.c.version == expected_version,
                )
                .values(
                    status=new_status.value,
                    version=expected_version + 1,
                    is_active=is_active,
                    updated_at=event.occurred_at,
                    updated_by=event.actor_id,
                )
            )
            if result.rowcount != 1:
                actual = self.session.execute(
                    select(table.c.version).where(table.c.request_id == request_id)
                ).scalar_one_or_none()
                if actual is None:
                    raise RequestNotFoundError(str(request_id))
                raise ConcurrentModificationError(str(request_id), expected_version, actual)

            self.session.add(ApprovalEventModel.from_dto(event))
            self.session.flush()
        except IntegrityError as exc:
            logger.warning(
                "concurrent_event_insert_conflict",
                extra={"request_id": str(request_id), "sequence": event.sequence},
            )
            raise ConcurrentModificationError(str(request_id), expected_version) from exc
        except SQLAlchemyError as exc:
            raise RepositoryFailureError("append_event_and_status", str(exc)) from exc

        return self._get_model(request_id, refresh=True).to_dto()

    def _get_model(self, request_id: UUID, refresh: bool = False) -> ApprovalRequestModel:
        stmt = select(ApprovalRequestModel).where(
            ApprovalRequestModel.request_id == request_id
        )
        if refresh:
            stmt = stmt.execution_options(populate_existing=True)
        try:
            model = self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            raise RepositoryFailureError("load_request", str(exc)) from exc
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model
