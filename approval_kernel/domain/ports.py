"""
Collaborator interfaces consumed by the workflow engine.

Structural protocols only; concrete adapters live in
``approval_kernel.services`` (SQLAlchemy repository), ``approval_config``
(policy stores) and ``approval_services.mailer`` (SMTP).
"""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence, runtime_checkable
from uuid import UUID

from approval_kernel.domain.approval import (
    ApprovalConfig,
    ApprovalEvent,
    ApprovalRequest,
    Audience,
    EmailFormat,
    RequestStatus,
)


@runtime_checkable
class RequestRepositoryPort(Protocol):
    """Persistence of the request aggregate and its history."""

    def load_request(self, request_id: UUID) -> ApprovalRequest:
        """Return the request; raise ``RequestNotFoundError`` if unknown."""
        ...

    def load_history(self, request_id: UUID) -> tuple[ApprovalEvent, ...]:
        """Return committed events ordered by ``sequence``."""
        ...

    def append_event_and_status(
        self,
        request_id: UUID,
        event: ApprovalEvent,
        new_status: RequestStatus,
        expected_version: int,
        *,
        is_active: bool = True,
    ) -> ApprovalRequest:
        """Append ``event`` and set ``new_status`` as one unit.

        Raises ``ConcurrentModificationError`` if the stored version is
        not ``expected_version``.
        """
        ...


@runtime_checkable
class PolicyStore(Protocol):
    """Source of ``ApprovalConfig`` per workflow type."""

    def load_policy(self, workflow_type: str) -> ApprovalConfig:
        """Raise ``PolicyNotFoundError`` for unknown workflow types."""
        ...


@runtime_checkable
class Mailer(Protocol):
    """Sends one notification.  Opaque templating/SMTP behind it."""

    def send(
        self,
        email_format: EmailFormat,
        audience: Audience,
        context: Mapping[str, Any],
    ) -> None:
        """Raise ``NotificationFailureError`` on failure."""
        ...


@runtime_checkable
class RecipientDirectory(Protocol):
    """Resolves an audience for a request to e-mail addresses."""

    def resolve(self, audience: Audience, context: Mapping[str, Any]) -> Sequence[str]:
        ...


@runtime_checkable
class RoleSource(Protocol):
    """Supplies the role string for an actor id."""

    def role_for(self, actor_id: int) -> str | None:
        ...
