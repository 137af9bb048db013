"""
Module: approval_kernel.models.email_format
Responsibility: ORM persistence for notification e-mail templates, one
    active row per ``EmailFormat``.

Architecture position: Kernel > Models.  May import from db/ and domain/
    value objects only.

Invariants enforced:
    - email_format_type is unique; templates are soft-deleted, never
      removed, so past notifications stay explainable.
"""

from __future__ import annotations

# AuditInfo's field annotations are resolved in this module's namespace.
from datetime import datetime  # noqa: F401

from sqlalchemy import String, event
from sqlalchemy.orm import Mapped, mapped_column

from approval_kernel.db.base import Base, audit_composite
from approval_kernel.domain.approval import AuditInfo, EmailFormat, EmailTemplate
from approval_kernel.exceptions import ImmutabilityViolationError


class EmailFormatModel(Base):
    """Subject/body template for one notification format."""

    __tablename__ = "email_formats"

    email_format_type: Mapped[str] = mapped_column(
        String(30), nullable=False, unique=True,
    )
    subject: Mapped[str] = mapped_column(String(250), nullable=False)
    body: Mapped[str] = mapped_column(String(1000), nullable=False)
    is_active: Mapped[bool] = mapped_column(nullable=False, default=True)
    audit: Mapped[AuditInfo] = audit_composite()

    def __repr__(self) -> str:
        return f"<EmailFormat {self.email_format_type} active={self.is_active}>"

    def to_dto(self) -> EmailTemplate:
        """Convert ORM model to frozen domain DTO."""
        return EmailTemplate(
            email_format=EmailFormat(self.email_format_type),
            subject=self.subject,
            body=self.body,
            is_active=self.is_active,
        )


@event.listens_for(EmailFormatModel, "before_delete")
def prevent_email_format_delete(mapper, connection, target):
    """Templates are deactivated, never deleted."""
    raise ImmutabilityViolationError(
        entity_type="EmailFormat",
        entity_id=target.email_format_type,
        reason="Email formats cannot be deleted -- deactivate instead",
    )
