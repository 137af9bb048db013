"""
EmailFormatService -- management of notification e-mail templates.

Responsibility:
    Create, update, list and deactivate the subject/body template stored
    for each ``EmailFormat``, and seed missing templates from
    configuration.

Architecture position:
    Kernel > Services.  Flushes only.  The mailer reads templates through
    ``get_template``.

Invariants enforced:
    - One row per format type (DuplicateEmailFormatError).
    - Subject is 1..250 characters, body 1..1000 characters.
    - Templates are deactivated, never deleted.
"""

from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from approval_kernel.domain.approval import AuditInfo, EmailFormat, EmailTemplate
from approval_kernel.exceptions import (
    DuplicateEmailFormatError,
    EmailFormatNotFoundError,
    InvalidEmailTemplateError,
)
from approval_kernel.logging_config import get_logger
from approval_kernel.models.email_format import EmailFormatModel
from approval_kernel.services.base import BaseService

logger = get_logger("services.email_format")

MAX_SUBJECT_LENGTH = 250
MAX_BODY_LENGTH = 1000


def _validate(email_format: EmailFormat, subject: str, body: str) -> None:
    if not subject or not subject.strip():
        raise InvalidEmailTemplateError(email_format.value, "subject is required")
    if len(subject) > MAX_SUBJECT_LENGTH:
        raise InvalidEmailTemplateError(
            email_format.value, f"subject longer than {MAX_SUBJECT_LENGTH} characters"
        )
    if not body or not body.strip():
        raise InvalidEmailTemplateError(email_format.value, "body is required")
    if len(body) > MAX_BODY_LENGTH:
        raise InvalidEmailTemplateError(
            email_format.value, f"body longer than {MAX_BODY_LENGTH} characters"
        )


class EmailFormatService(BaseService[EmailFormatModel]):
    """CRUD-without-delete over ``email_formats``."""

    def create(
        self,
        email_format: EmailFormat,
        subject: str,
        body: str,
        actor_id: int,
    ) -> EmailTemplate:
        """Store a new template.

        Raises:
            DuplicateEmailFormatError: the format already has a row.
            InvalidEmailTemplateError: subject/body empty or too long.
        """
        _validate(email_format, subject, body)
        if self._find(email_format) is not None:
            raise DuplicateEmailFormatError(email_format.value)

        now = self._clock.now()
        model = EmailFormatModel(
            email_format_type=email_format.value,
            subject=subject,
            body=body,
            is_active=True,
            audit=AuditInfo(created_at=now, updated_at=now, created_by=actor_id),
        )
        self.session.add(model)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateEmailFormatError(email_format.value) from exc

        logger.info(
            "email_format_created",
            extra={"email_format": email_format.value, "actor_id": actor_id},
        )
        return model.to_dto()

    def update(
        self,
        email_format: EmailFormat,
        actor_id: int,
        *,
        subject: str | None = None,
        body: str | None = None,
        is_active: bool | None = None,
    ) -> EmailTemplate:
        """Change subject/body/active flag of an existing template."""
        model = self._require(email_format)
        new_subject = subject if subject is not None else model.subject
        new_body = body if body is not None else model.body
        _validate(email_format, new_subject, new_body)

        model.subject = new_subject
        model.body = new_body
        if is_active is not None:
            model.is_active = is_active
        model.audit = model.audit.touched(self._clock.now(), actor_id)
        self.session.flush()

        logger.info(
            "email_format_updated",
            extra={"email_format": email_format.value, "actor_id": actor_id},
        )
        return model.to_dto()

    def deactivate(self, email_format: EmailFormat, actor_id: int) -> EmailTemplate:
        return self.update(email_format, actor_id, is_active=False)

    def get_by_type(self, email_format: EmailFormat) -> EmailTemplate:
        """Template for the format, active or not."""
        return self._require(email_format).to_dto()

    def get_template(self, email_format: EmailFormat) -> EmailTemplate:
        """Active template for the format; what the mailer renders."""
        model = self._find(email_format)
        if model is None or not model.is_active:
            raise EmailFormatNotFoundError(email_format.value)
        return model.to_dto()

    def list_formats(
        self,
        take: int = 20,
        skip: int = 0,
        include_inactive: bool = False,
    ) -> tuple[EmailTemplate, ...]:
        """One page of templates ordered by format type."""
        stmt = select(EmailFormatModel)
        if not include_inactive:
            stmt = stmt.where(EmailFormatModel.is_active.is_(True))
        stmt = stmt.order_by(EmailFormatModel.email_format_type).offset(skip).limit(take)
        return tuple(m.to_dto() for m in self.session.execute(stmt).scalars().all())

    def seed(self, templates: Iterable[EmailTemplate], actor_id: int) -> int:
        """Create templates whose format has no row yet. Returns the count created."""
        created = 0
        for template in templates:
            if self._find(template.email_format) is not None:
                continue
            self.create(template.email_format, template.subject, template.body, actor_id)
            if not template.is_active:
                self.deactivate(template.email_format, actor_id)
            created += 1
        logger.info("email_formats_seeded", extra={"created_count": created})
        return created

    def _find(self, email_format: EmailFormat) -> EmailFormatModel | None:
        return self.session.execute(
            select(EmailFormatModel).where(
                EmailFormatModel.email_format_type == email_format.value
            )
        ).scalar_one_or_none()

    def _require(self, email_format: EmailFormat) -> EmailFormatModel:
        model = self._find(email_format)
        if model is None:
            raise EmailFormatNotFoundError(email_format.value)
        return model
