"""
SMTP mailer and template rendering.

``SmtpMailer`` implements the kernel ``Mailer`` port: it looks up the
active template for the requested ``EmailFormat``, resolves addresses
for the audience through a ``RecipientDirectory``, renders ``$name``
placeholders with ``string.Template`` and sends one message with
``smtplib`` under a timeout.  Every failure is raised as
``NotificationFailureError`` so the dispatcher can reschedule it.
"""

from __future__ import annotations

import smtplib
from email.message import EmailMessage
from string import Template
from typing import Any, Callable, Iterable, Mapping, Protocol, Sequence

from sqlalchemy.orm import Session, sessionmaker

from approval_config.settings import Settings
from approval_kernel.db.engine import session_scope
from approval_kernel.domain.approval import Audience, EmailFormat, EmailTemplate
from approval_kernel.domain.ports import RecipientDirectory
from approval_kernel.exceptions import EmailFormatNotFoundError, NotificationFailureError
from approval_kernel.logging_config import get_logger
from approval_kernel.services.email_format_service import EmailFormatService

logger = get_logger("services.mailer")

_PAST_TENSE = {
    "Reject": "Rejected",
    "Complete": "Completed",
    "Recommend": "Recommended",
    "Approve": "Approved",
    "FinalApprove": "Final Approved",
    "Create": "Created",
    "Cancel": "Canceled",
    "Refer": "Referred",
    "Clarify": "Clarified",
    "Change": "Changed",
    "Amend": "Amended",
    "Resubmit": "Resubmitted",
    "Return": "Returned",
    "Remove": "Removed",
}


def to_past_tense(verb: str) -> str:
    """``"Reject"`` -> ``"Rejected"``; unknown words come back unchanged."""
    return _PAST_TENSE.get(verb, verb)


def render_template(
    template: EmailTemplate,
    context: Mapping[str, Any],
    *,
    organization: str = "",
    base_url: str = "",
) -> tuple[str, str]:
    """Fill ``$placeholders`` in subject and body.

    Unknown placeholders are left as written rather than raising, so an
    edited template never blocks delivery.
    """
    request_id = context.get("request_id", "")
    values = {
        "organization": organization,
        "module_name": context.get("module_name", ""),
        "request_no": context.get("request_no", ""),
        "status": context.get("status", ""),
        "activity": context.get("activity", ""),
        "activity_past": to_past_tense(str(context.get("activity", ""))).lower(),
        "comment": context.get("comment", ""),
        "actor_id": context.get("actor_id", ""),
        "link": f"{base_url.rstrip('/')}/requests/{request_id}" if base_url else "",
    }
    subject = Template(template.subject).safe_substitute(values)
    body = Template(template.body).safe_substitute(values)
    return subject.strip(), body.strip() + "\n"


class TemplateSource(Protocol):
    def get_template(self, email_format: EmailFormat) -> EmailTemplate:
        """Raise ``EmailFormatNotFoundError`` if there is no active template."""
        ...


class StaticTemplateSource:
    """Templates held in memory, e.g. the seeds of a configuration set."""

    def __init__(self, templates: Iterable[EmailTemplate]):
        self._templates = {t.email_format: t for t in templates}

    def get_template(self, email_format: EmailFormat) -> EmailTemplate:
        template = self._templates.get(email_format)
        if template is None or not template.is_active:
            raise EmailFormatNotFoundError(email_format.value)
        return template


class DatabaseTemplateSource:
    """Templates read from ``email_formats`` in a short transaction per lookup."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def get_template(self, email_format: EmailFormat) -> EmailTemplate:
        with session_scope(self._session_factory) as session:
            return EmailFormatService(session).get_template(email_format)


class StaticRecipientDirectory:
    """Fixed addresses per audience, with per-actor addresses for requesters.

    The requester is looked up by ``submitted_by`` in the notification
    context; everyone else comes from the audience mapping.
    """

    def __init__(
        self,
        by_audience: Mapping[Audience, Sequence[str]] | None = None,
        by_actor: Mapping[int, str] | None = None,
    ):
        self._by_audience = dict(by_audience or {})
        self._by_actor = dict(by_actor or {})

    def resolve(self, audience: Audience, context: Mapping[str, Any]) -> Sequence[str]:
        if audience == Audience.REQUESTER:
            address = self._by_actor.get(context.get("submitted_by"))
            if address:
                return [address]
        return list(self._by_audience.get(audience, ()))


class SmtpMailer:
    """``Mailer`` that delivers through an SMTP relay."""

    def __init__(
        self,
        settings: Settings,
        templates: TemplateSource,
        recipients: RecipientDirectory,
        smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP,
    ):
        self._settings = settings
        self._templates = templates
        self._recipients = recipients
        self._smtp_factory = smtp_factory

    def build_message(
        self,
        email_format: EmailFormat,
        audience: Audience,
        context: Mapping[str, Any],
    ) -> EmailMessage:
        try:
            template = self._templates.get_template(email_format)
        except EmailFormatNotFoundError as exc:
            raise NotificationFailureError(
                email_format.value, audience.value, "no active template"
            ) from exc

        to_addresses = list(self._recipients.resolve(audience, context))
        if not to_addresses:
            raise NotificationFailureError(email_format.value, audience.value, "no recipients")

        subject, body = render_template(
            template,
            context,
            organization=self._settings.organization_name,
            base_url=self._settings.base_url,
        )
        message = EmailMessage()
        message["From"] = self._settings.smtp_sender
        message["To"] = ", ".join(to_addresses)
        message["Subject"] = subject
        message.set_content(body)
        return message

    def send(
        self,
        email_format: EmailFormat,
        audience: Audience,
        context: Mapping[str, Any],
    ) -> None:
        message = self.build_message(email_format, audience, context)
        s = self._settings
        try:
            with self._smtp_factory(s.smtp_host, s.smtp_port, timeout=s.smtp_timeout) as smtp:
                if s.smtp_use_tls:
                    smtp.starttls()
                if s.smtp_username:
                    smtp.login(s.smtp_username, s.smtp_password or "")
                smtp.send_message(message)
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationFailureError(email_format.value, audience.value, str(exc)) from exc

        logger.info(
            "email_sent",
            extra={
                "email_format": email_format.value,
                "audience": audience.value,
                "recipient_count": len(message["To"].split(",")),
                "request_no": context.get("request_no"),
            },
        )
