"""Orchestration services: workflow engine, notification delivery, mail."""

from approval_services.mailer import (
    DatabaseTemplateSource,
    SmtpMailer,
    StaticRecipientDirectory,
    StaticTemplateSource,
    render_template,
    to_past_tense,
)
from approval_services.notification_dispatcher import NotificationDispatcher
from approval_services.workflow_engine import WorkflowEngine

__all__ = [
    "DatabaseTemplateSource",
    "NotificationDispatcher",
    "SmtpMailer",
    "StaticRecipientDirectory",
    "StaticTemplateSource",
    "WorkflowEngine",
    "render_template",
    "to_past_tense",
]
