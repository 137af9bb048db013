"""
Wiring for a running deployment: settings -> database, policy, mail, engine.

Tests and embedding applications usually construct ``WorkflowEngine``
directly; this is the path a service process takes at startup.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from approval_config import get_policy_store
from approval_config.settings import Settings
from approval_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from approval_kernel.domain.clock import Clock
from approval_kernel.domain.ports import RecipientDirectory, RoleSource
from approval_kernel.logging_config import get_logger
from approval_kernel.services.email_format_service import EmailFormatService
from approval_services.mailer import DatabaseTemplateSource, SmtpMailer
from approval_services.notification_dispatcher import NotificationDispatcher
from approval_services.workflow_engine import WorkflowEngine

logger = get_logger("services.bootstrap")

SYSTEM_ACTOR_ID = 0


@dataclass
class ApprovalApp:
    engine: WorkflowEngine
    dispatcher: NotificationDispatcher

    def close(self) -> None:
        """Stop the retry loop and finish queued deliveries."""
        self.dispatcher.shutdown(wait=True)
        logger.info("approval_app_closed")


def build_app(
    recipients: RecipientDirectory,
    *,
    settings: Settings | None = None,
    config_dir: Path | None = None,
    role_source: RoleSource | None = None,
    clock: Clock | None = None,
    seed_email_formats: bool = True,
    create_schema: bool = False,
) -> ApprovalApp:
    """Initialize the database engine and assemble the workflow engine.

    Tables must already exist unless ``create_schema`` is set.  With
    ``seed_email_formats`` the templates of the configuration set are
    inserted where none exist yet.  The dispatcher's retry loop is running
    when this returns; ``ApprovalApp.close()`` stops it.
    """
    settings = settings or Settings.from_env()
    init_engine_from_url(settings.database_url)
    if create_schema:
        create_tables()
    session_factory = get_session_factory()
    policy_store = get_policy_store(config_dir)

    if seed_email_formats:
        with session_scope(session_factory) as session:
            EmailFormatService(session, clock).seed(
                policy_store.email_templates(), actor_id=SYSTEM_ACTOR_ID
            )

    mailer = SmtpMailer(settings, DatabaseTemplateSource(session_factory), recipients)
    dispatcher = NotificationDispatcher(
        session_factory,
        mailer,
        clock=clock,
        max_attempts=settings.notify_max_attempts,
        backoff_seconds=settings.notify_backoff_seconds,
        lease_seconds=settings.notify_lease_seconds,
    )
    dispatcher.start_retry_loop()
    engine = WorkflowEngine(
        session_factory,
        policy_store,
        dispatcher=dispatcher,
        clock=clock,
        role_source=role_source,
    )
    logger.info(
        "approval_app_ready",
        extra={"workflow_types": list(policy_store.workflow_types())},
    )
    return ApprovalApp(engine=engine, dispatcher=dispatcher)
