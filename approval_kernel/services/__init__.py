"""Kernel persistence services (flush-only, caller owns the transaction)."""

from approval_kernel.services.base import BaseService
from approval_kernel.services.email_format_service import EmailFormatService
from approval_kernel.services.notification_outbox import NotificationOutbox
from approval_kernel.services.request_repository import RequestRepository

__all__ = [
    "BaseService",
    "EmailFormatService",
    "NotificationOutbox",
    "RequestRepository",
]
