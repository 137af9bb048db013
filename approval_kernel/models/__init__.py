"""ORM models for the approval kernel."""

from approval_kernel.models.approval import (
    ApprovalEventModel,
    ApprovalRequestModel,
    NotificationModel,
    NotificationStatus,
)
from approval_kernel.models.email_format import EmailFormatModel

__all__ = [
    "ApprovalEventModel",
    "ApprovalRequestModel",
    "EmailFormatModel",
    "NotificationModel",
    "NotificationStatus",
]
