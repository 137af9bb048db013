"""
Notification planning (``approval_kernel.domain.notification_policy``).

Pure mapping from a committed transition and the policy flags to the
e-mails that should go out.  Delivery is done elsewhere
(``approval_services.notification_dispatcher``); this module decides only
*which* format goes to *which* audience.

``ApprovalConfig.is_send_email`` is the master switch: when it is off
nothing is planned regardless of the other toggles.
"""

from __future__ import annotations

from approval_kernel.domain.approval import (
    ApprovalConfig,
    Audience,
    EmailFormat,
    PlannedNotification,
    RequestActivity,
    RequestStatus,
)


def plan_notifications(
    from_status: RequestStatus,
    to_status: RequestStatus,
    activity: RequestActivity,
    policy: ApprovalConfig,
) -> tuple[PlannedNotification, ...]:
    """Return the notifications for a transition, possibly empty."""
    if not policy.is_send_email:
        return ()
    if activity == RequestActivity.REMOVE:
        return ()

    planned: list[PlannedNotification] = []

    if to_status == RequestStatus.PENDING:
        planned.append(PlannedNotification(EmailFormat.NEW_REQUEST, Audience.APPROVER))

    elif to_status in (RequestStatus.IN_PROGRESS, RequestStatus.AMEND):
        if policy.is_send_email_to_approver:
            planned.append(PlannedNotification(EmailFormat.UPDATE_REQUEST, Audience.APPROVER))

    elif to_status == RequestStatus.REFER:
        if policy.is_send_email_to_refer_clarify:
            planned.append(PlannedNotification(EmailFormat.REFER, Audience.REFEREE))

    elif to_status == RequestStatus.CLARIFY:
        if policy.is_send_email_to_refer_clarify:
            planned.append(PlannedNotification(EmailFormat.CLARIFY, Audience.REFEREE))

    elif to_status == RequestStatus.RETURN:
        planned.append(PlannedNotification(EmailFormat.RETURN, Audience.REQUESTER))

    elif to_status == RequestStatus.REJECT:
        if policy.is_send_email_to_reject:
            if activity == RequestActivity.CANCEL:
                planned.append(PlannedNotification(EmailFormat.CANCEL, Audience.APPROVER))
            else:
                planned.append(PlannedNotification(EmailFormat.REJECT, Audience.REQUESTER))

    elif to_status == RequestStatus.FINAL_APPROVE:
        if policy.is_send_final_email:
            planned.append(PlannedNotification(EmailFormat.UPDATE_REQUEST, Audience.REQUESTER))

    elif to_status == RequestStatus.COMPLETE:
        if policy.is_send_final_email:
            planned.append(PlannedNotification(EmailFormat.COMPLETE, Audience.REQUESTER))

    return tuple(planned)
