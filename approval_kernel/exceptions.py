"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the workflow engine (REST handlers, RPC adapters, batch jobs)
must react differently to a rejected command, a policy violation, a stale
read and an infrastructure outage.  Parsing message strings for that is
fragile, so every error here:
  1. Has its own class (catch by type, not message)
  2. Carries a ``code`` class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (not just a message string)

Example:
    try:
        engine.submit(request_id, RequestActivity.APPROVE, actor_id=7)
    except ConsecutiveApprovalNotAllowedError as e:
        return api_error(code=e.code, actor_id=e.actor_id)
    except ConcurrentModificationError:
        # reload and resubmit
        ...

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- WorkflowError
    |   +-- InvalidTransitionError
    |   |   +-- ActorNotPermittedError
    |   |   +-- RequestInactiveError
    |   +-- RequestNotFoundError
    |
    +-- PolicyViolationError
    |   +-- InsufficientApprovalsError
    |   +-- ConsecutiveApprovalNotAllowedError
    |   +-- ReferClarifyLimitExceededError
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError
    |
    +-- InfrastructureError
    |   +-- RepositoryFailureError
    |   +-- NotificationFailureError
    |
    +-- AuditError
    |   +-- ReplayMismatchError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError
    |   +-- PolicyNotFoundError
    |   +-- InvalidPolicyConfigError
    |
    +-- EmailFormatError
        +-- EmailFormatNotFoundError
        +-- DuplicateEmailFormatError
        +-- InvalidEmailTemplateError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                              | When Raised
--------------|-----------------------------------|--------------------------------------
Workflow      | INVALID_TRANSITION                | Activity not legal from current status
              | ACTOR_NOT_PERMITTED               | Role / submitter check failed
              | REQUEST_INACTIVE                  | Request was removed (soft-deleted)
              | REQUEST_NOT_FOUND                 | Unknown request id
--------------|-----------------------------------|--------------------------------------
Policy        | INSUFFICIENT_APPROVALS            | FinalApprove before enough approvals
              | CONSECUTIVE_APPROVAL_NOT_ALLOWED  | Same actor approved twice in a row
              | REFER_CLARIFY_LIMIT_EXCEEDED      | Second Refer/Clarify on single-use policy
--------------|-----------------------------------|--------------------------------------
Concurrency   | CONCURRENT_MODIFICATION           | Stale version; reload and resubmit
--------------|-----------------------------------|--------------------------------------
Infra         | REPOSITORY_FAILURE                | Database error; transition aborted
              | NOTIFICATION_FAILURE              | Mail error; transition NOT rolled back
--------------|-----------------------------------|--------------------------------------
Audit         | REPLAY_MISMATCH                   | History does not reproduce status
              | IMMUTABILITY_VIOLATION            | Update/delete of append-only record
--------------|-----------------------------------|--------------------------------------
Config        | POLICY_NOT_FOUND                  | No policy for workflow type
              | INVALID_POLICY_CONFIG             | Malformed policy definition
--------------|-----------------------------------|--------------------------------------
Email format  | EMAIL_FORMAT_NOT_FOUND            | No active template for the format
              | DUPLICATE_EMAIL_FORMAT            | Format type already exists
              | INVALID_EMAIL_TEMPLATE            | Empty or over-long subject/body

===============================================================================
HANDLING PATTERNS
===============================================================================

1. User-correctable (WorkflowError, PolicyViolationError): surface as a
   rejected command together with ``code`` and the structured fields.
2. Retryable (ConcurrencyError): reload the request and resubmit.
3. Fatal for the call (RepositoryFailureError): nothing was committed.
4. NotificationFailureError is only ever raised by a Mailer; the
   dispatcher logs it and reschedules delivery.  It never reaches the
   caller of ``submit``.

===============================================================================
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Workflow exceptions


class WorkflowError(ApprovalKernelError):
    """Base exception for rejected workflow commands."""

    code: str = "WORKFLOW_ERROR"


class InvalidTransitionError(WorkflowError):
    """Activity is not legal from the current status."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, current_status: str, activity: str, reason: str = ""):
        self.current_status = current_status
        self.activity = activity
        self.reason = reason
        message = f"Activity {activity} is not allowed from status {current_status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ActorNotPermittedError(InvalidTransitionError):
    """The actor's role or identity does not allow the activity."""

    code: str = "ACTOR_NOT_PERMITTED"

    def __init__(
        self,
        current_status: str,
        activity: str,
        actor_id: int,
        actor_role: str | None,
        required: str,
    ):
        self.actor_id = actor_id
        self.actor_role = actor_role
        self.required = required
        super().__init__(
            current_status,
            activity,
            f"actor {actor_id} (role={actor_role}) is not {required}",
        )


class RequestInactiveError(InvalidTransitionError):
    """The request was removed and accepts no further activity."""

    code: str = "REQUEST_INACTIVE"

    def __init__(self, request_id: str, current_status: str, activity: str):
        self.request_id = request_id
        super().__init__(current_status, activity, f"request {request_id} is inactive")


class RequestNotFoundError(WorkflowError):
    """Approval request with given ID was not found."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


# Policy violations


class PolicyViolationError(ApprovalKernelError):
    """Base exception for commands blocked by ApprovalConfig flags."""

    code: str = "POLICY_VIOLATION"


class InsufficientApprovalsError(PolicyViolationError):
    """FinalApprove attempted before the required approvals exist."""

    code: str = "INSUFFICIENT_APPROVALS"

    def __init__(self, required: int, distinct_approvers: int, missing: tuple[int, ...] = ()):
        self.required = required
        self.distinct_approvers = distinct_approvers
        self.missing = missing
        message = (
            f"Final approval requires {required} distinct approver(s), "
            f"found {distinct_approvers}"
        )
        if missing:
            message = f"{message}; still waiting on {', '.join(str(m) for m in missing)}"
        super().__init__(message)


class ConsecutiveApprovalNotAllowedError(PolicyViolationError):
    """The same actor approved twice in a row, or out of sequence."""

    code: str = "CONSECUTIVE_APPROVAL_NOT_ALLOWED"

    def __init__(self, actor_id: int, expected_actor_id: int | None = None):
        self.actor_id = actor_id
        self.expected_actor_id = expected_actor_id
        if expected_actor_id is not None:
            message = (
                f"Approval by actor {actor_id} is out of sequence; "
                f"next approver is {expected_actor_id}"
            )
        else:
            message = f"Actor {actor_id} cannot approve twice in a row"
        super().__init__(message)


class ReferClarifyLimitExceededError(PolicyViolationError):
    """Only one Refer or Clarify is allowed for the request lifetime."""

    code: str = "REFER_CLARIFY_LIMIT_EXCEEDED"

    def __init__(self, activity: str, used: int):
        self.activity = activity
        self.used = used
        super().__init__(
            f"{activity} rejected: refer/clarify already used {used} time(s) "
            "and the policy allows a single use"
        )


# Concurrency


class ConcurrencyError(ApprovalKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic version check failed; caller should reload and retry."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(self, request_id: str, expected_version: int, actual_version: int | None = None):
        self.request_id = request_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Approval request {request_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )


# Infrastructure


class InfrastructureError(ApprovalKernelError):
    """Base exception for collaborator failures."""

    code: str = "INFRASTRUCTURE_ERROR"


class RepositoryFailureError(InfrastructureError):
    """Persistence failed; the transition was not committed."""

    code: str = "REPOSITORY_FAILURE"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Repository failure during {operation}: {detail}")


class NotificationFailureError(InfrastructureError):
    """Mail delivery failed.  Never rolls back a committed transition."""

    code: str = "NOTIFICATION_FAILURE"

    def __init__(self, email_format: str, audience: str, detail: str):
        self.email_format = email_format
        self.audience = audience
        self.detail = detail
        super().__init__(f"Failed to send {email_format} to {audience}: {detail}")


# Audit


class AuditError(ApprovalKernelError):
    """Base exception for audit trail errors."""

    code: str = "AUDIT_ERROR"


class ReplayMismatchError(AuditError):
    """Replaying the history does not reproduce the recorded status."""

    code: str = "REPLAY_MISMATCH"

    def __init__(self, sequence: int, recorded_status: str, replayed_status: str):
        self.sequence = sequence
        self.recorded_status = recorded_status
        self.replayed_status = replayed_status
        super().__init__(
            f"History replay diverged at event {sequence}: "
            f"recorded {recorded_status}, replayed {replayed_status}"
        )


class ImmutabilityViolationError(AuditError):
    """Attempt to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


# Configuration


class ConfigError(ApprovalKernelError):
    """Base exception for configuration errors."""

    code: str = "CONFIG_ERROR"


class PolicyNotFoundError(ConfigError):
    """No ApprovalConfig registered for the workflow type."""

    code: str = "POLICY_NOT_FOUND"

    def __init__(self, workflow_type: str):
        self.workflow_type = workflow_type
        super().__init__(f"No approval policy configured for workflow type: {workflow_type}")


class InvalidPolicyConfigError(ConfigError):
    """A policy definition is malformed."""

    code: str = "INVALID_POLICY_CONFIG"

    def __init__(self, workflow_type: str, reason: str):
        self.workflow_type = workflow_type
        self.reason = reason
        super().__init__(f"Invalid approval policy {workflow_type!r}: {reason}")


# Email formats


class EmailFormatError(ApprovalKernelError):
    """Base exception for e-mail format template errors."""

    code: str = "EMAIL_FORMAT_ERROR"


class EmailFormatNotFoundError(EmailFormatError):
    """No active template for the e-mail format."""

    code: str = "EMAIL_FORMAT_NOT_FOUND"

    def __init__(self, email_format: str):
        self.email_format = email_format
        super().__init__(f"Email format not found: {email_format}")


class DuplicateEmailFormatError(EmailFormatError):
    """An e-mail format with this type already exists."""

    code: str = "DUPLICATE_EMAIL_FORMAT"

    def __init__(self, email_format: str):
        self.email_format = email_format
        super().__init__(
            f"This email format {email_format} already exists. "
            "Please try again with a different email format."
        )


class InvalidEmailTemplateError(EmailFormatError):
    """Template subject/body missing or over the stored length."""

    code: str = "INVALID_EMAIL_TEMPLATE"

    def __init__(self, email_format: str, reason: str):
        self.email_format = email_format
        self.reason = reason
        super().__init__(f"Invalid template for {email_format}: {reason}")
