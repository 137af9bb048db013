"""
Approval configuration set schema.

Source artifact for approval policy: YAML fragments are parsed into these
types by the loader and turned into kernel ``ApprovalConfig`` values by the
policy stores.

Key distinction:
  WorkflowPolicyDef = source artifact (human-authored, versioned)
  ApprovalConfig    = runtime value passed into every decision
"""

from __future__ import annotations

from dataclasses import dataclass

# Boolean switches accepted on a workflow entry, with their defaults.
POLICY_FLAGS: dict[str, bool] = {
    "is_single_refer_clarify_option": False,
    "is_send_email": False,
    "is_send_email_to_approver": False,
    "is_send_email_to_refer_clarify": False,
    "is_send_email_to_reject": False,
    "is_send_final_email": False,
    "is_minimum_two_approval": False,
    "is_consecutive_approval": False,
}


@dataclass(frozen=True)
class WorkflowPolicyDef:
    """Approval policy for one workflow type, as authored."""

    workflow_type: str
    version: int = 1
    module_name: str = ""
    description: str = ""
    flags: tuple[tuple[str, bool], ...] = ()
    approver_sequence: tuple[int, ...] = ()
    checksum: str = ""

    def flag(self, name: str) -> bool:
        return dict(self.flags).get(name, POLICY_FLAGS[name])


@dataclass(frozen=True)
class EmailFormatDef:
    """Seed template for one e-mail format."""

    email_format: str
    subject: str
    body: str
    is_active: bool = True


@dataclass(frozen=True)
class ApprovalConfigurationSet:
    """A complete, versioned set of workflow policies and e-mail seeds."""

    config_id: str
    version: int
    workflows: tuple[WorkflowPolicyDef, ...] = ()
    email_formats: tuple[EmailFormatDef, ...] = ()
    checksum: str = ""
