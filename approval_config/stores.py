"""
Policy stores -- ``PolicyStore`` implementations.

``YamlPolicyStore`` serves policies from a parsed configuration set;
``StaticPolicyStore`` serves a fixed mapping and is what tests and
embedding applications construct directly.  Both hand out the same frozen
``ApprovalConfig`` instance for a workflow type on every call.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable

from approval_config.loader import (
    load_configuration_set,
    to_approval_config,
    to_email_template,
)
from approval_config.schema import ApprovalConfigurationSet
from approval_kernel.domain.approval import ApprovalConfig, EmailTemplate
from approval_kernel.exceptions import PolicyNotFoundError


class StaticPolicyStore:
    """In-memory policies keyed by workflow type."""

    def __init__(self, policies: Iterable[ApprovalConfig] = ()):
        self._policies: dict[str, ApprovalConfig] = {}
        for policy in policies:
            self._policies[policy.workflow_type] = policy

    def load_policy(self, workflow_type: str) -> ApprovalConfig:
        try:
            return self._policies[workflow_type]
        except KeyError:
            raise PolicyNotFoundError(workflow_type) from None

    def workflow_types(self) -> tuple[str, ...]:
        return tuple(sorted(self._policies))


class YamlPolicyStore(StaticPolicyStore):
    """Policies and e-mail seeds from one YAML configuration set."""

    def __init__(self, configuration_set: ApprovalConfigurationSet):
        super().__init__(to_approval_config(w) for w in configuration_set.workflows)
        self.configuration_set = configuration_set

    @classmethod
    def from_file(cls, path: Path) -> YamlPolicyStore:
        return cls(load_configuration_set(path))

    @property
    def checksum(self) -> str:
        return self.configuration_set.checksum

    def email_templates(self) -> tuple[EmailTemplate, ...]:
        return tuple(to_email_template(e) for e in self.configuration_set.email_formats)
