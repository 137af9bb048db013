"""
Configuration Loader (``approval_config.loader``).

Responsibility
--------------
Loads YAML configuration set files and parses them into typed
``approval_config.schema`` dataclass instances, then bridges those into
kernel values (``ApprovalConfig``, ``EmailTemplate``).  Runtime callers
go through ``approval_config.get_policy_store()``.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  Sits above
``approval_kernel`` (it builds kernel value objects); the kernel never
imports from here.

Invariants enforced
-------------------
* Unknown keys, non-boolean flags and non-integer approver ids raise
  ``InvalidPolicyConfigError``; no silent defaults for malformed input.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash per workflow
  and per set, recorded as ``ApprovalConfig.policy_hash``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Structural errors  -> ``InvalidPolicyConfigError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from approval_config.schema import (
    POLICY_FLAGS,
    ApprovalConfigurationSet,
    EmailFormatDef,
    WorkflowPolicyDef,
)
from approval_kernel.domain.approval import ApprovalConfig, EmailFormat, EmailTemplate
from approval_kernel.exceptions import InvalidPolicyConfigError

_WORKFLOW_KEYS = frozenset(
    {"workflow_type", "version", "module_name", "description", "approver_sequence"}
) | frozenset(POLICY_FLAGS)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums, independent of
    key order.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_policy(data: dict[str, Any]) -> WorkflowPolicyDef:
    """Parse one ``workflows:`` entry."""
    workflow_type = data.get("workflow_type")
    if not workflow_type or not isinstance(workflow_type, str):
        raise InvalidPolicyConfigError(str(workflow_type), "workflow_type is required")

    unknown = sorted(set(data) - _WORKFLOW_KEYS)
    if unknown:
        raise InvalidPolicyConfigError(workflow_type, f"unknown keys: {', '.join(unknown)}")

    flags: list[tuple[str, bool]] = []
    for name in POLICY_FLAGS:
        if name not in data:
            continue
        value = data[name]
        if not isinstance(value, bool):
            raise InvalidPolicyConfigError(workflow_type, f"{name} must be true or false")
        flags.append((name, value))

    raw_sequence = data.get("approver_sequence") or []
    if not isinstance(raw_sequence, list):
        raise InvalidPolicyConfigError(workflow_type, "approver_sequence must be a list")
    for actor in raw_sequence:
        if isinstance(actor, bool) or not isinstance(actor, int):
            raise InvalidPolicyConfigError(
                workflow_type, f"approver_sequence entries must be actor ids, got {actor!r}"
            )

    version = data.get("version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise InvalidPolicyConfigError(workflow_type, "version must be a positive integer")

    return WorkflowPolicyDef(
        workflow_type=workflow_type,
        version=version,
        module_name=str(data.get("module_name", "")),
        description=str(data.get("description", "")),
        flags=tuple(flags),
        approver_sequence=tuple(raw_sequence),
        checksum=compute_checksum(data),
    )


def parse_email_format(data: dict[str, Any]) -> EmailFormatDef:
    """Parse one ``email_formats:`` entry."""
    name = data.get("email_format", "")
    try:
        EmailFormat(name)
    except ValueError as exc:
        raise InvalidPolicyConfigError(str(name), "unknown email format") from exc
    return EmailFormatDef(
        email_format=name,
        subject=data["subject"],
        body=data["body"],
        is_active=data.get("is_active", True),
    )


def parse_configuration_set(data: dict[str, Any]) -> ApprovalConfigurationSet:
    """Parse a whole configuration set document."""
    workflows = tuple(parse_policy(w) for w in data.get("workflows", []))

    seen: set[str] = set()
    for w in workflows:
        if w.workflow_type in seen:
            raise InvalidPolicyConfigError(w.workflow_type, "defined more than once")
        seen.add(w.workflow_type)

    return ApprovalConfigurationSet(
        config_id=data["config_id"],
        version=data.get("version", 1),
        workflows=workflows,
        email_formats=tuple(parse_email_format(e) for e in data.get("email_formats", [])),
        checksum=compute_checksum(data),
    )


def load_configuration_set(path: Path) -> ApprovalConfigurationSet:
    return parse_configuration_set(load_yaml_file(path))


def to_approval_config(defn: WorkflowPolicyDef) -> ApprovalConfig:
    """Bridge a parsed workflow definition into the kernel policy value."""
    return ApprovalConfig(
        workflow_type=defn.workflow_type,
        version=defn.version,
        module_name=defn.module_name,
        approver_sequence=defn.approver_sequence,
        policy_hash=defn.checksum,
        **{name: defn.flag(name) for name in POLICY_FLAGS},
    )


def to_email_template(defn: EmailFormatDef) -> EmailTemplate:
    return EmailTemplate(
        email_format=EmailFormat(defn.email_format),
        subject=defn.subject,
        body=defn.body,
        is_active=defn.is_active,
    )
