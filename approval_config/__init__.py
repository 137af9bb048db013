"""
approval_config -- single public entrypoint for approval configuration.

Responsibility:
    Provides the runtime way to obtain approval policy through
    ``get_policy_store()``.  Workflow policies and e-mail template seeds
    are authored as YAML configuration sets under ``approval_config/sets``.

Architecture position:
    Configuration -- sits above ``approval_kernel`` and below
    ``approval_services``.  The kernel never imports from here; it only
    sees ``ApprovalConfig`` values through the ``PolicyStore`` port.

Invariants enforced:
    - Deterministic loading: the same YAML always yields the same
      ``ApprovalConfig`` values and checksums.
    - Policies are frozen values; nothing here holds mutable global state.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set with the requested name.
    - ``InvalidPolicyConfigError`` -- malformed workflow entries.

Audit relevance:
    Every successful ``get_policy_store()`` call emits an
    ``approval_config_loaded`` log entry with the config id, version,
    checksum and workflow count, tying recorded decisions to the policy
    version that governed them.
"""

from __future__ import annotations

from pathlib import Path

from approval_config.loader import compute_checksum, load_configuration_set
from approval_config.settings import Settings
from approval_config.stores import StaticPolicyStore, YamlPolicyStore
from approval_kernel.logging_config import get_logger

_logger = get_logger("config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"


def get_policy_store(
    config_dir: Path | None = None,
    set_name: str = "default",
) -> YamlPolicyStore:
    """Load the named configuration set and return a policy store over it.

    Args:
        config_dir: Override path to the configuration sets directory.
            Defaults to approval_config/sets/.
        set_name: File stem of the set to load (``<set_name>.yaml``).

    Raises:
        FileNotFoundError: If the configuration set does not exist.
        InvalidPolicyConfigError: If a workflow entry is malformed.
    """
    sets_dir = Path(config_dir) if config_dir is not None else _DEFAULT_CONFIG_DIR
    configuration_set = load_configuration_set(sets_dir / f"{set_name}.yaml")
    store = YamlPolicyStore(configuration_set)

    _logger.info(
        "approval_config_loaded",
        extra={
            "config_id": configuration_set.config_id,
            "config_version": configuration_set.version,
            "checksum": configuration_set.checksum,
            "workflow_count": len(configuration_set.workflows),
            "email_format_count": len(configuration_set.email_formats),
        },
    )
    return store


__all__ = [
    "Settings",
    "StaticPolicyStore",
    "YamlPolicyStore",
    "compute_checksum",
    "get_policy_store",
]
