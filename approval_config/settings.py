"""
Runtime settings read from the environment.

Only deployment concerns live here (database URL, SMTP connection,
delivery retry tuning, branding).  Approval policy is YAML, loaded through
``get_policy_store()``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping

_PREFIX = "APPROVAL_"


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///approval.db"
    smtp_host: str = "localhost"
    smtp_port: int = 25
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_sender: str = "no-reply@localhost"
    smtp_timeout: float = 10.0
    smtp_use_tls: bool = False
    notify_max_attempts: int = 5
    notify_backoff_seconds: float = 30.0
    notify_lease_seconds: float = 120.0
    organization_name: str = "Clinic"
    base_url: str = "http://localhost"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Build settings from ``APPROVAL_*`` variables; unset ones keep defaults.

        Raises:
            ValueError: a numeric or boolean variable does not parse.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str, default):
            return env.get(_PREFIX + name.upper(), default)

        return cls(
            database_url=get("database_url", defaults.database_url),
            smtp_host=get("smtp_host", defaults.smtp_host),
            smtp_port=int(get("smtp_port", defaults.smtp_port)),
            smtp_username=get("smtp_username", defaults.smtp_username),
            smtp_password=get("smtp_password", defaults.smtp_password),
            smtp_sender=get("smtp_sender", defaults.smtp_sender),
            smtp_timeout=float(get("smtp_timeout", defaults.smtp_timeout)),
            smtp_use_tls=_parse_bool(get("smtp_use_tls", defaults.smtp_use_tls)),
            notify_max_attempts=int(get("notify_max_attempts", defaults.notify_max_attempts)),
            notify_backoff_seconds=float(
                get("notify_backoff_seconds", defaults.notify_backoff_seconds)
            ),
            notify_lease_seconds=float(
                get("notify_lease_seconds", defaults.notify_lease_seconds)
            ),
            organization_name=get("organization_name", defaults.organization_name),
            base_url=get("base_url", defaults.base_url),
        )


def _parse_bool(value) -> bool:
    if isinstance(value, bool):
        return value
    lowered = str(value).strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Not a boolean: {value!r}")
