"""
Module: approval_kernel.db.base
Responsibility: Declarative base class for all SQLAlchemy ORM models.  Provides
    the UUID primary key convention, the type annotation map, and the audit
    columns mapped as a composite of the domain ``AuditInfo`` value.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  Besides the
    ``AuditInfo`` value object it MUST NOT import from models/, services/ or
    outer layers.

Invariants enforced:
    - UUID primary keys: every model inherits a uuid4-generated primary key.
    - Audit composition: ``audit_composite()`` maps created/updated columns
      onto one ``AuditInfo`` attribute instead of inheriting four loose
      columns from a tracked base class.
"""

from datetime import datetime
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import DeclarativeBase, Mapped, composite, mapped_column
from sqlalchemy.types import TypeDecorator

from approval_kernel.db.types import UTCDateTime
from approval_kernel.domain.approval import AuditInfo


class UUIDString(TypeDecorator):
    """
    UUID type stored as String(36) for cross-database portability.

    Guarantees:
        - process_bind_param: UUID -> str on INSERT/UPDATE.
        - process_result_value: str -> UUID on SELECT.
    """

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to a UTC-aware DateTime.
        - int maps to BigInteger.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


def audit_composite():
    """Audit columns for one model, exposed as a single ``AuditInfo``.

    Call once per model class; every call creates fresh columns.
    """
    return composite(
        AuditInfo,
        mapped_column("created_at", UTCDateTime(), nullable=False),
        mapped_column("updated_at", UTCDateTime(), nullable=False),
        mapped_column("created_by", BigInteger, nullable=False),
        mapped_column("updated_by", BigInteger, nullable=True),
    )


# Re-export UUID for convenience
UUID = PyUUID
