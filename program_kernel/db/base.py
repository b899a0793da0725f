"""
Module: program_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.
    Provides the type annotation map for consistent column types and the
    TrackedBase mixin for row audit timestamps.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, store/, domain/, or outer layers.

Invariants enforced:
    - Decimal precision: Python Decimal maps to Numeric(38, 9).  NEVER use
      float for monetary amounts.
    - Business keys: ledger rows are keyed by their human-readable ids
      (``BUD-001``, ``SNAP-014``), declared by each model.

Audit relevance:
    TrackedBase.created_at / updated_at are row metadata maintained by the
    database, separate from the attributable business fields
    (created_by, modified_by, notes) carried by each record.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar

from sqlalchemy import Date, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """
    Declarative base for all program finance models.

    Guarantees:
        - Decimal maps to Numeric(38, 9).
        - datetime maps to DateTime(timezone=True).
        - str maps to String(255) unless a column overrides it.
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        date: Date(),
        str: String(255),
    }


class TrackedBase(Base):
    """
    Abstract base with database-maintained row timestamps.

    Guarantees:
        - created_at is set to server NOW() on INSERT.
        - updated_at is set on INSERT and refreshed on every UPDATE.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
