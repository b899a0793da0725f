"""
ORM model for program budgets.

Contract:
    BudgetModel persists one budget line.  ``to_dto()`` / ``from_dto()``
    round-trip with ``program_kernel.domain.records.Budget``;
    ``apply_dto()`` copies mutable fields onto a loaded row for updates.

Invariants enforced:
    ``notes`` is append-only.  The before_update listener in
    ``program_kernel.db.immutability`` rejects any write whose new notes do
    not extend the stored notes.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from program_kernel.db.base import TrackedBase
from program_kernel.models._timestamps import as_utc

if TYPE_CHECKING:
    from program_kernel.domain.records import Budget


class BudgetModel(TrackedBase):
    __tablename__ = "budgets"

    __table_args__ = (
        Index("ix_budgets_program_year", "program_id", "fiscal_year"),
        Index("ix_budgets_category", "category"),
    )

    budget_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    allocated: Mapped[Decimal] = mapped_column(nullable=False)
    committed: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    spent: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    fiscal_year: Mapped[str] = mapped_column(String(8), nullable=False)
    period_start: Mapped[date] = mapped_column(nullable=False)
    period_end: Mapped[date] = mapped_column(nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_date: Mapped[datetime | None] = mapped_column(nullable=True)
    modified_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    modified_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def row_id(self) -> str:
        return self.budget_id

    def to_dto(self) -> Budget:
        from program_kernel.domain.records import Budget, BudgetCategory, BudgetStatus

        return Budget(
            budget_id=self.budget_id,
            program_id=self.program_id,
            project_id=self.project_id,
            name=self.name,
            category=BudgetCategory(self.category),
            allocated=self.allocated,
            committed=self.committed,
            spent=self.spent,
            currency=self.currency,
            status=BudgetStatus(self.status),
            fiscal_year=self.fiscal_year,
            period_start=self.period_start,
            period_end=self.period_end,
            notes=self.notes or "",
            created_by=self.created_by,
            created_date=as_utc(self.created_date),
            modified_by=self.modified_by,
            modified_date=as_utc(self.modified_date),
        )

    @classmethod
    def from_dto(cls, dto: Budget) -> BudgetModel:
        model = cls(budget_id=dto.budget_id, created_by=dto.created_by)
        model.apply_dto(dto)
        model.created_date = dto.created_date
        return model

    def apply_dto(self, dto: Budget) -> None:
        self.program_id = dto.program_id
        self.project_id = dto.project_id
        self.name = dto.name
        self.category = dto.category.value
        self.allocated = dto.allocated
        self.committed = dto.committed
        self.spent = dto.spent
        self.currency = dto.currency
        self.status = dto.status.value
        self.fiscal_year = dto.fiscal_year
        self.period_start = dto.period_start
        self.period_end = dto.period_end
        self.notes = dto.notes
        self.modified_by = dto.modified_by
        self.modified_date = dto.modified_date
