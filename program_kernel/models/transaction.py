"""ORM models for financial transactions and cash flows."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from program_kernel.db.base import TrackedBase
from program_kernel.models._timestamps import as_utc

if TYPE_CHECKING:
    from program_kernel.domain.records import CashFlow, FinancialTransaction


class TransactionModel(TrackedBase):
    __tablename__ = "transactions"

    __table_args__ = (
        Index("ix_transactions_program", "program_id"),
        Index("ix_transactions_budget", "budget_id"),
    )

    transaction_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    budget_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    transaction_date: Mapped[date] = mapped_column(nullable=False)
    reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    reconciled_date: Mapped[date | None] = mapped_column(nullable=True)
    reconciled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cash_flow_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def row_id(self) -> str:
        return self.transaction_id

    def to_dto(self) -> FinancialTransaction:
        from program_kernel.domain.records import FinancialTransaction, TransactionType

        return FinancialTransaction(
            transaction_id=self.transaction_id,
            program_id=self.program_id,
            project_id=self.project_id,
            budget_id=self.budget_id,
            type=TransactionType(self.type),
            category=self.category,
            description=self.description or "",
            amount=self.amount,
            currency=self.currency,
            transaction_date=self.transaction_date,
            reconciled=self.reconciled,
            reconciled_date=self.reconciled_date,
            reconciled_by=self.reconciled_by,
            cash_flow_id=self.cash_flow_id,
            notes=self.notes or "",
            created_by=self.created_by,
            created_date=as_utc(self.created_date),
        )

    @classmethod
    def from_dto(cls, dto: FinancialTransaction) -> TransactionModel:
        model = cls(transaction_id=dto.transaction_id, created_by=dto.created_by)
        model.apply_dto(dto)
        model.created_date = dto.created_date
        return model

    def apply_dto(self, dto: FinancialTransaction) -> None:
        self.program_id = dto.program_id
        self.project_id = dto.project_id
        self.budget_id = dto.budget_id
        self.type = dto.type.value
        self.category = dto.category
        self.description = dto.description
        self.amount = dto.amount
        self.currency = dto.currency
        self.transaction_date = dto.transaction_date
        self.reconciled = dto.reconciled
        self.reconciled_date = dto.reconciled_date
        self.reconciled_by = dto.reconciled_by
        self.cash_flow_id = dto.cash_flow_id
        self.notes = dto.notes


class CashFlowModel(TrackedBase):
    __tablename__ = "cash_flows"

    __table_args__ = (Index("ix_cash_flows_program", "program_id"),)

    flow_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str | None] = mapped_column(String(32), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    forecast_date: Mapped[date] = mapped_column(nullable=False)
    actual_date: Mapped[date | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    reconciled_transaction_id: Mapped[str | None] = mapped_column(String(32), nullable=True)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_by: Mapped[str] = mapped_column(String(100), nullable=False)
    created_date: Mapped[datetime | None] = mapped_column(nullable=True)

    @property
    def row_id(self) -> str:
        return self.flow_id

    def to_dto(self) -> CashFlow:
        from program_kernel.domain.records import CashFlow, CashFlowStatus, CashFlowType

        return CashFlow(
            flow_id=self.flow_id,
            program_id=self.program_id,
            type=CashFlowType(self.type),
            category=self.category,
            description=self.description or "",
            amount=self.amount,
            currency=self.currency,
            forecast_date=self.forecast_date,
            actual_date=self.actual_date,
            status=CashFlowStatus(self.status),
            reconciled_transaction_id=self.reconciled_transaction_id,
            notes=self.notes or "",
            created_by=self.created_by,
            created_date=as_utc(self.created_date),
        )

    @classmethod
    def from_dto(cls, dto: CashFlow) -> CashFlowModel:
        model = cls(flow_id=dto.flow_id, created_by=dto.created_by)
        model.apply_dto(dto)
        model.created_date = dto.created_date
        return model

    def apply_dto(self, dto: CashFlow) -> None:
        self.program_id = dto.program_id
        self.type = dto.type.value
        self.category = dto.category
        self.description = dto.description
        self.amount = dto.amount
        self.currency = dto.currency
        self.forecast_date = dto.forecast_date
        self.actual_date = dto.actual_date
        self.status = dto.status.value
        self.reconciled_transaction_id = dto.reconciled_transaction_id
        self.notes = dto.notes
