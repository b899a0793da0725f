"""
ORM model for EVM snapshots.

Contract:
    EVMSnapshotModel flattens ``EVMSnapshot`` and its ``EVMMetrics`` into one
    row.  Rows are insert-only: the immutability listeners reject every
    UPDATE; DELETE is allowed as the explicit admin action.

``health_score`` and ``health_status`` are nullable for rows written before
they became columns.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from program_kernel.db.base import TrackedBase
from program_kernel.models._timestamps import as_utc

if TYPE_CHECKING:
    from program_kernel.domain.records import EVMSnapshot


class EVMSnapshotModel(TrackedBase):
    __tablename__ = "evm_snapshots"

    __table_args__ = (
        Index("ix_evm_snapshots_program_date", "program_id", "snapshot_date"),
    )

    snapshot_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    program_id: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    snapshot_date: Mapped[date] = mapped_column(nullable=False)
    reporting_period: Mapped[str] = mapped_column(String(8), nullable=False)

    pv: Mapped[Decimal] = mapped_column(nullable=False)
    ev: Mapped[Decimal] = mapped_column(nullable=False)
    ac: Mapped[Decimal] = mapped_column(nullable=False)
    bac: Mapped[Decimal] = mapped_column(nullable=False)

    cv: Mapped[Decimal] = mapped_column(nullable=False)
    sv: Mapped[Decimal] = mapped_column(nullable=False)
    cv_percent: Mapped[Decimal] = mapped_column(nullable=False)
    sv_percent: Mapped[Decimal] = mapped_column(nullable=False)
    cpi: Mapped[Decimal] = mapped_column(nullable=False)
    spi: Mapped[Decimal] = mapped_column(nullable=False)
    eac: Mapped[Decimal] = mapped_column(nullable=False)
    etc: Mapped[Decimal] = mapped_column(nullable=False)
    vac: Mapped[Decimal] = mapped_column(nullable=False)
    tcpi: Mapped[Decimal] = mapped_column(nullable=False)

    percent_complete: Mapped[Decimal] = mapped_column(nullable=False)
    percent_schedule_complete: Mapped[Decimal] = mapped_column(nullable=False)
    trend: Mapped[str] = mapped_column(String(16), nullable=False)
    health_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    health_status: Mapped[str | None] = mapped_column(String(16), nullable=True)
    calculated_by: Mapped[str] = mapped_column(String(100), nullable=False)
    calculated_date: Mapped[datetime] = mapped_column(nullable=False)
    notes: Mapped[str] = mapped_column(Text, nullable=False, default="")

    @property
    def row_id(self) -> str:
        return self.snapshot_id

    def to_dto(self) -> EVMSnapshot:
        from program_kernel.domain.records import (
            EVMMetrics,
            EVMSnapshot,
            HealthStatus,
            PerformanceTrend,
        )

        return EVMSnapshot(
            snapshot_id=self.snapshot_id,
            program_id=self.program_id,
            project_id=self.project_id,
            snapshot_date=self.snapshot_date,
            reporting_period=self.reporting_period,
            pv=self.pv,
            ev=self.ev,
            ac=self.ac,
            bac=self.bac,
            metrics=EVMMetrics(
                cv=self.cv,
                sv=self.sv,
                cv_percent=self.cv_percent,
                sv_percent=self.sv_percent,
                cpi=self.cpi,
                spi=self.spi,
                eac=self.eac,
                etc=self.etc,
                vac=self.vac,
                tcpi=self.tcpi,
            ),
            percent_complete=self.percent_complete,
            percent_schedule_complete=self.percent_schedule_complete,
            trend=PerformanceTrend(self.trend),
            health_score=self.health_score,
            health_status=HealthStatus(self.health_status) if self.health_status else None,
            calculated_by=self.calculated_by,
            calculated_date=as_utc(self.calculated_date),
            notes=self.notes or "",
        )

    @classmethod
    def from_dto(cls, dto: EVMSnapshot) -> EVMSnapshotModel:
        m = dto.metrics
        return cls(
            snapshot_id=dto.snapshot_id,
            program_id=dto.program_id,
            project_id=dto.project_id,
            snapshot_date=dto.snapshot_date,
            reporting_period=dto.reporting_period,
            pv=dto.pv,
            ev=dto.ev,
            ac=dto.ac,
            bac=dto.bac,
            cv=m.cv,
            sv=m.sv,
            cv_percent=m.cv_percent,
            sv_percent=m.sv_percent,
            cpi=m.cpi,
            spi=m.spi,
            eac=m.eac,
            etc=m.etc,
            vac=m.vac,
            tcpi=m.tcpi,
            percent_complete=dto.percent_complete,
            percent_schedule_complete=dto.percent_schedule_complete,
            trend=dto.trend.value,
            health_score=dto.health_score,
            health_status=dto.health_status.value if dto.health_status else None,
            calculated_by=dto.calculated_by,
            calculated_date=dto.calculated_date,
            notes=dto.notes,
        )
