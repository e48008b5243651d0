"""
Module: ledger_kernel.models.fiscal
Responsibility: ORM persistence for fiscal years and their periods.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Year code unique per organization (uq_fiscal_year_org_code).
    - At most one current year per organization (partial unique index
      uq_fiscal_year_current).  FiscalCalendarService clears the previous
      holder and flushes before setting the new one.
    - Period number unique within its year (uq_fiscal_period_number).
    - Year lifecycle is linear: draft -> open -> closed -> locked.
      Reopening exists only at the period level (closed -> open).
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrgScopedBase, UUIDString
from ledger_kernel.db.types import enum_column_type


class FiscalYearStatus(str, Enum):
    """Lifecycle status of a fiscal year."""

    DRAFT = "draft"
    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class PeriodStatus(str, Enum):
    """
    Lifecycle status of a fiscal period.

    soft_closed still accepts postings (the validator warns); closed and
    locked block them.  Only closed/soft_closed periods can reopen.
    """

    OPEN = "open"
    SOFT_CLOSED = "soft_closed"
    CLOSED = "closed"
    LOCKED = "locked"


class FiscalYear(OrgScopedBase):
    """Organization's accounting year, container for its periods."""

    __tablename__ = "fiscal_years"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_fiscal_year_org_code"),
        Index(
            "uq_fiscal_year_current",
            "organization_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current = 1"),
        ),
        Index("idx_fiscal_year_dates", "organization_id", "start_date", "end_date"),
    )

    # Short business code, e.g. "2024"
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Inclusive boundaries
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[FiscalYearStatus] = mapped_column(
        enum_column_type(FiscalYearStatus),
        default=FiscalYearStatus.DRAFT,
        nullable=False,
    )

    is_current: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    opened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    opened_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lock_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    periods: Mapped[list["FiscalPeriod"]] = relationship(
        back_populates="fiscal_year",
        order_by="FiscalPeriod.period_number",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<FiscalYear {self.code}: {self.status.value}>"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date


class FiscalPeriod(OrgScopedBase):
    """
    Subdivision of a fiscal year gating postability of its dates.

    Guarantees:
        - Date range lies inside the parent year and does not overlap
          siblings (generated contiguously by FiscalCalendarService).
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("fiscal_year_id", "period_number", name="uq_fiscal_period_number"),
        Index("idx_fiscal_period_dates", "organization_id", "start_date", "end_date"),
        Index("idx_fiscal_period_status", "organization_id", "status"),
    )

    fiscal_year_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_years.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 1-based position within the year
    period_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # e.g. "Styczeń 2024"
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        enum_column_type(PeriodStatus),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    reopened_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reopened_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reopen_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)

    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    fiscal_year: Mapped[FiscalYear] = relationship(back_populates="periods")

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.name}: {self.status.value}>"

    @property
    def is_open(self) -> bool:
        """Accepts postings (open or soft_closed)."""
        return self.status in (PeriodStatus.OPEN, PeriodStatus.SOFT_CLOSED)

    @property
    def is_hard_closed(self) -> bool:
        return self.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED)

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date
