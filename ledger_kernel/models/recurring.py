"""
Module: ledger_kernel.models.recurring
Responsibility: ORM persistence for recurring schedules, their append-only
    execution log, and the organization holiday calendar.
Architecture position: Kernel > Models.  May import from db/, domain/
    recurrence enums, and template/journal models.

Invariants enforced:
    - next_run_date is the NOMINAL (unadjusted) cursor.  It advances only
      after a successful generation.
    - ScheduleExecution rows are append-only (db/immutability.py).
    - idempotency_key "<schedule_id>:<occurrence_date>" is unique and set
      only on SUCCESS rows, so an occurrence is generated at most once.
    - holiday_date unique per organization.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrgScopedBase, UUIDString
from ledger_kernel.db.types import enum_column_type
from ledger_kernel.domain.recurrence import (
    EndOfMonthHandling,
    Frequency,
    WeekendAdjustment,
)


class ScheduleStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"  # end date or max occurrences reached
    ERROR = "ERROR"  # max_retries exhausted


class ExecutionType(str, Enum):
    AUTOMATIC = "AUTOMATIC"
    MANUAL = "MANUAL"
    BATCH = "BATCH"
    MISSED = "MISSED"


class ExecutionStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class RecurringSchedule(OrgScopedBase):
    """Rule that periodically materializes a journal entry from a template."""

    __tablename__ = "recurring_schedules"

    __table_args__ = (
        Index("idx_recurring_schedule_due", "organization_id", "status", "next_run_date"),
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("entry_templates.id"),
        nullable=False,
    )

    # Frequency descriptor
    frequency: Mapped[Frequency] = mapped_column(enum_column_type(Frequency), nullable=False)
    frequency_interval: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)  # 0=Monday
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    month_of_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    end_of_month_handling: Mapped[EndOfMonthHandling] = mapped_column(
        enum_column_type(EndOfMonthHandling),
        default=EndOfMonthHandling.LAST_DAY,
        nullable=False,
    )

    # Business-day handling
    skip_weekends: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    skip_holidays: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    weekend_adjustment: Mapped[WeekendAdjustment] = mapped_column(
        enum_column_type(WeekendAdjustment),
        default=WeekendAdjustment.PREVIOUS,
        nullable=False,
    )

    # Range
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    max_occurrences: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Cursor
    next_run_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    last_run_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    occurrences_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    auto_post: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    default_variable_values: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    status: Mapped[ScheduleStatus] = mapped_column(
        enum_column_type(ScheduleStatus),
        default=ScheduleStatus.ACTIVE,
        nullable=False,
    )
    paused_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paused_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Failure tracking
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_message: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    last_error_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<RecurringSchedule {self.name}: {self.status.value}>"


class ScheduleExecution(OrgScopedBase):
    """Immutable record of one schedule firing."""

    __tablename__ = "schedule_executions"

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_schedule_execution_key"),
        Index("idx_schedule_execution_schedule", "schedule_id", "occurrence_date"),
    )

    schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    execution_type: Mapped[ExecutionType] = mapped_column(
        enum_column_type(ExecutionType),
        nullable=False,
    )
    status: Mapped[ExecutionStatus] = mapped_column(
        enum_column_type(ExecutionStatus),
        nullable=False,
    )
    # Nominal occurrence and the business date actually used
    occurrence_date: Mapped[date] = mapped_column(Date, nullable=False)
    entry_date: Mapped[date] = mapped_column(Date, nullable=False)
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )
    error_message: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    attempt: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    completed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_ms: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(100), nullable=True)


class Holiday(OrgScopedBase):
    """Non-business date consulted when a schedule skips holidays."""

    __tablename__ = "holidays"

    __table_args__ = (
        UniqueConstraint("organization_id", "holiday_date", name="uq_holiday_org_date"),
    )

    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    is_banking_holiday: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    country_code: Mapped[str] = mapped_column(String(2), default="PL", nullable=False)
