"""
ledger_kernel.domain.dtos -- Frozen value objects crossing the service
boundary.  ZERO I/O.

Inputs (EntryData, LineData, EntryUpdate) are what callers hand to the
services; outputs (PostResult, BulkOperationResult, ProcessingSummary, ...)
are what services return instead of ORM rows where a projection is needed.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from ledger_kernel.db.types import ZERO, round_money, to_decimal


# =============================================================================
# Registry / calendar snapshots
# =============================================================================


@dataclass(frozen=True)
class AccountInfo:
    """Account metadata supplied by the AccountRegistry port."""

    account_id: UUID
    code: str
    name: str
    is_active: bool = True
    allows_posting: bool = True
    normal_balance: str = "debit"
    requires_cost_center: bool = False
    account_type: str | None = None


@dataclass(frozen=True)
class PeriodInfo:
    """Snapshot of the fiscal period an entry date falls into."""

    period_id: UUID
    fiscal_year_id: UUID
    name: str
    period_number: int
    status: str  # open | soft_closed | closed | locked
    start_date: date
    end_date: date

    @property
    def is_hard_closed(self) -> bool:
        return self.status in ("closed", "locked")

    @property
    def is_soft_closed(self) -> bool:
        return self.status == "soft_closed"


# =============================================================================
# Entry input
# =============================================================================


@dataclass(frozen=True)
class LineData:
    """
    One debit or credit line as supplied by a caller.

    ``currency`` None means the organization's base currency.  Base amounts
    are ``amount * exchange_rate`` rounded to 2 places.
    """

    account_id: UUID
    debit_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    currency: str | None = None
    exchange_rate: Decimal = Decimal("1")
    description: str | None = None
    cost_center_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit_amount", to_decimal(self.debit_amount))
        object.__setattr__(self, "credit_amount", to_decimal(self.credit_amount))
        object.__setattr__(self, "exchange_rate", to_decimal(self.exchange_rate))

    @property
    def base_debit(self) -> Decimal:
        return round_money(self.debit_amount * self.exchange_rate)

    @property
    def base_credit(self) -> Decimal:
        return round_money(self.credit_amount * self.exchange_rate)

    def swapped(self, description: str | None = None) -> LineData:
        """Mirror line: debit and credit exchanged."""
        return LineData(
            account_id=self.account_id,
            debit_amount=self.credit_amount,
            credit_amount=self.debit_amount,
            currency=self.currency,
            exchange_rate=self.exchange_rate,
            description=description if description is not None else self.description,
            cost_center_id=self.cost_center_id,
        )


@dataclass(frozen=True)
class EntryData:
    """Journal entry candidate: header fields plus ordered lines."""

    entry_date: date
    description: str
    lines: tuple[LineData, ...]
    entry_type: str = "STANDARD"
    reference: str | None = None
    notes: str | None = None
    source_document_id: UUID | None = None
    requires_approval: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "lines", tuple(self.lines))
        object.__setattr__(self, "entry_type", getattr(self.entry_type, "value", self.entry_type))


@dataclass(frozen=True)
class EntryUpdate:
    """Partial update of a DRAFT entry.  None means unchanged."""

    entry_date: date | None = None
    description: str | None = None
    reference: str | None = None
    notes: str | None = None
    requires_approval: bool | None = None
    lines: tuple[LineData, ...] | None = None

    def __post_init__(self) -> None:
        if self.lines is not None:
            object.__setattr__(self, "lines", tuple(self.lines))


@dataclass(frozen=True)
class EntryFilter:
    status: str | None = None
    entry_type: str | None = None
    date_from: date | None = None
    date_to: date | None = None
    period_id: UUID | None = None
    search: str | None = None
    limit: int = 50
    offset: int = 0


# =============================================================================
# Results
# =============================================================================


@dataclass(frozen=True)
class PostResult:
    entry_id: UUID
    entry_number: str
    status: str
    posted_at: datetime
    warnings: tuple = ()


@dataclass(frozen=True)
class BulkItemResult:
    entry_id: UUID
    success: bool
    entry_number: str | None = None
    error: str | None = None
    error_code: str | None = None
    error_kind: str | None = None


@dataclass(frozen=True)
class BulkOperationResult:
    """Per-item outcome of bulk_post / bulk_delete."""

    total_requested: int
    success_count: int
    failure_count: int
    results: tuple[BulkItemResult, ...]


@dataclass(frozen=True)
class ProcessingItemResult:
    """Outcome for one auto-reversal or one due schedule in a batch pass."""

    item_id: UUID
    success: bool
    label: str | None = None
    target_date: date | None = None
    journal_entry_id: UUID | None = None
    entry_number: str | None = None
    error: str | None = None
    error_code: str | None = None
    skipped: bool = False


@dataclass(frozen=True)
class ProcessingSummary:
    """{processed, successful, failed, results} shape shared by batch passes."""

    processed: int
    successful: int
    failed: int
    dry_run: bool
    results: tuple[ProcessingItemResult, ...] = ()

    @classmethod
    def from_results(cls, results: list[ProcessingItemResult], dry_run: bool) -> ProcessingSummary:
        successful = sum(1 for r in results if r.success)
        return cls(
            processed=len(results),
            successful=successful,
            failed=len(results) - successful,
            dry_run=dry_run,
            results=tuple(results),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AccountNetEffect:
    account_id: UUID
    debit: Decimal
    credit: Decimal

    @property
    def net(self) -> Decimal:
        return self.debit - self.credit


@dataclass(frozen=True)
class ReversalDetails:
    """Original/reversing pair with a per-account net-effect self-check."""

    original_entry_id: UUID
    original_entry_number: str
    reversing_entry_id: UUID | None
    reversing_entry_number: str | None
    reversal_date: date | None
    reversal_reason: str | None
    reversed_at: datetime | None
    reversed_by_id: UUID | None
    net_effect: tuple[AccountNetEffect, ...] = ()

    @property
    def is_net_zero(self) -> bool:
        return all(effect.net == ZERO for effect in self.net_effect)


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of materializing one schedule occurrence."""

    schedule_id: UUID
    success: bool
    occurrence_date: date
    entry_date: date
    execution_id: UUID | None = None
    journal_entry_id: UUID | None = None
    entry_number: str | None = None
    error: str | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class PreviewOccurrence:
    occurrence_date: date
    entry_date: date
    total_amount: Decimal | None = None
    lines: tuple[LineData, ...] = ()


@dataclass(frozen=True)
class FiscalYearStatistics:
    fiscal_year_id: UUID
    code: str
    status: str
    total_periods: int
    periods_by_status: dict[str, int] = field(default_factory=dict)
    entries_by_status: dict[str, int] = field(default_factory=dict)
    total_entries: int = 0


@dataclass(frozen=True)
class EntryStatistics:
    total_entries: int
    by_status: dict[str, int]
    by_type: dict[str, int]
    posted_debit_total: Decimal
    posted_credit_total: Decimal
    last_entry_date: date | None
    last_posted_at: datetime | None


# =============================================================================
# Template input
# =============================================================================


@dataclass(frozen=True)
class TemplateLineData:
    """
    Blueprint line.

    ``amount_type`` FIXED uses the fixed amounts; VARIABLE and FORMULA need
    ``side`` plus ``variable_name`` or ``formula`` respectively.
    """

    account_id: UUID
    amount_type: str = "FIXED"
    side: str | None = None
    fixed_debit_amount: Decimal = ZERO
    fixed_credit_amount: Decimal = ZERO
    variable_name: str | None = None
    formula: str | None = None
    description: str | None = None
    currency: str | None = None
    cost_center_id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount_type", getattr(self.amount_type, "value", self.amount_type))
        if self.side is not None:
            object.__setattr__(self, "side", getattr(self.side, "value", self.side))
        object.__setattr__(self, "fixed_debit_amount", to_decimal(self.fixed_debit_amount))
        object.__setattr__(self, "fixed_credit_amount", to_decimal(self.fixed_credit_amount))


@dataclass(frozen=True)
class TemplateVariableData:
    name: str
    variable_type: str = "NUMBER"
    display_name: str | None = None
    is_required: bool = True
    default_value: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "variable_type", getattr(self.variable_type, "value", self.variable_type)
        )


@dataclass(frozen=True)
class AmountOverride:
    """Replaces the rendered debit and/or credit of one template line."""

    line_number: int
    debit_amount: Decimal | None = None
    credit_amount: Decimal | None = None
