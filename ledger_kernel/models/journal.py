"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries, their lines, the
    immutable general-ledger postings written at posting time, per-period
    account balances, and the entry-number sequence counters.
Architecture position: Kernel > Models.  May import from db/ and the
    sibling fiscal/account models.

Invariants enforced:
    - entry_number unique per organization (uq_journal_entry_number).
    - A posted entry is immutable except for its reversal and auto-reverse
      fields (db/immutability.py).
    - Lines: non-negative amounts, positive exchange rate (check constraints);
      exactly one side non-zero is enforced by JournalEntryService.
    - reversed_entry_id is unique: an original can have at most one
      reversing entry, even under concurrent reversal attempts.
    - version column gives optimistic concurrency on entry updates.

Reversal links (reversed_entry_id / reversing_entry_id / corrected_entry_id)
are navigation-only foreign keys.  Both entries belong to the organization's
entry collection; neither owns the other.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import Base, OrgScopedBase, TrackedBase, UUIDString
from ledger_kernel.db.types import enum_column_type
from ledger_kernel.models.fiscal import FiscalPeriod


class JournalEntryType(str, Enum):
    STANDARD = "STANDARD"
    ADJUSTING = "ADJUSTING"
    CLOSING = "CLOSING"
    OPENING = "OPENING"
    REVERSING = "REVERSING"
    RECURRING = "RECURRING"


class JournalEntryStatus(str, Enum):
    """DRAFT -> (PENDING) -> POSTED -> (REVERSED)."""

    DRAFT = "DRAFT"
    PENDING = "PENDING"
    POSTED = "POSTED"
    REVERSED = "REVERSED"


class ReversalType(str, Enum):
    STANDARD = "STANDARD"
    AUTO_SCHEDULED = "AUTO_SCHEDULED"
    CORRECTION = "CORRECTION"


# Fields that may still change on a POSTED entry
POSTED_ENTRY_MUTABLE_FIELDS: frozenset[str] = frozenset(
    {
        "status",
        "reversing_entry_id",
        "reversal_type",
        "reversal_reason",
        "reversed_at",
        "reversed_by_id",
        "auto_reverse_date",
        "version",
        "updated_at",
        "updated_by_id",
    }
)


class JournalEntry(OrgScopedBase):
    """
    A dated set of debit/credit lines belonging to one fiscal period.

    Totals are denormalized in base currency for listing.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("organization_id", "entry_number", name="uq_journal_entry_number"),
        UniqueConstraint("reversed_entry_id", name="uq_journal_entry_reversed"),
        Index("idx_journal_entry_status", "organization_id", "status"),
        Index("idx_journal_entry_date", "organization_id", "entry_date"),
        Index("idx_journal_entry_auto_reverse", "organization_id", "auto_reverse_date"),
        Index("idx_journal_entry_period", "period_id"),
    )

    # PREFIX/YYYY/MM/NNNN
    entry_number: Mapped[str] = mapped_column(String(40), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    fiscal_year_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_years.id"),
        nullable=False,
    )

    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )

    entry_type: Mapped[JournalEntryType] = mapped_column(
        enum_column_type(JournalEntryType),
        default=JournalEntryType.STANDARD,
        nullable=False,
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        enum_column_type(JournalEntryStatus),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    description: Mapped[str] = mapped_column(String(500), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    source_document_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    # Denormalized, base currency
    total_debit: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    total_credit: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    is_balanced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    line_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    base_currency: Mapped[str] = mapped_column(String(3), default="PLN", nullable=False)

    # Approval
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Posting
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Set on the reversing entry: the original it reverses
    reversed_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on the original: the entry that reversed it
    reversing_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    # Set on a correction: the posted entry it corrects
    corrected_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    reversal_type: Mapped[ReversalType | None] = mapped_column(
        enum_column_type(ReversalType),
        nullable=True,
    )
    reversal_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reversed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    reversed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    auto_reverse_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    # Provenance
    template_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("entry_templates.id"),
        nullable=True,
    )
    recurring_schedule_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_schedules.id"),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    lines: Mapped[list["JournalEntryLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="JournalEntryLine.line_number",
        lazy="selectin",
    )

    period: Mapped[FiscalPeriod] = relationship(foreign_keys=[period_id])

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number}: {self.status.value}>"

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_reversed(self) -> bool:
        return self.status == JournalEntryStatus.REVERSED or self.reversing_entry_id is not None


class JournalEntryLine(TrackedBase):
    """
    One debit or credit line of a journal entry.

    Lines are created with their parent and replaced only by a full
    entry update while the entry is DRAFT.
    """

    __tablename__ = "journal_entry_lines"

    __table_args__ = (
        UniqueConstraint("journal_entry_id", "line_number", name="uq_journal_line_number"),
        CheckConstraint(
            "debit_amount >= 0 AND credit_amount >= 0",
            name="ck_journal_line_non_negative",
        ),
        CheckConstraint("exchange_rate > 0", name="ck_journal_line_rate_positive"),
        Index("idx_journal_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    line_number: Mapped[int] = mapped_column(Integer, nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    # Transaction currency amounts
    debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(38, 18), default=Decimal("1"), nullable=False)

    # amount * exchange_rate, rounded to 2 places
    base_debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    base_credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    cost_center_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    def __repr__(self) -> str:
        return (
            f"<JournalEntryLine {self.line_number}: "
            f"Dr {self.debit_amount} Cr {self.credit_amount} {self.currency}>"
        )

    @property
    def is_debit(self) -> bool:
        return self.debit_amount > 0


class LedgerPosting(OrgScopedBase):
    """
    General-ledger row written once per line when an entry posts.

    Append-only.  A reversal produces new postings; it never edits these.
    """

    __tablename__ = "ledger_postings"

    __table_args__ = (
        Index("idx_ledger_posting_account_period", "account_id", "period_id"),
        Index("idx_ledger_posting_entry", "journal_entry_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )
    journal_entry_line_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entry_lines.id"),
        nullable=False,
    )
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )
    posting_date: Mapped[date] = mapped_column(Date, nullable=False)
    debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)


class AccountBalance(OrgScopedBase):
    """Running debit/credit movement of one account in one period."""

    __tablename__ = "account_balances"

    __table_args__ = (
        UniqueConstraint("account_id", "period_id", name="uq_account_balance_period"),
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    period_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_periods.id"),
        nullable=False,
    )
    debit_movement: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    credit_movement: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    # Signed by the account's normal balance side
    closing_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)


class EntryNumberSequence(Base):
    """
    Last allocated entry number per (organization, entry type, year, month).

    Row-locked by EntryNumberService; numbers are never reused.
    """

    __tablename__ = "entry_number_sequences"

    __table_args__ = (
        UniqueConstraint(
            "organization_id",
            "entry_type",
            "year",
            "month",
            name="uq_entry_number_sequence",
        ),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    entry_type: Mapped[str] = mapped_column(String(20), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    last_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
