"""
Module: ledger_kernel.models.validation_rule
Responsibility: Organization-defined validation rules (data, not code) and
    stored validator verdicts.
Architecture position: Kernel > Models.  May import from db/ and the
    domain validation enums.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrgScopedBase, UUIDString
from ledger_kernel.db.types import enum_column_type
from ledger_kernel.domain.validation import Severity


class ValidationRuleType(str, Enum):
    BALANCE = "BALANCE"
    ACCOUNT = "ACCOUNT"
    PERIOD = "PERIOD"
    CURRENCY = "CURRENCY"
    BUSINESS = "BUSINESS"
    CUSTOM = "CUSTOM"


class ValidationRule(OrgScopedBase):
    """
    Custom rule evaluated after the fixed rule set.

    ``conditions`` holds either a named rule ({"rule": "large_amount",
    "threshold": 50000}) or a generic metric comparison ({"metric":
    "total_amount", "operator": "gt", "threshold": 10000}).
    """

    __tablename__ = "validation_rules"

    __table_args__ = (
        UniqueConstraint("organization_id", "rule_code", name="uq_validation_rule_code"),
    )

    rule_code: Mapped[str] = mapped_column(String(50), nullable=False)
    rule_name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    rule_type: Mapped[ValidationRuleType] = mapped_column(
        enum_column_type(ValidationRuleType),
        default=ValidationRuleType.CUSTOM,
        nullable=False,
    )
    severity: Mapped[Severity] = mapped_column(
        enum_column_type(Severity),
        default=Severity.WARNING,
        nullable=False,
    )
    conditions: Mapped[dict] = mapped_column(JSON, nullable=False)
    error_message: Mapped[str] = mapped_column(String(500), nullable=False)
    # None = all entry types
    applies_to_entry_types: Mapped[list | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)


class ValidationRun(OrgScopedBase):
    """Stored validator verdict, written only when the caller opts in."""

    __tablename__ = "validation_runs"

    __table_args__ = (
        Index("idx_validation_run_entry", "journal_entry_id", "validated_at"),
    )

    # None for ad-hoc (unsaved) entry data
    journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=True,
    )
    is_valid: Mapped[bool] = mapped_column(Boolean, nullable=False)
    can_post: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    warning_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    info_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    results: Mapped[list] = mapped_column(JSON, nullable=False)
    validated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
