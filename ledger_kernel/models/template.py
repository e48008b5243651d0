"""
Module: ledger_kernel.models.template
Responsibility: ORM persistence for reusable journal entry templates, their
    line blueprints and declared variables.
Architecture position: Kernel > Models.  May import from db/ and journal.

A template line produces its amount one of three ways:
    FIXED     fixed_debit_amount / fixed_credit_amount
    VARIABLE  value of variable_name, placed on ``side``
    FORMULA   arithmetic over {variable} placeholders, placed on ``side``
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import OrgScopedBase, TrackedBase, UUIDString
from ledger_kernel.db.types import enum_column_type
from ledger_kernel.models.journal import JournalEntryType


class TemplateStatus(str, Enum):
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


class TemplateAmountType(str, Enum):
    FIXED = "FIXED"
    VARIABLE = "VARIABLE"
    FORMULA = "FORMULA"


class LineSide(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"


class VariableType(str, Enum):
    STRING = "STRING"
    NUMBER = "NUMBER"
    DATE = "DATE"
    ACCOUNT = "ACCOUNT"


class EntryTemplate(OrgScopedBase):
    """Blueprint from which journal entries are materialized."""

    __tablename__ = "entry_templates"

    __table_args__ = (
        UniqueConstraint("organization_id", "template_code", name="uq_entry_template_code"),
    )

    template_code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    entry_type: Mapped[JournalEntryType] = mapped_column(
        enum_column_type(JournalEntryType),
        default=JournalEntryType.STANDARD,
        nullable=False,
    )

    # Description given to generated entries; may contain {variable} placeholders
    entry_description: Mapped[str] = mapped_column(String(500), nullable=False)

    status: Mapped[TemplateStatus] = mapped_column(
        enum_column_type(TemplateStatus),
        default=TemplateStatus.ACTIVE,
        nullable=False,
    )

    requires_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lines: Mapped[list["EntryTemplateLine"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="EntryTemplateLine.line_number",
        lazy="selectin",
    )

    variables: Mapped[list["TemplateVariable"]] = relationship(
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="TemplateVariable.sort_order",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<EntryTemplate {self.template_code}: {self.status.value}>"


class EntryTemplateLine(TrackedBase):
    __tablename__ = "entry_template_lines"

    __table_args__ = (
        UniqueConstraint("template_id", "line_number", name="uq_template_line_number"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("entry_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    amount_type: Mapped[TemplateAmountType] = mapped_column(
        enum_column_type(TemplateAmountType),
        default=TemplateAmountType.FIXED,
        nullable=False,
    )
    # Required for VARIABLE and FORMULA lines
    side: Mapped[LineSide | None] = mapped_column(enum_column_type(LineSide), nullable=True)
    fixed_debit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    fixed_credit_amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), default=Decimal("0"), nullable=False)
    variable_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    formula: Mapped[str | None] = mapped_column(String(500), nullable=True)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    cost_center_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    template: Mapped[EntryTemplate] = relationship(back_populates="lines")


class TemplateVariable(TrackedBase):
    __tablename__ = "template_variables"

    __table_args__ = (
        UniqueConstraint("template_id", "name", name="uq_template_variable_name"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("entry_templates.id", ondelete="CASCADE"),
        nullable=False,
    )
    # Identifier used in formulas: ^[a-zA-Z][a-zA-Z0-9_]*$
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    variable_type: Mapped[VariableType] = mapped_column(
        enum_column_type(VariableType),
        default=VariableType.NUMBER,
        nullable=False,
    )
    is_required: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    default_value: Mapped[str | None] = mapped_column(String(200), nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    template: Mapped[EntryTemplate] = relationship(back_populates="variables")
