"""
Module: ledger_kernel.models.account
Responsibility: Chart-of-accounts rows backing the SQL account registry.
Architecture position: Kernel > Models.  May import from db/ only.

The posting engine consumes account metadata (active, postable, normal
balance, cost-center requirement) through the AccountRegistry port; this
table is the default adapter's storage.
"""

from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import OrgScopedBase, UUIDString
from ledger_kernel.db.types import enum_column_type


class AccountType(str, Enum):
    ASSET = "ASSET"
    LIABILITY = "LIABILITY"
    EQUITY = "EQUITY"
    REVENUE = "REVENUE"
    EXPENSE = "EXPENSE"
    OFF_BALANCE = "OFF_BALANCE"


class NormalBalance(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class Account(OrgScopedBase):
    """A ledger account of one organization's chart of accounts."""

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("organization_id", "code", name="uq_account_org_code"),
    )

    # Polish chart-of-accounts number, e.g. "401-01"
    code: Mapped[str] = mapped_column(String(20), nullable=False)

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(
        enum_column_type(AccountType),
        nullable=False,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        enum_column_type(NormalBalance),
        default=NormalBalance.DEBIT,
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # False for header (synthetic) accounts
    allows_posting: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    requires_cost_center: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"
