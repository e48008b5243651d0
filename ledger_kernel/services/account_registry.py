"""
AccountRegistry -- read-only port supplying account metadata.

The posting engine never owns the chart of accounts.  It asks the registry
for the accounts referenced by an entry and receives frozen AccountInfo
snapshots; ids missing from the result do not exist in the organization.
"""

from collections.abc import Iterable
from typing import Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account

logger = get_logger("services.account_registry")


@runtime_checkable
class AccountRegistry(Protocol):
    def lookup_accounts(
        self,
        organization_id: UUID,
        account_ids: Iterable[UUID],
    ) -> dict[UUID, AccountInfo]:
        ...


class SqlAccountRegistry:
    """Registry backed by the ``accounts`` table in the caller's session."""

    def __init__(self, session: Session):
        self._session = session

    def lookup_accounts(
        self,
        organization_id: UUID,
        account_ids: Iterable[UUID],
    ) -> dict[UUID, AccountInfo]:
        ids = set(account_ids)
        if not ids:
            return {}
        rows = self._session.execute(
            select(Account).where(
                Account.organization_id == organization_id,
                Account.id.in_(ids),
            )
        ).scalars()
        found = {row.id: self._to_info(row) for row in rows}
        if len(found) != len(ids):
            logger.debug(
                "accounts_missing",
                extra={"missing_count": len(ids) - len(found)},
            )
        return found

    @staticmethod
    def _to_info(account: Account) -> AccountInfo:
        return AccountInfo(
            account_id=account.id,
            code=account.code,
            name=account.name,
            is_active=account.is_active,
            allows_posting=account.allows_posting,
            normal_balance=account.normal_balance.value,
            requires_cost_center=account.requires_cost_center,
            account_type=account.account_type.value,
        )
