"""Database layer - engine, base classes, types, and immutability."""

from ledger_kernel.db.base import UUID, Base, OrgScopedBase, TrackedBase, UUIDString
from ledger_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)
from ledger_kernel.db.types import Currency, Money, Rate, round_money

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "OrgScopedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Rate",
    "Currency",
    "round_money",
]
