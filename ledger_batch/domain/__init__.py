"""
ledger_batch.domain -- Pure types for due processing.

ZERO I/O.  All types are frozen dataclasses.
"""

from ledger_batch.domain.types import OrganizationRun, ProcessingKind, TickResult

__all__ = [
    "OrganizationRun",
    "ProcessingKind",
    "TickResult",
]
