"""
ledger_batch.domain.types -- Frozen results of scheduler ticks.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.dtos import ProcessingSummary


class ProcessingKind(str, Enum):
    """Batch pass run for an organization."""

    DUE_SCHEDULES = "due_schedules"
    AUTO_REVERSALS = "auto_reversals"


@dataclass(frozen=True)
class OrganizationRun:
    """Outcome of one tick for one organization.

    ``error`` is set when the organization's transaction failed as a whole
    (nothing from it was committed).
    """

    organization_id: UUID
    for_date: date
    due_schedules: ProcessingSummary | None = None
    auto_reversals: ProcessingSummary | None = None
    error: str | None = None

    @property
    def committed(self) -> bool:
        return self.error is None

    @property
    def failed_items(self) -> int:
        return sum(s.failed for s in (self.due_schedules, self.auto_reversals) if s is not None)


@dataclass(frozen=True)
class TickResult:
    started_at: datetime
    completed_at: datetime
    runs: tuple[OrganizationRun, ...] = ()

    @property
    def organizations(self) -> int:
        return len(self.runs)

    @property
    def processed(self) -> int:
        return sum(
            s.processed
            for run in self.runs
            for s in (run.due_schedules, run.auto_reversals)
            if s is not None
        )
