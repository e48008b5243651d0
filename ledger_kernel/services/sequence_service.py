"""
EntryNumberService -- human-readable entry numbers via locked counter rows.

Responsibility:
    Allocates ``PREFIX/YYYY/MM/NNNN`` numbers scoped by (organization,
    entry type, fiscal year, period number).  YYYY is the fiscal year's
    start year and MM the period number, so a July-June fiscal year
    numbers July entries ``.../01/...``.

Invariants enforced:
    - The counter row is locked (``SELECT ... FOR UPDATE``) before it is
      incremented; the aggregate-max-plus-one pattern is never used.
    - Allocation is transactional: a rolled-back transaction returns its
      number.

Failure modes:
    - IntegrityError on concurrent first use of a counter: handled with a
      savepoint rollback and a locked re-read.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.domain.settings import LedgerSettings
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import EntryNumberSequence

logger = get_logger("services.sequence")


class EntryNumberService:
    """
    Allocates sequential entry numbers.

    Usage:
        with session_scope() as session:
            numbers = EntryNumberService(session, org_id)
            number = numbers.next_number("STANDARD", 2024, 3)   # JE/2024/03/0001
    """

    def __init__(
        self,
        session: Session,
        organization_id: UUID,
        settings: LedgerSettings | None = None,
    ):
        self._session = session
        self._organization_id = organization_id
        self._settings = settings or LedgerSettings()

    def format_number(self, entry_type: str, year: int, month: int, number: int) -> str:
        prefix = self._settings.prefix_for(entry_type)
        padding = self._settings.entry_number_padding
        return f"{prefix}/{year}/{month:02d}/{number:0{padding}d}"

    def _locked_counter(self, entry_type: str, year: int, month: int) -> EntryNumberSequence | None:
        return self._session.execute(
            select(EntryNumberSequence)
            .where(
                EntryNumberSequence.organization_id == self._organization_id,
                EntryNumberSequence.entry_type == entry_type,
                EntryNumberSequence.year == year,
                EntryNumberSequence.month == month,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_number(self, entry_type: str, year: int, month: int) -> str:
        """
        Allocate the next number for (entry_type, year, month).

        Postconditions:
            - The counter row is locked until the transaction completes.
            - The returned number is strictly greater than every number
              previously allocated for the same scope.
        """
        counter = self._locked_counter(entry_type, year, month)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                counter = EntryNumberSequence(
                    organization_id=self._organization_id,
                    entry_type=entry_type,
                    year=year,
                    month=month,
                    last_number=1,
                )
                self._session.add(counter)
                self._session.flush()
                savepoint.commit()
                number = self.format_number(entry_type, year, month, 1)
                logger.debug("entry_number_allocated", extra={"entry_number": number})
                return number
            except IntegrityError:
                logger.debug(
                    "entry_number_counter_race_retry",
                    extra={"entry_type": entry_type, "year": year, "month": month},
                )
                savepoint.rollback()
                counter = self._locked_counter(entry_type, year, month)
                if counter is None:
                    raise

        counter.last_number += 1
        self._session.flush()
        number = self.format_number(entry_type, year, month, counter.last_number)
        logger.debug("entry_number_allocated", extra={"entry_number": number})
        return number

    def peek_number(self, entry_type: str, year: int, month: int) -> str:
        """The number ``next_number`` would return, without allocating it."""
        last = self._session.execute(
            select(EntryNumberSequence.last_number).where(
                EntryNumberSequence.organization_id == self._organization_id,
                EntryNumberSequence.entry_type == entry_type,
                EntryNumberSequence.year == year,
                EntryNumberSequence.month == month,
            )
        ).scalar_one_or_none()
        return self.format_number(entry_type, year, month, (last or 0) + 1)
