"""
ReversalService -- reversing entries, corrections and scheduled auto-reversals.

Responsibility:
    Nullify a posted entry with a mirror-image REVERSING entry, attach or
    detach a future auto-reversal, create ADJUSTING corrections with
    caller-supplied lines, and process due auto-reversals in a batch.

Architecture position:
    Kernel > Services -- imperative shell.  All new entries go through
    JournalEntryService.create_entry / post_entry.

Invariants enforced:
    - Only POSTED, not yet reversed entries are reversed or corrected.
    - reversal_date >= entry_date; auto_reverse_date > entry_date.
    - A reversing entry mirrors the original line for line (debit <-> credit,
      base amounts included), so the pair nets to zero per account.
    - The original's posted amounts never change; only its status and
      reversal link fields do.
    - process_auto_reversals isolates each entry in a SAVEPOINT; dry runs
      persist nothing.
"""

from collections import defaultdict
from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.dtos import (
    AccountNetEffect,
    EntryData,
    LineData,
    ProcessingItemResult,
    ProcessingSummary,
    ReversalDetails,
)
from ledger_kernel.exceptions import (
    AutoReversalDateError,
    AutoReversalNotScheduledError,
    ClosedPeriodError,
    EntryAlreadyReversedError,
    EntryNotPostedError,
    LedgerKernelError,
    NoPeriodForDateError,
    ReversalDateError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    ReversalType,
)
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_service import JournalEntryService

logger = get_logger("services.reversal")

_RESOURCE = "journal_entry"

AUTO_REVERSAL_REASON = "Auto-reversed as scheduled"


class ReversalService(BaseService[JournalEntry]):
    """
    Reversal / correction engine.

    Contract:
        Single-entry methods raise typed errors; process_auto_reversals
        never raises for a single entry and reports per-entry outcomes.

    Non-goals:
        - Does NOT commit.
        - Does NOT partially reverse; use create_correction for that.
    """

    def __init__(self, session, ctx, *, account_registry: AccountRegistry | None = None, **kwargs):
        super().__init__(session, ctx, **kwargs)
        self._journal = JournalEntryService(
            session,
            ctx,
            account_registry=account_registry,
            **self._collaborator_kwargs(),
        )

    @property
    def journal(self) -> JournalEntryService:
        return self._journal

    def _load(self, entry_id: UUID, for_update: bool = False) -> JournalEntry:
        return self._journal._get(entry_id, for_update=for_update)

    def _require_reversible(self, entry: JournalEntry) -> None:
        if entry.status == JournalEntryStatus.REVERSED or entry.reversing_entry_id is not None:
            raise EntryAlreadyReversedError(
                str(entry.id),
                str(entry.reversing_entry_id) if entry.reversing_entry_id else None,
            )
        if entry.status != JournalEntryStatus.POSTED:
            raise EntryNotPostedError(str(entry.id), entry.status.value)

    def _require_open_period(self, target_date: date) -> None:
        period = self._journal._calendar.find_period_for_date(target_date)
        if period is None:
            raise NoPeriodForDateError(str(target_date))
        if period.is_hard_closed:
            raise ClosedPeriodError(period.name, period.status.value, str(target_date))

    # =========================================================================
    # Reverse
    # =========================================================================

    def reverse_entry(
        self,
        entry_id: UUID,
        reversal_date: date,
        reason: str,
        auto_post: bool = True,
    ) -> JournalEntry:
        """
        Reverse a posted entry.

        Preconditions:
            - entry POSTED and not already reversed
            - reversal_date >= entry_date
            - the period containing reversal_date is open or soft-closed

        Postconditions:
            - New REVERSING entry with swapped lines, linked both ways.
            - Original is REVERSED; any scheduled auto-reversal is cleared.
            - The reversing entry is POSTED when auto_post, else DRAFT.

        Returns:
            The reversing entry.
        """
        original = self._load(entry_id, for_update=True)
        return self._reverse(
            original,
            reversal_date,
            reason,
            auto_post=auto_post,
            reversal_type=ReversalType.STANDARD,
            description=f"Reversal of {original.entry_number}: {reason}",
            line_prefix="Reversal",
        )

    def _reverse(
        self,
        original: JournalEntry,
        reversal_date: date,
        reason: str,
        *,
        auto_post: bool,
        reversal_type: ReversalType,
        description: str,
        line_prefix: str,
    ) -> JournalEntry:
        self._require_reversible(original)
        if reversal_date < original.entry_date:
            raise ReversalDateError(str(original.entry_date), str(reversal_date))
        self._require_open_period(reversal_date)

        lines = [
            LineData(
                account_id=line.account_id,
                debit_amount=line.credit_amount,
                credit_amount=line.debit_amount,
                currency=line.currency,
                exchange_rate=line.exchange_rate,
                description=f"{line_prefix}: {line.description or original.description}",
                cost_center_id=line.cost_center_id,
            )
            for line in original.lines
        ]
        reversing = self._journal.create_entry(
            EntryData(
                entry_date=reversal_date,
                description=description,
                lines=lines,
                entry_type=JournalEntryType.REVERSING.value,
                reference=original.entry_number,
            ),
            reversed_entry_id=original.id,
            reversal_type=reversal_type,
            reversal_reason=reason,
        )

        original.status = JournalEntryStatus.REVERSED
        original.reversing_entry_id = reversing.id
        original.reversal_type = reversal_type
        original.reversal_reason = reason
        original.reversed_at = self._clock.now()
        original.reversed_by_id = self.actor_id
        original.auto_reverse_date = None
        original.updated_by_id = self.actor_id
        self._journal._flush(original)

        if auto_post:
            self._journal.post_entry(reversing.id, bypass_approval=True)

        logger.info(
            "entry_reversed",
            extra={
                "entry_id": str(original.id),
                "entry_number": original.entry_number,
                "reversing_entry_id": str(reversing.id),
                "reversing_entry_number": reversing.entry_number,
                "reversal_type": reversal_type.value,
                "auto_post": auto_post,
            },
        )
        self._record_audit(
            AuditAction.ENTRY_REVERSED,
            _RESOURCE,
            original.id,
            reversing_entry_id=reversing.id,
            reversing_entry_number=reversing.entry_number,
            reversal_date=reversal_date,
            reversal_type=reversal_type,
            reason=reason,
        )
        self._invalidate_cache("journal_entries", "balances", "reports", "reversals")
        return reversing

    # =========================================================================
    # Auto-reversal scheduling
    # =========================================================================

    def schedule_auto_reversal(self, entry_id: UUID, auto_reverse_date: date) -> JournalEntry:
        entry = self._load(entry_id, for_update=True)
        self._require_reversible(entry)
        if auto_reverse_date <= entry.entry_date:
            raise AutoReversalDateError(str(entry.entry_date), str(auto_reverse_date))

        entry.auto_reverse_date = auto_reverse_date
        entry.reversal_type = ReversalType.AUTO_SCHEDULED
        entry.updated_by_id = self.actor_id
        self._journal._flush(entry)

        logger.info(
            "auto_reversal_scheduled",
            extra={"entry_id": str(entry.id), "auto_reverse_date": auto_reverse_date},
        )
        self._record_audit(
            AuditAction.AUTO_REVERSAL_SCHEDULED,
            _RESOURCE,
            entry.id,
            auto_reverse_date=auto_reverse_date,
        )
        self._invalidate_cache("journal_entries", "reversals")
        return entry

    def cancel_auto_reversal(self, entry_id: UUID) -> JournalEntry:
        entry = self._load(entry_id, for_update=True)
        if entry.auto_reverse_date is None or entry.reversal_type != ReversalType.AUTO_SCHEDULED:
            raise AutoReversalNotScheduledError(str(entry.id))

        cancelled_date = entry.auto_reverse_date
        entry.auto_reverse_date = None
        entry.reversal_type = None
        entry.updated_by_id = self.actor_id
        self._journal._flush(entry)

        logger.info(
            "auto_reversal_cancelled",
            extra={"entry_id": str(entry.id), "auto_reverse_date": cancelled_date},
        )
        self._record_audit(
            AuditAction.AUTO_REVERSAL_CANCELLED,
            _RESOURCE,
            entry.id,
            cancelled_date=cancelled_date,
        )
        self._invalidate_cache("journal_entries", "reversals")
        return entry

    # =========================================================================
    # Corrections
    # =========================================================================

    def create_correction(
        self,
        entry_id: UUID,
        correction_date: date,
        lines: Sequence[LineData],
        reason: str,
        auto_post: bool = False,
    ) -> JournalEntry:
        """
        ADJUSTING entry with caller-chosen lines referencing a posted entry.

        The original keeps its status.
        """
        original = self._load(entry_id)
        if original.status != JournalEntryStatus.POSTED:
            raise EntryNotPostedError(str(original.id), original.status.value)
        self._require_open_period(correction_date)

        correction = self._journal.create_entry(
            EntryData(
                entry_date=correction_date,
                description=f"Correction of {original.entry_number}: {reason}",
                lines=[
                    line if line.description else LineData(
                        account_id=line.account_id,
                        debit_amount=line.debit_amount,
                        credit_amount=line.credit_amount,
                        currency=line.currency,
                        exchange_rate=line.exchange_rate,
                        description="Correction",
                        cost_center_id=line.cost_center_id,
                    )
                    for line in lines
                ],
                entry_type=JournalEntryType.ADJUSTING.value,
                reference=original.entry_number,
            ),
            corrected_entry_id=original.id,
            reversal_type=ReversalType.CORRECTION,
            reversal_reason=reason,
        )
        if auto_post:
            self._journal.post_entry(correction.id, bypass_approval=True)

        logger.info(
            "correction_created",
            extra={
                "entry_id": str(original.id),
                "correction_entry_id": str(correction.id),
                "correction_entry_number": correction.entry_number,
                "auto_post": auto_post,
            },
        )
        self._record_audit(
            AuditAction.CORRECTION_CREATED,
            _RESOURCE,
            correction.id,
            original_entry_id=original.id,
            original_entry_number=original.entry_number,
            reason=reason,
        )
        return correction

    # =========================================================================
    # Batch
    # =========================================================================

    def list_pending_auto_reversals(self, up_to: date | None = None) -> list[JournalEntry]:
        query = select(JournalEntry).where(
            JournalEntry.organization_id == self.organization_id,
            JournalEntry.status == JournalEntryStatus.POSTED,
            JournalEntry.reversal_type == ReversalType.AUTO_SCHEDULED,
            JournalEntry.auto_reverse_date.is_not(None),
        )
        if up_to is not None:
            query = query.where(JournalEntry.auto_reverse_date <= up_to)
        query = query.order_by(JournalEntry.auto_reverse_date, JournalEntry.entry_number)
        return list(self.session.execute(query).scalars())

    def process_auto_reversals(
        self,
        for_date: date | None = None,
        dry_run: bool = False,
    ) -> ProcessingSummary:
        """
        Reverse every entry whose auto-reverse date is on or before for_date.

        Each entry is reversed on its own auto-reverse date and auto-posted.
        Dry runs check the target period and report, without persisting.
        """
        for_date = for_date or self._clock.today()
        due = self.list_pending_auto_reversals(up_to=for_date)
        logger.info(
            "auto_reversals_started",
            extra={"for_date": for_date, "due_count": len(due), "dry_run": dry_run},
        )

        results: list[ProcessingItemResult] = []
        for entry in due:
            with LogContext.bind(entry_id=str(entry.id)):
                if dry_run:
                    results.append(self._dry_run_item(entry))
                else:
                    results.append(self._process_item(entry))

        summary = ProcessingSummary.from_results(results, dry_run)
        logger.info(
            "auto_reversals_completed",
            extra={
                "processed": summary.processed,
                "successful": summary.successful,
                "failed": summary.failed,
                "dry_run": dry_run,
            },
        )
        return summary

    def _dry_run_item(self, entry: JournalEntry) -> ProcessingItemResult:
        target = entry.auto_reverse_date
        try:
            self._require_open_period(target)
        except LedgerKernelError as exc:
            return ProcessingItemResult(
                item_id=entry.id,
                success=False,
                label=entry.entry_number,
                target_date=target,
                error=str(exc),
                error_code=exc.code,
            )
        return ProcessingItemResult(
            item_id=entry.id,
            success=True,
            label=entry.entry_number,
            target_date=target,
        )

    def _process_item(self, entry: JournalEntry) -> ProcessingItemResult:
        target = entry.auto_reverse_date
        entry_id, entry_number = entry.id, entry.entry_number
        savepoint = self.session.begin_nested()
        try:
            original = self._load(entry_id, for_update=True)
            reversing = self._reverse(
                original,
                target,
                AUTO_REVERSAL_REASON,
                auto_post=True,
                reversal_type=ReversalType.AUTO_SCHEDULED,
                description=f"Auto-reversal of {original.entry_number}",
                line_prefix="Auto-reversal",
            )
            savepoint.commit()
        except LedgerKernelError as exc:
            savepoint.rollback()
            logger.warning(
                "auto_reversal_failed",
                extra={"entry_number": entry_number, "error_code": exc.code},
            )
            return ProcessingItemResult(
                item_id=entry_id,
                success=False,
                label=entry_number,
                target_date=target,
                error=str(exc),
                error_code=exc.code,
            )
        except Exception as exc:
            savepoint.rollback()
            logger.error(
                "auto_reversal_failed",
                extra={"entry_number": entry_number},
                exc_info=True,
            )
            return ProcessingItemResult(
                item_id=entry_id,
                success=False,
                label=entry_number,
                target_date=target,
                error=str(exc),
                error_code="UNHANDLED_EXCEPTION",
            )
        return ProcessingItemResult(
            item_id=entry_id,
            success=True,
            label=entry_number,
            target_date=target,
            journal_entry_id=reversing.id,
            entry_number=reversing.entry_number,
        )

    # =========================================================================
    # Projections
    # =========================================================================

    def list_reversals(
        self,
        date_from: date | None = None,
        date_to: date | None = None,
        reversal_type: ReversalType | str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[JournalEntry]:
        """Reversed originals, newest reversal first."""
        query = select(JournalEntry).where(
            JournalEntry.organization_id == self.organization_id,
            JournalEntry.status == JournalEntryStatus.REVERSED,
        )
        if reversal_type is not None:
            query = query.where(JournalEntry.reversal_type == ReversalType(reversal_type))
        if date_from is not None:
            query = query.where(JournalEntry.entry_date >= date_from)
        if date_to is not None:
            query = query.where(JournalEntry.entry_date <= date_to)
        query = query.order_by(JournalEntry.reversed_at.desc()).limit(limit).offset(offset)
        return list(self.session.execute(query).scalars())

    def get_reversal_details(self, entry_id: UUID) -> ReversalDetails:
        """
        Original/reversing pair plus per-account net effect.

        Accepts either side of the pair.
        """
        entry = self._load(entry_id)
        if entry.reversed_entry_id is not None:
            original = self._load(entry.reversed_entry_id)
        else:
            original = entry
        reversing = (
            self._load(original.reversing_entry_id)
            if original.reversing_entry_id is not None
            else None
        )

        totals: dict[UUID, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for source in (original, reversing):
            if source is None:
                continue
            for line in source.lines:
                totals[line.account_id][0] += line.base_debit_amount
                totals[line.account_id][1] += line.base_credit_amount

        return ReversalDetails(
            original_entry_id=original.id,
            original_entry_number=original.entry_number,
            reversing_entry_id=reversing.id if reversing else None,
            reversing_entry_number=reversing.entry_number if reversing else None,
            reversal_date=reversing.entry_date if reversing else None,
            reversal_reason=original.reversal_reason,
            reversed_at=original.reversed_at,
            reversed_by_id=original.reversed_by_id,
            net_effect=tuple(
                AccountNetEffect(account_id=account_id, debit=debit, credit=credit)
                for account_id, (debit, credit) in totals.items()
            ),
        )
