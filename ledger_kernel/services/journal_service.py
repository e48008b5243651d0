"""
JournalEntryService -- the only writer of POSTED journal entries.

Responsibility:
    Create, read, update, delete, submit, approve and post journal entries
    (entry + lines), plus per-item bulk variants.  Posting writes the
    immutable LedgerPosting rows and the per-period AccountBalance
    movements.

Architecture position:
    Kernel > Services -- imperative shell.  ReversalService and
    RecurringScheduleService create and post their entries through here.

Invariants enforced:
    - Schema checks (line count, one positive side per line, non-negative
      amounts, positive rate, base-currency balance) run before period
      resolution, which runs before the full validator.
    - Only DRAFT entries are updated or deleted.
    - Posting locks the entry row and re-checks its status in the same
      transaction; a lost race surfaces as a Conflict.
    - A closed or locked period rejects posting before any validation.
    - Every posted entry satisfies |sum(base debit) - sum(base credit)| <= 0.01.
    - Bulk operations isolate each item in a SAVEPOINT and report per-item
      outcomes instead of raising.

Failure modes:
    - EntryNotFoundError (not found), EntryStateError / ClosedPeriodError /
      ApprovalRequiredError (invalid state), InsufficientLinesError /
      InvalidLineError / UnbalancedEntryError / EntryValidationError
      (validation), EntryAlreadyPostedError / OptimisticLockError (conflict).
"""

from collections import Counter, defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import replace
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.dtos import (
    BulkItemResult,
    BulkOperationResult,
    EntryData,
    EntryFilter,
    EntryStatistics,
    EntryUpdate,
    LineData,
    PostResult,
)
from ledger_kernel.domain.validation import ValidationVerdict
from ledger_kernel.exceptions import (
    ApprovalRequiredError,
    ClosedPeriodError,
    EntryAlreadyPostedError,
    EntryNotFoundError,
    EntryStateError,
    EntryValidationError,
    InsufficientLinesError,
    InvalidLineError,
    LedgerKernelError,
    NoPeriodForDateError,
    OptimisticLockError,
    UnbalancedEntryError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.fiscal import FiscalPeriod
from ledger_kernel.models.journal import (
    AccountBalance,
    JournalEntry,
    JournalEntryLine,
    JournalEntryStatus,
    JournalEntryType,
    LedgerPosting,
    ReversalType,
)
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.fiscal_calendar_service import FiscalCalendarService
from ledger_kernel.services.sequence_service import EntryNumberService
from ledger_kernel.services.validation_service import (
    EntryValidationService,
    entry_data_from_model,
)

logger = get_logger("services.journal")

_RESOURCE = "journal_entry"


class JournalEntryService(BaseService[JournalEntry]):
    """
    Entry ledger.

    Contract:
        Mutating methods flush within the caller's transaction and return
        the ORM entry (or a frozen result DTO for post / bulk calls).

    Non-goals:
        - Does NOT commit.
        - Does NOT render reports from the postings it writes.
    """

    def __init__(self, session, ctx, *, account_registry: AccountRegistry | None = None, **kwargs):
        super().__init__(session, ctx, **kwargs)
        self._validator = EntryValidationService(
            session,
            ctx,
            account_registry=account_registry,
            **self._collaborator_kwargs(),
        )
        self._calendar = FiscalCalendarService(session, ctx, **self._collaborator_kwargs())
        self._numbers = EntryNumberService(session, ctx.organization_id, self._settings)

    @property
    def validator(self) -> EntryValidationService:
        return self._validator

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_schema(self, lines: Sequence[LineData]) -> None:
        minimum = self._settings.min_entry_lines
        if len(lines) < minimum:
            raise InsufficientLinesError(len(lines), minimum)

        for number, line in enumerate(lines, start=1):
            if line.debit_amount < ZERO or line.credit_amount < ZERO:
                raise InvalidLineError(number, "amounts must not be negative")
            if (line.debit_amount > ZERO) == (line.credit_amount > ZERO):
                raise InvalidLineError(
                    number, "exactly one of debit or credit must be greater than zero"
                )
            if line.exchange_rate <= ZERO:
                raise InvalidLineError(number, "exchange rate must be positive")

        balance = self._validator.check_balance(lines)
        if not balance.is_balanced:
            raise UnbalancedEntryError(
                str(balance.total_debits),
                str(balance.total_credits),
                str(balance.difference),
                balance.currency,
            )

    def _resolve_period(self, entry_date: date) -> FiscalPeriod:
        period = self._calendar.find_period_for_date(entry_date)
        if period is None:
            raise NoPeriodForDateError(str(entry_date))
        if period.is_hard_closed:
            raise ClosedPeriodError(period.name, period.status.value, str(entry_date))
        return period

    def _require_valid(self, data: EntryData) -> ValidationVerdict:
        verdict = self._validator.validate_entry_data(data)
        if not verdict.is_valid:
            logger.warning(
                "entry_validation_failed",
                extra={"failed_rules": [r.rule_code for r in verdict.errors]},
            )
            raise EntryValidationError(verdict.errors)
        return verdict

    def _build_lines(self, lines: Sequence[LineData]) -> list[JournalEntryLine]:
        base_currency = self._settings.base_currency
        return [
            JournalEntryLine(
                line_number=number,
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                currency=line.currency or base_currency,
                exchange_rate=line.exchange_rate,
                base_debit_amount=line.base_debit,
                base_credit_amount=line.base_credit,
                description=line.description,
                cost_center_id=line.cost_center_id,
                created_by_id=self.actor_id,
            )
            for number, line in enumerate(lines, start=1)
        ]

    def _apply_totals(self, entry: JournalEntry, lines: Sequence[LineData]) -> None:
        balance = self._validator.check_balance(lines)
        entry.total_debit = balance.total_debits
        entry.total_credit = balance.total_credits
        entry.is_balanced = balance.is_balanced
        entry.line_count = len(lines)

    def _flush(self, entry: JournalEntry) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning("entry_concurrent_modification", extra={"entry_id": str(entry.id)})
            raise OptimisticLockError("JournalEntry", str(entry.id)) from exc

    # =========================================================================
    # Create / read
    # =========================================================================

    def create_entry(
        self,
        data: EntryData,
        *,
        template_id: UUID | None = None,
        recurring_schedule_id: UUID | None = None,
        reversed_entry_id: UUID | None = None,
        corrected_entry_id: UUID | None = None,
        reversal_type: ReversalType | None = None,
        reversal_reason: str | None = None,
    ) -> JournalEntry:
        """
        Create a DRAFT entry.

        Checks run in this order: schema, period resolution, full validator.
        The entry number is allocated last, under the counter row lock.

        Args:
            data: Header and lines.
            template_id, recurring_schedule_id: Provenance links.
            reversed_entry_id, corrected_entry_id, reversal_type,
                reversal_reason: Reversal links, set by ReversalService.
        """
        self._check_schema(data.lines)
        period = self._resolve_period(data.entry_date)
        self._require_valid(data)

        entry_type = JournalEntryType(data.entry_type)
        entry_number = self._numbers.next_number(
            entry_type.value,
            period.fiscal_year.start_date.year,
            period.period_number,
        )

        entry = JournalEntry(
            organization_id=self.organization_id,
            entry_number=entry_number,
            entry_date=data.entry_date,
            fiscal_year_id=period.fiscal_year_id,
            period_id=period.id,
            entry_type=entry_type,
            status=JournalEntryStatus.DRAFT,
            description=data.description,
            reference=data.reference,
            notes=data.notes,
            source_document_id=data.source_document_id,
            base_currency=self._settings.base_currency,
            requires_approval=data.requires_approval,
            template_id=template_id,
            recurring_schedule_id=recurring_schedule_id,
            reversed_entry_id=reversed_entry_id,
            corrected_entry_id=corrected_entry_id,
            reversal_type=reversal_type,
            reversal_reason=reversal_reason,
            created_by_id=self.actor_id,
        )
        entry.lines = self._build_lines(data.lines)
        self._apply_totals(entry, data.lines)
        self.session.add(entry)
        self.session.flush()

        logger.info(
            "entry_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry_number,
                "entry_type": entry_type.value,
                "line_count": entry.line_count,
                "total_debit": entry.total_debit,
            },
        )
        self._record_audit(
            AuditAction.ENTRY_CREATED,
            _RESOURCE,
            entry.id,
            entry_number=entry_number,
            entry_type=entry_type,
            entry_date=data.entry_date,
        )
        self._invalidate_cache("journal_entries")
        return entry

    def _get(self, entry_id: UUID, for_update: bool = False) -> JournalEntry:
        query = select(JournalEntry).where(
            JournalEntry.id == entry_id,
            JournalEntry.organization_id == self.organization_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        entry = self.session.execute(query).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def get_entry(self, entry_id: UUID) -> JournalEntry:
        return self._get(entry_id)

    def list_entries(self, filters: EntryFilter | None = None) -> list[JournalEntry]:
        filters = filters or EntryFilter()
        query = select(JournalEntry).where(JournalEntry.organization_id == self.organization_id)
        if filters.status is not None:
            query = query.where(JournalEntry.status == JournalEntryStatus(filters.status))
        if filters.entry_type is not None:
            query = query.where(JournalEntry.entry_type == JournalEntryType(filters.entry_type))
        if filters.date_from is not None:
            query = query.where(JournalEntry.entry_date >= filters.date_from)
        if filters.date_to is not None:
            query = query.where(JournalEntry.entry_date <= filters.date_to)
        if filters.period_id is not None:
            query = query.where(JournalEntry.period_id == filters.period_id)
        if filters.search:
            pattern = f"%{filters.search}%"
            query = query.where(
                or_(
                    JournalEntry.description.ilike(pattern),
                    JournalEntry.entry_number.ilike(pattern),
                    JournalEntry.reference.ilike(pattern),
                )
            )
        query = (
            query.order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        return list(self.session.execute(query).scalars())

    def get_next_entry_number(self, entry_type: JournalEntryType | str, entry_date: date) -> str:
        """Preview the number the next entry of this type and date would get."""
        period = self._calendar.find_period_for_date(entry_date)
        if period is None:
            raise NoPeriodForDateError(str(entry_date))
        return self._numbers.peek_number(
            JournalEntryType(entry_type).value,
            period.fiscal_year.start_date.year,
            period.period_number,
        )

    # =========================================================================
    # Update / delete
    # =========================================================================

    def _require_draft(self, entry: JournalEntry, operation: str) -> None:
        if entry.status != JournalEntryStatus.DRAFT:
            raise EntryStateError(str(entry.id), entry.status.value, operation)

    def update_entry(self, entry_id: UUID, data: EntryUpdate) -> JournalEntry:
        """
        Update a DRAFT entry.

        A date change re-resolves the period; new lines re-run the schema
        checks; either re-runs the validator.
        """
        entry = self._get(entry_id, for_update=True)
        self._require_draft(entry, "update")

        new_lines = data.lines
        new_date = data.entry_date
        if new_lines is not None:
            self._check_schema(new_lines)

        if new_date is not None and new_date != entry.entry_date:
            period = self._resolve_period(new_date)
            entry.entry_date = new_date
            entry.period_id = period.id
            entry.fiscal_year_id = period.fiscal_year_id

        for name in ("description", "reference", "notes", "requires_approval"):
            value = getattr(data, name)
            if value is not None:
                setattr(entry, name, value)

        if new_lines is not None or new_date is not None:
            candidate = entry_data_from_model(entry)
            if new_lines is not None:
                candidate = replace(candidate, lines=new_lines)
            self._require_valid(candidate)

        if new_lines is not None:
            entry.lines.clear()
            self.session.flush()
            entry.lines.extend(self._build_lines(new_lines))
            self._apply_totals(entry, new_lines)

        entry.updated_by_id = self.actor_id
        self._flush(entry)

        logger.info(
            "entry_updated",
            extra={"entry_id": str(entry.id), "lines_replaced": new_lines is not None},
        )
        self._record_audit(
            AuditAction.ENTRY_UPDATED,
            _RESOURCE,
            entry.id,
            entry_number=entry.entry_number,
            lines_replaced=new_lines is not None,
        )
        self._invalidate_cache("journal_entries")
        return entry

    def delete_entry(self, entry_id: UUID) -> None:
        entry = self._get(entry_id, for_update=True)
        self._require_draft(entry, "delete")
        if entry.reversed_entry_id is not None:
            # The original is already REVERSED and points here
            raise EntryStateError(str(entry.id), entry.status.value, "delete the reversing entry")

        entry_number = entry.entry_number
        self.session.delete(entry)
        self._flush(entry)

        logger.info("entry_deleted", extra={"entry_id": str(entry_id), "entry_number": entry_number})
        self._record_audit(AuditAction.ENTRY_DELETED, _RESOURCE, entry_id, entry_number=entry_number)
        self._invalidate_cache("journal_entries")

    def copy_entry(self, entry_id: UUID, new_date: date | None = None) -> JournalEntry:
        """New DRAFT with the same lines, optionally on another date."""
        source = self._get(entry_id)
        data = entry_data_from_model(source)
        entry_type = source.entry_type
        if entry_type == JournalEntryType.REVERSING:
            entry_type = JournalEntryType.STANDARD
        return self.create_entry(
            EntryData(
                entry_date=new_date or source.entry_date,
                description=source.description,
                lines=data.lines,
                entry_type=entry_type.value,
                reference=source.reference,
                notes=source.notes,
                requires_approval=source.requires_approval,
            )
        )

    # =========================================================================
    # Workflow
    # =========================================================================

    def submit_entry(self, entry_id: UUID) -> JournalEntry:
        """DRAFT -> PENDING, after a passing validation."""
        entry = self._get(entry_id, for_update=True)
        self._require_draft(entry, "submit")
        self._require_valid(entry_data_from_model(entry))

        entry.status = JournalEntryStatus.PENDING
        entry.updated_by_id = self.actor_id
        self._flush(entry)

        logger.info("entry_submitted", extra={"entry_id": str(entry.id)})
        self._record_audit(
            AuditAction.ENTRY_SUBMITTED,
            _RESOURCE,
            entry.id,
            previous_status=JournalEntryStatus.DRAFT,
            new_status=JournalEntryStatus.PENDING,
        )
        self._invalidate_cache("journal_entries")
        return entry

    def approve_entry(self, entry_id: UUID) -> JournalEntry:
        entry = self._get(entry_id, for_update=True)
        if entry.status not in (JournalEntryStatus.DRAFT, JournalEntryStatus.PENDING):
            raise EntryStateError(str(entry.id), entry.status.value, "approve")

        entry.approved_at = self._clock.now()
        entry.approved_by_id = self.actor_id
        entry.updated_by_id = self.actor_id
        self._flush(entry)

        logger.info("entry_approved", extra={"entry_id": str(entry.id)})
        self._record_audit(AuditAction.ENTRY_APPROVED, _RESOURCE, entry.id)
        self._invalidate_cache("journal_entries")
        return entry

    def validate_entry(self, entry_id: UUID, store_result: bool = False) -> ValidationVerdict:
        return self._validator.validate_entry(entry_id, store_result=store_result)

    def post_entry(self, entry_id: UUID, bypass_approval: bool = False) -> PostResult:
        """
        Post a DRAFT or PENDING entry.

        Preconditions (checked in order, under the row lock):
            - not already POSTED (Conflict) and not REVERSED (Invalid State)
            - period neither closed nor locked (Invalid State)
            - approved when approval is required, unless bypassed
            - validator ``can_post``

        Postconditions:
            - One LedgerPosting per line; AccountBalance movements updated.
            - status POSTED, posted_at / posted_by_id set.

        Returns:
            PostResult carrying the validator's warnings.
        """
        entry = self._get(entry_id, for_update=True)

        with LogContext.bind(entry_id=str(entry.id)):
            if entry.status == JournalEntryStatus.POSTED:
                raise EntryAlreadyPostedError(str(entry.id), entry.entry_number)
            if entry.status == JournalEntryStatus.REVERSED:
                raise EntryStateError(str(entry.id), entry.status.value, "post")

            period = entry.period
            if period.is_hard_closed:
                logger.warning(
                    "entry_post_rejected_closed_period",
                    extra={"period_id": str(period.id), "period_status": period.status.value},
                )
                raise ClosedPeriodError(period.name, period.status.value, str(entry.entry_date))

            if entry.requires_approval and entry.approved_at is None and not bypass_approval:
                raise ApprovalRequiredError(str(entry.id))

            verdict = self._validator.validate_entry_data(entry_data_from_model(entry))
            if not verdict.can_post:
                logger.warning(
                    "entry_validation_failed",
                    extra={"failed_rules": [r.rule_code for r in verdict.errors]},
                )
                raise EntryValidationError(verdict.errors)

            self._write_postings(entry)

            now = self._clock.now()
            previous_status = entry.status
            entry.status = JournalEntryStatus.POSTED
            entry.posted_at = now
            entry.posted_by_id = self.actor_id
            entry.updated_by_id = self.actor_id
            self._flush(entry)

            warnings = tuple(verdict.warnings)
            logger.info(
                "entry_posted",
                extra={
                    "entry_number": entry.entry_number,
                    "total_debit": entry.total_debit,
                    "warning_count": len(warnings),
                },
            )

        self._record_audit(
            AuditAction.ENTRY_POSTED,
            _RESOURCE,
            entry.id,
            entry_number=entry.entry_number,
            previous_status=previous_status,
            warnings=[w.rule_code for w in warnings],
        )
        self._invalidate_cache("journal_entries", "balances", "reports")
        return PostResult(
            entry_id=entry.id,
            entry_number=entry.entry_number,
            status=entry.status.value,
            posted_at=now,
            warnings=warnings,
        )

    def _write_postings(self, entry: JournalEntry) -> None:
        self.session.flush()  # line ids
        movements: dict[UUID, list[Decimal]] = defaultdict(lambda: [ZERO, ZERO])
        for line in entry.lines:
            self.session.add(
                LedgerPosting(
                    organization_id=self.organization_id,
                    journal_entry_id=entry.id,
                    journal_entry_line_id=line.id,
                    account_id=line.account_id,
                    period_id=entry.period_id,
                    posting_date=entry.entry_date,
                    debit_amount=line.base_debit_amount,
                    credit_amount=line.base_credit_amount,
                    description=line.description or entry.description,
                    created_by_id=self.actor_id,
                )
            )
            movements[line.account_id][0] += line.base_debit_amount
            movements[line.account_id][1] += line.base_credit_amount

        accounts = self._validator.account_registry.lookup_accounts(
            self.organization_id, movements.keys()
        )
        for account_id, (debit, credit) in movements.items():
            balance = self._locked_balance(account_id, entry.period_id)
            balance.debit_movement += debit
            balance.credit_movement += credit
            net = balance.debit_movement - balance.credit_movement
            info = accounts.get(account_id)
            balance.closing_balance = -net if info and info.normal_balance == "credit" else net
            balance.updated_by_id = self.actor_id

    def _locked_balance(self, account_id: UUID, period_id: UUID) -> AccountBalance:
        query = (
            select(AccountBalance)
            .where(
                AccountBalance.account_id == account_id,
                AccountBalance.period_id == period_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        balance = self.session.execute(query).scalar_one_or_none()
        if balance is not None:
            return balance

        savepoint = self.session.begin_nested()
        try:
            balance = AccountBalance(
                organization_id=self.organization_id,
                account_id=account_id,
                period_id=period_id,
                debit_movement=ZERO,
                credit_movement=ZERO,
                closing_balance=ZERO,
                created_by_id=self.actor_id,
            )
            self.session.add(balance)
            self.session.flush()
            savepoint.commit()
            return balance
        except IntegrityError:
            logger.debug("account_balance_race_retry", extra={"account_id": str(account_id)})
            savepoint.rollback()
            return self.session.execute(query).scalar_one()

    # =========================================================================
    # Bulk
    # =========================================================================

    def _run_per_item(self, entry_ids: Iterable[UUID], operation, label: str) -> BulkOperationResult:
        results: list[BulkItemResult] = []
        for entry_id in entry_ids:
            savepoint = self.session.begin_nested()
            try:
                entry_number = operation(entry_id)
                savepoint.commit()
                results.append(BulkItemResult(entry_id=entry_id, success=True, entry_number=entry_number))
            except LedgerKernelError as exc:
                savepoint.rollback()
                results.append(
                    BulkItemResult(
                        entry_id=entry_id,
                        success=False,
                        error=str(exc),
                        error_code=exc.code,
                        error_kind=exc.kind.value,
                    )
                )
            except Exception as exc:
                savepoint.rollback()
                logger.error(
                    f"{label}_item_failed",
                    extra={"entry_id": str(entry_id)},
                    exc_info=True,
                )
                results.append(
                    BulkItemResult(
                        entry_id=entry_id,
                        success=False,
                        error=str(exc),
                        error_code="UNHANDLED_EXCEPTION",
                    )
                )

        success_count = sum(1 for r in results if r.success)
        summary = BulkOperationResult(
            total_requested=len(results),
            success_count=success_count,
            failure_count=len(results) - success_count,
            results=tuple(results),
        )
        logger.info(
            f"{label}_completed",
            extra={
                "total_requested": summary.total_requested,
                "success_count": summary.success_count,
                "failure_count": summary.failure_count,
            },
        )
        return summary

    def bulk_post(self, entry_ids: Iterable[UUID], bypass_approval: bool = False) -> BulkOperationResult:
        def _post(entry_id: UUID) -> str:
            return self.post_entry(entry_id, bypass_approval=bypass_approval).entry_number

        return self._run_per_item(entry_ids, _post, "bulk_post")

    def bulk_delete(self, entry_ids: Iterable[UUID]) -> BulkOperationResult:
        def _delete(entry_id: UUID) -> str:
            entry_number = self._get(entry_id).entry_number
            self.delete_entry(entry_id)
            return entry_number

        return self._run_per_item(entry_ids, _delete, "bulk_delete")

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_statistics(self) -> EntryStatistics:
        org_filter = JournalEntry.organization_id == self.organization_id
        by_status = Counter(
            {
                status.value: count
                for status, count in self.session.execute(
                    select(JournalEntry.status, func.count(JournalEntry.id))
                    .where(org_filter)
                    .group_by(JournalEntry.status)
                ).all()
            }
        )
        by_type = {
            entry_type.value: count
            for entry_type, count in self.session.execute(
                select(JournalEntry.entry_type, func.count(JournalEntry.id))
                .where(org_filter)
                .group_by(JournalEntry.entry_type)
            ).all()
        }
        posted_debit, posted_credit, last_posted = self.session.execute(
            select(
                func.coalesce(func.sum(JournalEntry.total_debit), 0),
                func.coalesce(func.sum(JournalEntry.total_credit), 0),
                func.max(JournalEntry.posted_at),
            ).where(org_filter, JournalEntry.status == JournalEntryStatus.POSTED)
        ).one()
        last_entry_date = self.session.execute(
            select(func.max(JournalEntry.entry_date)).where(org_filter)
        ).scalar_one()
        return EntryStatistics(
            total_entries=sum(by_status.values()),
            by_status=dict(by_status),
            by_type=by_type,
            posted_debit_total=Decimal(str(posted_debit)),
            posted_credit_total=Decimal(str(posted_credit)),
            last_entry_date=last_entry_date,
            last_posted_at=last_posted,
        )
