"""
Tests for JournalEntryService.

Covers:
- Entry creation: schema checks, balance (absolute 0.01), period resolution
- Entry numbering per type and period (JE/2024/03/0001)
- Draft editing, deletion and copying
- Workflow: submit, approve, post (with approval gate)
- Posting into soft-closed and closed periods
- Ledger postings and per-period account balances
- Bulk post / bulk delete with per-item outcomes
- Statistics
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from ledger_kernel.domain.context import OrgContext
from ledger_kernel.domain.dtos import EntryData, EntryFilter, EntryUpdate, LineData
from ledger_kernel.domain.validation import RuleCode
from ledger_kernel.exceptions import (
    ApprovalRequiredError,
    ClosedPeriodError,
    EntryAlreadyPostedError,
    EntryNotFoundError,
    EntryStateError,
    EntryValidationError,
    ErrorKind,
    InsufficientLinesError,
    InvalidLineError,
    NoPeriodForDateError,
    UnbalancedEntryError,
)
from ledger_kernel.models.journal import (
    AccountBalance,
    JournalEntryStatus,
    JournalEntryType,
    LedgerPosting,
)
from ledger_kernel.services.journal_service import JournalEntryService


def _period_for(calendar_service, day):
    return calendar_service.find_period_for_date(day)


# =============================================================================
# Creation
# =============================================================================


class TestCreateEntry:

    def test_creates_draft_with_totals(self, make_entry):
        entry = make_entry("1234.56")
        assert entry.status == JournalEntryStatus.DRAFT
        assert entry.entry_type == JournalEntryType.STANDARD
        assert entry.total_debit == Decimal("1234.56")
        assert entry.total_credit == Decimal("1234.56")
        assert entry.is_balanced
        assert entry.line_count == 2
        assert entry.base_currency == "PLN"
        assert [line.line_number for line in entry.lines] == [1, 2]

    def test_resolves_period(self, make_entry, calendar_service):
        entry = make_entry()
        assert entry.period_id == _period_for(calendar_service, date(2024, 3, 10)).id

    def test_numbering_per_period(self, make_entry):
        first = make_entry()
        second = make_entry()
        april = make_entry(entry_date=date(2024, 4, 1))
        assert first.entry_number == "JE/2024/03/0001"
        assert second.entry_number == "JE/2024/03/0002"
        assert april.entry_number == "JE/2024/04/0001"

    def test_numbering_per_type(self, journal_service, entry_data, fiscal_year_2024):
        journal_service.create_entry(entry_data())
        adjusting = journal_service.create_entry(entry_data(entry_type="ADJUSTING"))
        assert adjusting.entry_number == "AJ/2024/03/0001"

    def test_peek_next_number_does_not_allocate(self, journal_service, make_entry):
        make_entry()
        assert journal_service.get_next_entry_number("STANDARD", date(2024, 3, 20)) == "JE/2024/03/0002"
        assert journal_service.get_next_entry_number("STANDARD", date(2024, 3, 20)) == "JE/2024/03/0002"
        assert make_entry().entry_number == "JE/2024/03/0002"

    def test_unbalanced(self, journal_service, accounts, fiscal_year_2024):
        data = EntryData(
            entry_date=date(2024, 3, 10),
            description="Niezbilansowany",
            lines=(
                LineData(accounts["100"].id, debit_amount=Decimal("1000")),
                LineData(accounts["700"].id, credit_amount=Decimal("900")),
            ),
        )
        with pytest.raises(UnbalancedEntryError) as exc_info:
            journal_service.create_entry(data)
        assert exc_info.value.difference == "100.00"
        assert exc_info.value.currency == "PLN"
        assert exc_info.value.code == "UNBALANCED_ENTRY"

    def test_one_grosz_difference_tolerated(self, journal_service, accounts, fiscal_year_2024):
        data = EntryData(
            entry_date=date(2024, 3, 10),
            description="Zaokrąglenie",
            lines=(
                LineData(accounts["100"].id, debit_amount=Decimal("100.01")),
                LineData(accounts["700"].id, credit_amount=Decimal("100.00")),
            ),
        )
        assert journal_service.create_entry(data).is_balanced

    def test_foreign_currency_balances_in_base(self, journal_service, accounts, fiscal_year_2024):
        data = EntryData(
            entry_date=date(2024, 3, 10),
            description="Sprzedaż eksportowa",
            lines=(
                LineData(
                    accounts["130"].id,
                    debit_amount=Decimal("100.00"),
                    currency="EUR",
                    exchange_rate=Decimal("4.30"),
                ),
                LineData(accounts["700"].id, credit_amount=Decimal("430.00")),
            ),
        )
        entry = journal_service.create_entry(data)
        assert entry.total_debit == Decimal("430.00")
        assert entry.lines[0].currency == "EUR"
        assert entry.lines[0].base_debit_amount == Decimal("430.00")
        assert entry.lines[1].currency == "PLN"

    def test_single_line(self, journal_service, accounts, fiscal_year_2024):
        data = EntryData(
            entry_date=date(2024, 3, 10),
            description="x",
            lines=(LineData(accounts["100"].id, debit_amount=Decimal("1")),),
        )
        with pytest.raises(InsufficientLinesError):
            journal_service.create_entry(data)

    @pytest.mark.parametrize(
        "bad_line, reason",
        [
            ({"debit_amount": Decimal("10"), "credit_amount": Decimal("10")}, "exactly one"),
            ({}, "exactly one"),
            ({"debit_amount": Decimal("-10")}, "negative"),
            ({"debit_amount": Decimal("10"), "exchange_rate": Decimal("0")}, "exchange rate"),
        ],
    )
    def test_invalid_line_shape(self, journal_service, accounts, fiscal_year_2024, bad_line, reason):
        data = EntryData(
            entry_date=date(2024, 3, 10),
            description="x",
            lines=(
                LineData(accounts["100"].id, **bad_line),
                LineData(accounts["700"].id, credit_amount=Decimal("10")),
            ),
        )
        with pytest.raises(InvalidLineError, match=reason) as exc_info:
            journal_service.create_entry(data)
        assert exc_info.value.line_number == 1

    def test_no_period(self, journal_service, entry_data, fiscal_year_2024):
        with pytest.raises(NoPeriodForDateError):
            journal_service.create_entry(entry_data(entry_date=date(2025, 2, 1)))

    def test_closed_period(self, journal_service, calendar_service, entry_data, fiscal_year_2024):
        calendar_service.close_period(_period_for(calendar_service, date(2024, 3, 10)).id)
        with pytest.raises(ClosedPeriodError) as exc_info:
            journal_service.create_entry(entry_data())
        assert exc_info.value.code == "CLOSED_PERIOD"

    def test_header_account_rejected(self, journal_service, entry_data, fiscal_year_2024):
        with pytest.raises(EntryValidationError) as exc_info:
            journal_service.create_entry(entry_data(debit="010"))
        assert exc_info.value.rule_codes == [RuleCode.ACCOUNT_NOT_POSTABLE]
        assert exc_info.value.kind == ErrorKind.VALIDATION_FAILURE

    def test_inactive_account_rejected(self, journal_service, entry_data, fiscal_year_2024):
        with pytest.raises(EntryValidationError) as exc_info:
            journal_service.create_entry(entry_data(debit="999"))
        assert exc_info.value.rule_codes == [RuleCode.ACCOUNT_INACTIVE]

    def test_cost_center_required(self, journal_service, accounts, fiscal_year_2024):
        lines = (
            LineData(accounts["402"].id, debit_amount=Decimal("10"), cost_center_id=uuid4()),
            LineData(accounts["201"].id, credit_amount=Decimal("10")),
        )
        entry = journal_service.create_entry(EntryData(date(2024, 3, 10), "Usługa", lines))
        assert entry.lines[0].cost_center_id is not None

    def test_audit_and_cache(self, make_entry, audit_sink, cache, org_id):
        entry = make_entry()
        record = audit_sink.records[-1]
        assert record.action.value == "entry_created"
        assert record.resource_id == str(entry.id)
        assert record.metadata["entry_number"] == "JE/2024/03/0001"
        assert f"journal_entries:{org_id}:*" in cache.invalidated_patterns


# =============================================================================
# Read
# =============================================================================


class TestQueries:

    def test_get_unknown(self, journal_service, fiscal_year_2024):
        with pytest.raises(EntryNotFoundError):
            journal_service.get_entry(uuid4())

    def test_list_filters(self, journal_service, make_entry):
        posted = make_entry(description="Faktura FV/1/2024")
        make_entry(entry_date=date(2024, 4, 5), description="Paragon")
        journal_service.post_entry(posted.id)

        assert [e.id for e in journal_service.list_entries(EntryFilter(status="POSTED"))] == [posted.id]
        assert len(journal_service.list_entries(EntryFilter(date_from=date(2024, 4, 1)))) == 1
        assert [e.id for e in journal_service.list_entries(EntryFilter(search="FV/1"))] == [posted.id]
        assert len(journal_service.list_entries(EntryFilter(limit=1))) == 1

    def test_list_is_newest_first(self, journal_service, make_entry):
        make_entry(entry_date=date(2024, 3, 1))
        make_entry(entry_date=date(2024, 5, 1))
        dates = [e.entry_date for e in journal_service.list_entries()]
        assert dates == [date(2024, 5, 1), date(2024, 3, 1)]

    def test_other_organization_cannot_read(self, session, make_entry, service_kwargs, test_actor_id):
        entry = make_entry()
        outsider = JournalEntryService(session, OrgContext(uuid4(), test_actor_id), **service_kwargs)
        with pytest.raises(EntryNotFoundError):
            outsider.get_entry(entry.id)


# =============================================================================
# Draft editing
# =============================================================================


class TestDraftEditing:

    def test_update_header(self, journal_service, make_entry):
        entry = make_entry()
        updated = journal_service.update_entry(
            entry.id, EntryUpdate(description="Nowy opis", reference="REF-1")
        )
        assert updated.description == "Nowy opis"
        assert updated.reference == "REF-1"

    def test_replace_lines(self, journal_service, make_entry, accounts):
        entry = make_entry()
        updated = journal_service.update_entry(
            entry.id,
            EntryUpdate(
                lines=(
                    LineData(accounts["401"].id, debit_amount=Decimal("100")),
                    LineData(accounts["221"].id, debit_amount=Decimal("23")),
                    LineData(accounts["201"].id, credit_amount=Decimal("123")),
                )
            ),
        )
        assert updated.line_count == 3
        assert updated.total_debit == Decimal("123")
        assert len(updated.lines) == 3

    def test_replace_with_unbalanced_lines(self, journal_service, make_entry, accounts):
        entry = make_entry()
        with pytest.raises(UnbalancedEntryError):
            journal_service.update_entry(
                entry.id,
                EntryUpdate(
                    lines=(
                        LineData(accounts["100"].id, debit_amount=Decimal("5")),
                        LineData(accounts["700"].id, credit_amount=Decimal("4")),
                    )
                ),
            )

    def test_move_to_other_period(self, journal_service, calendar_service, make_entry):
        entry = make_entry()
        updated = journal_service.update_entry(entry.id, EntryUpdate(entry_date=date(2024, 6, 3)))
        assert updated.period_id == _period_for(calendar_service, date(2024, 6, 3)).id

    def test_move_to_closed_period(self, journal_service, calendar_service, make_entry):
        entry = make_entry()
        calendar_service.close_period(_period_for(calendar_service, date(2024, 6, 3)).id)
        with pytest.raises(ClosedPeriodError):
            journal_service.update_entry(entry.id, EntryUpdate(entry_date=date(2024, 6, 3)))

    def test_only_drafts_are_editable(self, journal_service, posted_entry):
        with pytest.raises(EntryStateError):
            journal_service.update_entry(posted_entry.id, EntryUpdate(description="x"))

    def test_delete_draft(self, journal_service, make_entry):
        entry = make_entry()
        journal_service.delete_entry(entry.id)
        with pytest.raises(EntryNotFoundError):
            journal_service.get_entry(entry.id)

    def test_delete_posted_rejected(self, journal_service, posted_entry):
        with pytest.raises(EntryStateError) as exc_info:
            journal_service.delete_entry(posted_entry.id)
        assert exc_info.value.operation == "delete"

    def test_copy_entry(self, journal_service, posted_entry):
        copy = journal_service.copy_entry(posted_entry.id, date(2024, 4, 15))
        assert copy.id != posted_entry.id
        assert copy.status == JournalEntryStatus.DRAFT
        assert copy.entry_number == "JE/2024/04/0001"
        assert copy.total_debit == posted_entry.total_debit
        assert [line.account_id for line in copy.lines] == [line.account_id for line in posted_entry.lines]

    def test_copy_keeps_date_by_default(self, journal_service, make_entry):
        source = make_entry()
        assert journal_service.copy_entry(source.id).entry_date == source.entry_date


# =============================================================================
# Workflow and posting
# =============================================================================


class TestPosting:

    def test_post(self, journal_service, make_entry, deterministic_clock):
        entry = make_entry()
        result = journal_service.post_entry(entry.id)
        assert result.status == "POSTED"
        assert result.entry_number == entry.entry_number
        assert result.posted_at == deterministic_clock.now()
        assert result.warnings == ()
        assert entry.status == JournalEntryStatus.POSTED
        assert entry.posted_by_id is not None

    def test_writes_postings_and_balances(self, session, journal_service, make_entry, accounts, calendar_service):
        entry = make_entry("250.00")
        journal_service.post_entry(entry.id)
        second = make_entry("100.00")
        journal_service.post_entry(second.id)

        postings = session.execute(
            select(LedgerPosting).where(LedgerPosting.journal_entry_id == entry.id)
        ).scalars().all()
        assert len(postings) == 2
        assert {p.account_id for p in postings} == {accounts["100"].id, accounts["700"].id}

        period_id = _period_for(calendar_service, date(2024, 3, 10)).id
        cash = session.execute(
            select(AccountBalance).where(
                AccountBalance.account_id == accounts["100"].id,
                AccountBalance.period_id == period_id,
            )
        ).scalar_one()
        revenue = session.execute(
            select(AccountBalance).where(
                AccountBalance.account_id == accounts["700"].id,
                AccountBalance.period_id == period_id,
            )
        ).scalar_one()
        assert cash.debit_movement == Decimal("350.00")
        assert cash.closing_balance == Decimal("350.00")
        # Credit-normal account: balance is positive on the credit side
        assert revenue.credit_movement == Decimal("350.00")
        assert revenue.closing_balance == Decimal("350.00")

    def test_post_twice_is_conflict(self, journal_service, posted_entry):
        with pytest.raises(EntryAlreadyPostedError) as exc_info:
            journal_service.post_entry(posted_entry.id)
        assert exc_info.value.kind == ErrorKind.CONFLICT

    def test_post_into_closed_period(self, journal_service, calendar_service, make_entry):
        entry = make_entry()
        calendar_service.close_period(_period_for(calendar_service, entry.entry_date).id)
        with pytest.raises(ClosedPeriodError):
            journal_service.post_entry(entry.id)
        assert entry.status == JournalEntryStatus.DRAFT

    def test_post_into_soft_closed_period_warns(self, journal_service, calendar_service, make_entry):
        entry = make_entry()
        calendar_service.soft_close_period(_period_for(calendar_service, entry.entry_date).id)
        result = journal_service.post_entry(entry.id)
        assert result.status == "POSTED"
        assert [w.rule_code for w in result.warnings] == [RuleCode.PERIOD_SOFT_CLOSED]

    def test_approval_gate(self, journal_service, make_entry):
        entry = make_entry(requires_approval=True)
        with pytest.raises(ApprovalRequiredError):
            journal_service.post_entry(entry.id)
        journal_service.approve_entry(entry.id)
        assert journal_service.post_entry(entry.id).status == "POSTED"

    def test_bypass_approval(self, journal_service, make_entry):
        entry = make_entry(requires_approval=True)
        assert journal_service.post_entry(entry.id, bypass_approval=True).status == "POSTED"
        assert entry.approved_at is None

    def test_submit_then_post(self, journal_service, make_entry):
        entry = make_entry()
        assert journal_service.submit_entry(entry.id).status == JournalEntryStatus.PENDING
        with pytest.raises(EntryStateError):
            journal_service.submit_entry(entry.id)
        assert journal_service.post_entry(entry.id).status == "POSTED"

    def test_approve_posted_rejected(self, journal_service, posted_entry):
        with pytest.raises(EntryStateError):
            journal_service.approve_entry(posted_entry.id)

    def test_post_revalidates_against_current_accounts(self, session, journal_service, make_entry, accounts):
        entry = make_entry()
        accounts["700"].is_active = False
        session.flush()
        with pytest.raises(EntryValidationError) as exc_info:
            journal_service.post_entry(entry.id)
        assert exc_info.value.rule_codes == [RuleCode.ACCOUNT_INACTIVE]

    def test_validate_entry_stores_run(self, journal_service, make_entry):
        entry = make_entry()
        verdict = journal_service.validate_entry(entry.id, store_result=True)
        assert verdict.is_valid
        history = journal_service.validator.get_validation_history(entry.id)
        assert len(history) == 1
        assert history[0].can_post

    def test_post_logs_with_entry_context(self, journal_service, make_entry, captured_logs):
        entry = make_entry()
        journal_service.post_entry(entry.id)
        posted = [r for r in captured_logs() if r["message"] == "entry_posted"]
        assert len(posted) == 1
        assert posted[0]["entry_id"] == str(entry.id)
        assert posted[0]["entry_number"] == entry.entry_number

    def test_post_invalidates_balances_cache(self, journal_service, make_entry, cache, org_id):
        cache.set(f"balances:{org_id}:trial", {"stale": True})
        entry = make_entry()
        journal_service.post_entry(entry.id)
        assert f"balances:{org_id}:trial" not in cache


# =============================================================================
# Bulk operations
# =============================================================================


class TestBulkOperations:

    def test_bulk_post_reports_each_item(self, journal_service, make_entry, posted_entry):
        first = make_entry()
        second = make_entry()
        missing = uuid4()

        result = journal_service.bulk_post([first.id, posted_entry.id, second.id, missing])

        assert result.total_requested == 4
        assert result.success_count == 2
        assert result.failure_count == 2
        by_id = {r.entry_id: r for r in result.results}
        assert by_id[first.id].success
        assert by_id[first.id].entry_number == first.entry_number
        assert by_id[posted_entry.id].error_code == "ENTRY_ALREADY_POSTED"
        assert by_id[posted_entry.id].error_kind == "conflict"
        assert by_id[missing].error_code == "ENTRY_NOT_FOUND"
        assert second.status == JournalEntryStatus.POSTED

    def test_bulk_failure_does_not_roll_back_successes(self, journal_service, calendar_service, make_entry):
        good = make_entry()
        stuck = make_entry(entry_date=date(2024, 5, 10))
        calendar_service.close_period(_period_for(calendar_service, date(2024, 5, 10)).id)

        result = journal_service.bulk_post([good.id, stuck.id])

        assert result.success_count == 1
        assert result.results[1].error_code == "CLOSED_PERIOD"
        assert journal_service.get_entry(good.id).status == JournalEntryStatus.POSTED

    def test_bulk_delete(self, journal_service, make_entry, posted_entry):
        draft = make_entry()
        result = journal_service.bulk_delete([draft.id, posted_entry.id])
        assert result.success_count == 1
        assert result.results[0].entry_number == draft.entry_number
        assert result.results[1].error_code == "ENTRY_INVALID_STATE"


# =============================================================================
# Statistics
# =============================================================================


class TestStatistics:

    def test_counts_and_totals(self, journal_service, make_entry, entry_data):
        posted = make_entry("300.00")
        journal_service.post_entry(posted.id)
        make_entry("50.00", entry_date=date(2024, 6, 1))
        journal_service.create_entry(entry_data(entry_type="ADJUSTING"))

        stats = journal_service.get_statistics()

        assert stats.total_entries == 3
        assert stats.by_status == {"POSTED": 1, "DRAFT": 2}
        assert stats.by_type == {"STANDARD": 2, "ADJUSTING": 1}
        assert stats.posted_debit_total == Decimal("300.00")
        assert stats.posted_credit_total == Decimal("300.00")
        assert stats.last_entry_date == date(2024, 6, 1)
        assert stats.last_posted_at is not None

    def test_empty(self, journal_service, fiscal_year_2024):
        stats = journal_service.get_statistics()
        assert stats.total_entries == 0
        assert stats.posted_debit_total == Decimal("0")
        assert stats.last_entry_date is None
