"""
Tests for EntryValidationService.

Covers:
- Validation of stored entries and of unsaved candidates
- Stored validation runs (history)
- Organization custom rules: create, update, toggle, delete, defaults
- Custom rule effects on entry creation and posting
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import EntryData, LineData
from ledger_kernel.domain.validation import RuleCode, Severity
from ledger_kernel.exceptions import (
    DuplicateValidationRuleError,
    EntryNotFoundError,
    EntryValidationError,
    InvalidRuleConditionError,
    ValidationRuleNotFoundError,
)
from ledger_kernel.services.validation_service import EntryValidationService

LARGE_SALE = {"metric": "total_amount", "operator": "gt", "threshold": 10000}


@pytest.fixture
def validation_service(session, ctx, service_kwargs):
    return EntryValidationService(session, ctx, **service_kwargs)


# =============================================================================
# Validation
# =============================================================================


class TestValidate:

    def test_candidate_without_saving(self, validation_service, entry_data, fiscal_year_2024):
        verdict = validation_service.validate_entry_data(entry_data())
        assert verdict.is_valid
        assert verdict.can_post
        assert verdict.balance.total_debits == Decimal("1000.00")

    def test_candidate_in_closed_period(self, validation_service, calendar_service, entry_data, fiscal_year_2024):
        calendar_service.close_period(calendar_service.find_period_for_date(date(2024, 3, 10)).id)
        verdict = validation_service.validate_entry_data(entry_data())
        assert not verdict.can_post
        assert RuleCode.PERIOD_CLOSED in verdict.failed_codes()

    def test_candidate_without_period(self, validation_service, entry_data, fiscal_year_2024):
        verdict = validation_service.validate_entry_data(entry_data(entry_date=date(2023, 12, 31)))
        assert verdict.failed_codes() == [RuleCode.PERIOD_NOT_FOUND]

    def test_unknown_account(self, validation_service, accounts, fiscal_year_2024):
        data = EntryData(
            entry_date=date(2024, 3, 10),
            description="x",
            lines=(
                LineData(uuid4(), debit_amount=Decimal("10")),
                LineData(accounts["700"].id, credit_amount=Decimal("10")),
            ),
        )
        verdict = validation_service.validate_entry_data(data)
        assert verdict.failed_codes() == [RuleCode.ACCOUNT_NOT_FOUND]

    def test_stored_entry_and_history(self, validation_service, make_entry):
        entry = make_entry()
        validation_service.validate_entry(entry.id)
        assert validation_service.get_validation_history(entry.id) == []

        validation_service.validate_entry(entry.id, store_result=True)
        history = validation_service.get_validation_history(entry.id)
        assert len(history) == 1
        assert history[0].is_valid
        assert history[0].error_count == 0
        assert any(r["rule_code"] == RuleCode.UNBALANCED for r in history[0].results)

    def test_unknown_entry(self, validation_service, fiscal_year_2024):
        with pytest.raises(EntryNotFoundError):
            validation_service.validate_entry(uuid4())

    def test_check_balance_uses_settings(self, validation_service, accounts):
        lines = [
            LineData(accounts["100"].id, debit_amount=Decimal("10.02")),
            LineData(accounts["700"].id, credit_amount=Decimal("10.00")),
        ]
        result = validation_service.check_balance(lines)
        assert not result.is_balanced
        assert result.currency == "PLN"


# =============================================================================
# Custom rules
# =============================================================================


class TestCustomRuleManagement:

    def test_create_and_list(self, validation_service, audit_sink):
        rule = validation_service.create_rule("LARGE_SALE", "Duża sprzedaż", LARGE_SALE, "Kwota powyżej 10 000 zł")
        assert rule.severity == Severity.WARNING
        assert rule.is_active
        assert [r.rule_code for r in validation_service.list_rules()] == ["LARGE_SALE"]
        assert audit_sink.actions()[-1] == "validation_rule_created"

    def test_duplicate_code(self, validation_service):
        validation_service.create_rule("LARGE_SALE", "x", LARGE_SALE, "x")
        with pytest.raises(DuplicateValidationRuleError):
            validation_service.create_rule("LARGE_SALE", "y", LARGE_SALE, "y")

    def test_invalid_conditions(self, validation_service):
        with pytest.raises(InvalidRuleConditionError) as exc_info:
            validation_service.create_rule("BAD", "Bad", {"metric": "colour"}, "x")
        assert exc_info.value.rule_code == "BAD"

    def test_update(self, validation_service):
        rule = validation_service.create_rule("LARGE_SALE", "x", LARGE_SALE, "x")
        updated = validation_service.update_rule(rule.id, severity="ERROR", rule_name="Limit")
        assert updated.severity == Severity.ERROR
        assert updated.rule_name == "Limit"

    def test_update_with_invalid_conditions(self, validation_service):
        rule = validation_service.create_rule("LARGE_SALE", "x", LARGE_SALE, "x")
        with pytest.raises(InvalidRuleConditionError):
            validation_service.update_rule(rule.id, conditions={"metric": "total_amount"})

    def test_update_unknown_field(self, validation_service):
        rule = validation_service.create_rule("LARGE_SALE", "x", LARGE_SALE, "x")
        with pytest.raises(TypeError):
            validation_service.update_rule(rule.id, organization_id=uuid4())

    def test_toggle(self, validation_service):
        rule = validation_service.create_rule("LARGE_SALE", "x", LARGE_SALE, "x")
        assert not validation_service.toggle_rule(rule.id).is_active
        assert validation_service.list_rules(active_only=True) == []
        assert validation_service.toggle_rule(rule.id, is_active=True).is_active

    def test_delete(self, validation_service):
        rule = validation_service.create_rule("LARGE_SALE", "x", LARGE_SALE, "x")
        validation_service.delete_rule(rule.id)
        with pytest.raises(ValidationRuleNotFoundError):
            validation_service.get_rule(rule.id)

    def test_install_defaults_is_idempotent(self, validation_service):
        created = validation_service.install_default_rules()
        assert {r.rule_code for r in created} == {"BUS_VAT_WITH_EXPENSE", "BUS_LARGE_AMOUNT"}
        assert validation_service.install_default_rules() == []
        assert len(validation_service.list_rules()) == 2


class TestCustomRuleEffects:

    def test_warning_rule_surfaces_on_post(self, validation_service, journal_service, make_entry):
        validation_service.create_rule("LARGE_SALE", "Duża sprzedaż", LARGE_SALE, "Kwota powyżej limitu")
        entry = make_entry("20000.00")
        result = journal_service.post_entry(entry.id)
        assert [w.rule_code for w in result.warnings] == ["LARGE_SALE"]

    def test_error_rule_blocks_creation(self, validation_service, journal_service, entry_data, fiscal_year_2024):
        validation_service.create_rule(
            "LARGE_SALE", "Limit", LARGE_SALE, "Kwota powyżej limitu", severity=Severity.ERROR
        )
        with pytest.raises(EntryValidationError) as exc_info:
            journal_service.create_entry(entry_data(amount="20000.00"))
        assert exc_info.value.rule_codes == ["LARGE_SALE"]

    def test_inactive_rule_ignored(self, validation_service, journal_service, entry_data, fiscal_year_2024):
        validation_service.create_rule(
            "LARGE_SALE", "Limit", LARGE_SALE, "x", severity=Severity.ERROR, is_active=False
        )
        assert journal_service.create_entry(entry_data(amount="20000.00")) is not None

    def test_entry_type_scope(self, validation_service, journal_service, entry_data, fiscal_year_2024):
        validation_service.create_rule(
            "ADJ_LIMIT",
            "Limit korekt",
            LARGE_SALE,
            "x",
            severity=Severity.ERROR,
            applies_to_entry_types=["ADJUSTING"],
        )
        journal_service.create_entry(entry_data(amount="20000.00"))
        with pytest.raises(EntryValidationError):
            journal_service.create_entry(entry_data(amount="20000.00", entry_type="ADJUSTING"))

    def test_vat_rule_warns_on_expense_without_vat(self, validation_service, journal_service, entry_data, fiscal_year_2024):
        validation_service.install_default_rules()
        entry = journal_service.create_entry(entry_data(debit="401", credit="201", amount="100.00"))
        result = journal_service.post_entry(entry.id)
        assert [w.rule_code for w in result.warnings] == ["BUS_VAT_WITH_EXPENSE"]
