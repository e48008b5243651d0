"""
Tests for EntryTemplateService.

Covers:
- Template definition checks (line count, sides, declared variables, accounts)
- FIXED, VARIABLE and FORMULA line rendering, amount overrides
- Archive / restore lifecycle
- Templates built from existing entries
- DRAFT entry generation and usage tracking
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_kernel.domain.dtos import AmountOverride, TemplateLineData, TemplateVariableData
from ledger_kernel.exceptions import (
    TemplateNotFoundError,
    TemplateStateError,
    TemplateValidationError,
    TemplateVariableError,
)
from ledger_kernel.models.journal import JournalEntryStatus, JournalEntryType
from ledger_kernel.models.template import TemplateAmountType, TemplateStatus
from ledger_kernel.services.template_service import render_text


@pytest.fixture
def purchase_invoice(template_service, accounts):
    """Purchase invoice: net cost, 23% VAT, gross payable."""
    return template_service.create_template(
        "Faktura zakupowa",
        [
            TemplateLineData(accounts["401"].id, "VARIABLE", side="DEBIT", variable_name="net"),
            TemplateLineData(accounts["221"].id, "FORMULA", side="DEBIT", formula="{net} * 0.23"),
            TemplateLineData(
                accounts["201"].id,
                "FORMULA",
                side="CREDIT",
                formula="round({net} * 1.23, 2)",
                description="Dostawca {invoice}",
            ),
        ],
        template_code="FZ",
        entry_description="Faktura {invoice}",
        variables=[
            TemplateVariableData("net", display_name="Kwota netto"),
            TemplateVariableData("invoice", "STRING", is_required=False, default_value="bez numeru"),
        ],
    )


def _fixed_pair(accounts, amount="250.00"):
    return [
        TemplateLineData(accounts["401"].id, fixed_debit_amount=amount),
        TemplateLineData(accounts["130"].id, fixed_credit_amount=amount),
    ]


# =============================================================================
# Definition checks
# =============================================================================


class TestCreateTemplate:

    def test_create(self, purchase_invoice, audit_sink):
        assert purchase_invoice.template_code == "FZ"
        assert purchase_invoice.status == TemplateStatus.ACTIVE
        assert [l.line_number for l in purchase_invoice.lines] == [1, 2, 3]
        assert [v.name for v in purchase_invoice.variables] == ["net", "invoice"]
        assert purchase_invoice.usage_count == 0
        assert "template_created" in audit_sink.actions()

    def test_generated_codes(self, template_service, accounts):
        first = template_service.create_template("Najem", _fixed_pair(accounts))
        second = template_service.create_template("Leasing", _fixed_pair(accounts))
        assert (first.template_code, second.template_code) == ("TPL-001", "TPL-002")

    def test_entry_description_defaults_to_name(self, template_service, accounts):
        template = template_service.create_template("Najem", _fixed_pair(accounts))
        assert template.entry_description == "Najem"

    def test_duplicate_code(self, template_service, accounts):
        template_service.create_template("Najem", _fixed_pair(accounts), template_code="NAJ")
        with pytest.raises(TemplateValidationError):
            template_service.create_template("Najem 2", _fixed_pair(accounts), template_code="NAJ")

    def test_single_line_rejected(self, template_service, accounts):
        with pytest.raises(TemplateValidationError):
            template_service.create_template("x", _fixed_pair(accounts)[:1])

    @pytest.mark.parametrize(
        "line_kwargs",
        [
            {"fixed_debit_amount": "10", "fixed_credit_amount": "10"},
            {},
            {"fixed_debit_amount": "-10"},
            {"amount_type": "VARIABLE", "variable_name": "net"},
            {"amount_type": "VARIABLE", "side": "LEFT", "variable_name": "net"},
            {"amount_type": "FORMULA", "side": "DEBIT"},
            {"amount_type": "FORMULA", "side": "DEBIT", "formula": "net.real"},
            {"amount_type": "PERCENT", "side": "DEBIT"},
        ],
    )
    def test_malformed_lines(self, template_service, accounts, line_kwargs):
        lines = [
            TemplateLineData(accounts["401"].id, **line_kwargs),
            TemplateLineData(accounts["201"].id, fixed_credit_amount="10"),
        ]
        with pytest.raises(TemplateValidationError):
            template_service.create_template("x", lines, variables=[TemplateVariableData("net")])

    def test_undeclared_variable(self, template_service, accounts):
        lines = [
            TemplateLineData(accounts["401"].id, "FORMULA", side="DEBIT", formula="{net} * 2"),
            TemplateLineData(accounts["201"].id, "VARIABLE", side="CREDIT", variable_name="net"),
        ]
        with pytest.raises(TemplateVariableError) as exc_info:
            template_service.create_template("x", lines)
        assert exc_info.value.variable_name == "net"

    @pytest.mark.parametrize(
        "variables",
        [
            [TemplateVariableData("1net")],
            [TemplateVariableData("net"), TemplateVariableData("net")],
            [TemplateVariableData("net", "MONEY")],
        ],
    )
    def test_bad_variable_declarations(self, template_service, accounts, variables):
        with pytest.raises(TemplateVariableError):
            template_service.create_template("x", _fixed_pair(accounts), variables=variables)

    def test_unknown_account(self, template_service, accounts):
        lines = [
            TemplateLineData(uuid4(), fixed_debit_amount="10"),
            TemplateLineData(accounts["201"].id, fixed_credit_amount="10"),
        ]
        with pytest.raises(TemplateValidationError):
            template_service.create_template("x", lines)


# =============================================================================
# Rendering
# =============================================================================


class TestRenderLines:

    def test_variable_and_formula_lines(self, template_service, purchase_invoice):
        lines = template_service.render_lines(purchase_invoice, {"net": "1000", "invoice": "FV/7"})
        assert [(l.debit_amount, l.credit_amount) for l in lines] == [
            (Decimal("1000.00"), Decimal("0")),
            (Decimal("230.00"), Decimal("0")),
            (Decimal("0"), Decimal("1230.00")),
        ]
        assert lines[2].description == "Dostawca FV/7"

    def test_amounts_rounded_to_grosz(self, template_service, purchase_invoice):
        lines = template_service.render_lines(purchase_invoice, {"net": "99.99"})
        assert lines[1].debit_amount == Decimal("23.00")
        assert lines[2].credit_amount == Decimal("122.99")

    def test_default_used_for_optional_variable(self, template_service, purchase_invoice):
        lines = template_service.render_lines(purchase_invoice, {"net": "10"})
        assert lines[2].description == "Dostawca bez numeru"

    def test_missing_required_variable(self, template_service, purchase_invoice):
        with pytest.raises(TemplateVariableError) as exc_info:
            template_service.render_lines(purchase_invoice, {})
        assert exc_info.value.variable_name == "net"

    def test_non_numeric_value(self, template_service, purchase_invoice):
        with pytest.raises(TemplateVariableError):
            template_service.render_lines(purchase_invoice, {"net": "dużo"})

    def test_zero_lines_dropped(self, template_service, purchase_invoice):
        lines = template_service.render_lines(
            purchase_invoice, {"net": "100"}, overrides=[AmountOverride(2, debit_amount=Decimal("0"))]
        )
        assert len(lines) == 2

    def test_override_replaces_rendered_amount(self, template_service, purchase_invoice):
        lines = template_service.render_lines(
            purchase_invoice,
            {"net": "100"},
            overrides=[AmountOverride(3, credit_amount=Decimal("130.00"))],
        )
        assert lines[2].credit_amount == Decimal("130.00")

    def test_negative_amount_rejected(self, template_service, purchase_invoice):
        with pytest.raises(TemplateValidationError):
            template_service.render_lines(purchase_invoice, {"net": "-100"})

    def test_render_text_leaves_unknown_placeholders(self):
        assert render_text("Faktura {invoice} {month}", {"invoice": "FV/1"}) == "Faktura FV/1 {month}"


# =============================================================================
# Lifecycle
# =============================================================================


class TestTemplateLifecycle:

    def test_update_fields(self, template_service, purchase_invoice):
        updated = template_service.update_template(purchase_invoice.id, name="Zakup", requires_approval=True)
        assert updated.name == "Zakup"
        assert updated.requires_approval

    def test_update_unknown_field(self, template_service, purchase_invoice):
        with pytest.raises(TypeError):
            template_service.update_template(purchase_invoice.id, template_code="X")

    def test_replace_lines_keeps_variables(self, template_service, purchase_invoice, accounts):
        lines = [
            TemplateLineData(accounts["401"].id, "VARIABLE", side="DEBIT", variable_name="net"),
            TemplateLineData(accounts["201"].id, "VARIABLE", side="CREDIT", variable_name="net"),
        ]
        updated = template_service.update_template(purchase_invoice.id, lines=lines)
        assert len(updated.lines) == 2
        assert [v.name for v in updated.variables] == ["net", "invoice"]

    def test_archive_and_restore(self, template_service, purchase_invoice):
        template_service.archive_template(purchase_invoice.id)
        assert template_service.list_templates(status="ACTIVE") == []
        with pytest.raises(TemplateStateError):
            template_service.update_template(purchase_invoice.id, name="x")
        with pytest.raises(TemplateStateError):
            template_service.archive_template(purchase_invoice.id)

        restored = template_service.restore_template(purchase_invoice.id)
        assert restored.status == TemplateStatus.ACTIVE

    def test_restore_active(self, template_service, purchase_invoice):
        with pytest.raises(TemplateStateError):
            template_service.restore_template(purchase_invoice.id)

    def test_search(self, template_service, purchase_invoice, accounts):
        template_service.create_template("Najem biura", _fixed_pair(accounts))
        assert [t.name for t in template_service.list_templates(search="najem")] == ["Najem biura"]

    def test_not_found(self, template_service):
        with pytest.raises(TemplateNotFoundError):
            template_service.get_template(uuid4())


class TestCreateFromEntry:

    def test_copies_lines_as_fixed(self, template_service, posted_entry):
        template = template_service.create_from_entry(posted_entry.id, "Sprzedaż")
        assert template.entry_description == posted_entry.description
        assert template.description == "Created from entry JE/2024/03/0001"
        assert all(l.amount_type == TemplateAmountType.FIXED for l in template.lines)
        assert [(l.fixed_debit_amount, l.fixed_credit_amount) for l in template.lines] == [
            (l.debit_amount, l.credit_amount) for l in posted_entry.lines
        ]

    def test_reversing_entry_becomes_standard(self, template_service, reversal_service, posted_entry):
        reversing = reversal_service.reverse_entry(posted_entry.id, date(2024, 3, 20), "x")
        template = template_service.create_from_entry(reversing.id, "Storno")
        assert template.entry_type == JournalEntryType.STANDARD


# =============================================================================
# Generation
# =============================================================================


class TestGenerateEntry:

    def test_generates_draft(self, template_service, purchase_invoice, fiscal_year_2024, deterministic_clock):
        entry = template_service.generate_entry(
            purchase_invoice.id, date(2024, 3, 12), {"net": "1000", "invoice": "FV/12/2024"}
        )
        assert entry.status == JournalEntryStatus.DRAFT
        assert entry.description == "Faktura FV/12/2024"
        assert entry.template_id == purchase_invoice.id
        assert entry.entry_type == JournalEntryType.STANDARD
        assert entry.total_debit == Decimal("1230.00")
        assert purchase_invoice.usage_count == 1
        assert purchase_invoice.last_used_at == deterministic_clock.now()

    def test_generated_entry_posts(self, template_service, journal_service, purchase_invoice, fiscal_year_2024):
        entry = template_service.generate_entry(purchase_invoice.id, date(2024, 3, 12), {"net": "10"})
        result = journal_service.post_entry(entry.id)
        assert result.status == "POSTED"

    def test_description_override(self, template_service, purchase_invoice, fiscal_year_2024):
        entry = template_service.generate_entry(
            purchase_invoice.id, date(2024, 3, 12), {"net": "10"}, description="Ręczny opis"
        )
        assert entry.description == "Ręczny opis"

    def test_archived_template_cannot_generate(self, template_service, purchase_invoice, fiscal_year_2024):
        template_service.archive_template(purchase_invoice.id)
        with pytest.raises(TemplateStateError):
            template_service.generate_entry(purchase_invoice.id, date(2024, 3, 12), {"net": "10"})
