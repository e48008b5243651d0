"""
EntryTemplateService -- reusable entry blueprints.

Responsibility:
    CRUD for entry templates (lines + declared variables), rendering a
    template into concrete entry lines, and generating DRAFT entries from a
    template through JournalEntryService.

Architecture position:
    Kernel > Services -- imperative shell.  RecurringScheduleService renders
    and generates through this service.

Invariants enforced:
    - A template has at least two lines.
    - VARIABLE and FORMULA lines name a side and only reference declared
      variables; formulas pass the restricted evaluator's checks.
    - ARCHIVED templates cannot be updated or generate entries.
"""

from collections.abc import Mapping, Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import func, or_, select

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.dtos import (
    AmountOverride,
    EntryData,
    LineData,
    TemplateLineData,
    TemplateVariableData,
)
from ledger_kernel.domain.formula import (
    VARIABLE_NAME,
    FormulaError,
    evaluate_formula,
    referenced_variables,
)
from ledger_kernel.exceptions import (
    TemplateNotFoundError,
    TemplateStateError,
    TemplateValidationError,
    TemplateVariableError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntry, JournalEntryType
from ledger_kernel.models.template import (
    EntryTemplate,
    EntryTemplateLine,
    LineSide,
    TemplateAmountType,
    TemplateStatus,
    TemplateVariable,
    VariableType,
)
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_service import JournalEntryService

logger = get_logger("services.template")

_RESOURCE = "entry_template"

_UPDATABLE_FIELDS = frozenset({"name", "description", "entry_description", "requires_approval"})


def render_text(text: str, variables: Mapping[str, Any]) -> str:
    """Substitute ``{name}`` placeholders; unknown placeholders stay as-is."""
    for name, value in variables.items():
        text = text.replace("{" + name + "}", str(value))
    return text


class EntryTemplateService(BaseService[EntryTemplate]):
    """
    Entry template store and renderer.

    Non-goals:
        - Does NOT commit.
        - Does NOT post generated entries; callers decide.
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

    # =========================================================================
    # Checks
    # =========================================================================

    def _check_definition(
        self,
        lines: Sequence[TemplateLineData],
        variables: Sequence[TemplateVariableData],
    ) -> None:
        if len(lines) < 2:
            raise TemplateValidationError("a template needs at least 2 lines")

        declared: set[str] = set()
        for variable in variables:
            if not VARIABLE_NAME.match(variable.name):
                raise TemplateVariableError(variable.name, "invalid variable name")
            if variable.name in declared:
                raise TemplateVariableError(variable.name, "declared twice")
            if variable.variable_type not in VariableType.__members__:
                raise TemplateVariableError(variable.name, f"unknown type {variable.variable_type}")
            declared.add(variable.name)

        for number, line in enumerate(lines, start=1):
            if line.amount_type not in TemplateAmountType.__members__:
                raise TemplateValidationError(f"line {number}: unknown amount type {line.amount_type}")
            amount_type = TemplateAmountType(line.amount_type)
            if amount_type == TemplateAmountType.FIXED:
                debit, credit = line.fixed_debit_amount, line.fixed_credit_amount
                if debit < ZERO or credit < ZERO or (debit > ZERO) == (credit > ZERO):
                    raise TemplateValidationError(
                        f"line {number}: a fixed line needs exactly one positive amount"
                    )
                continue

            if line.side is None:
                raise TemplateValidationError(f"line {number}: {amount_type.value} line needs a side")
            if line.side not in LineSide.__members__:
                raise TemplateValidationError(f"line {number}: unknown side {line.side}")

            if amount_type == TemplateAmountType.VARIABLE:
                if not line.variable_name:
                    raise TemplateValidationError(f"line {number}: variable name missing")
                names = {line.variable_name}
            else:
                if not line.formula:
                    raise TemplateValidationError(f"line {number}: formula missing")
                try:
                    names = referenced_variables(line.formula)
                except FormulaError as exc:
                    raise TemplateValidationError(f"line {number}: {exc}") from exc

            undeclared = sorted(names - declared)
            if undeclared:
                raise TemplateVariableError(undeclared[0], f"used on line {number} but not declared")

        account_ids = {line.account_id for line in lines}
        found = self._journal.validator.account_registry.lookup_accounts(
            self.organization_id, account_ids
        )
        missing = sorted(str(a) for a in account_ids if a not in found)
        if missing:
            raise TemplateValidationError(f"unknown accounts: {', '.join(missing)}")

    def _build_lines(self, lines: Sequence[TemplateLineData]) -> list[EntryTemplateLine]:
        return [
            EntryTemplateLine(
                line_number=number,
                account_id=line.account_id,
                amount_type=TemplateAmountType(line.amount_type),
                side=LineSide(line.side) if line.side else None,
                fixed_debit_amount=line.fixed_debit_amount,
                fixed_credit_amount=line.fixed_credit_amount,
                variable_name=line.variable_name,
                formula=line.formula,
                description=line.description,
                currency=line.currency,
                cost_center_id=line.cost_center_id,
                created_by_id=self.actor_id,
            )
            for number, line in enumerate(lines, start=1)
        ]

    def _build_variables(self, variables: Sequence[TemplateVariableData]) -> list[TemplateVariable]:
        return [
            TemplateVariable(
                name=variable.name,
                display_name=variable.display_name,
                variable_type=VariableType(variable.variable_type),
                is_required=variable.is_required,
                default_value=variable.default_value,
                sort_order=order,
                created_by_id=self.actor_id,
            )
            for order, variable in enumerate(variables)
        ]

    def _next_code(self) -> str:
        count = self.session.execute(
            select(func.count(EntryTemplate.id)).where(
                EntryTemplate.organization_id == self.organization_id
            )
        ).scalar_one()
        return f"TPL-{count + 1:03d}"

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_template(
        self,
        name: str,
        lines: Sequence[TemplateLineData],
        *,
        template_code: str | None = None,
        entry_description: str | None = None,
        description: str | None = None,
        entry_type: JournalEntryType | str = JournalEntryType.STANDARD,
        variables: Sequence[TemplateVariableData] = (),
        requires_approval: bool = False,
    ) -> EntryTemplate:
        self._check_definition(lines, variables)

        code = template_code or self._next_code()
        exists = self.session.execute(
            select(EntryTemplate.id).where(
                EntryTemplate.organization_id == self.organization_id,
                EntryTemplate.template_code == code,
            )
        ).first()
        if exists is not None:
            raise TemplateValidationError(f"template code {code} already exists")

        template = EntryTemplate(
            organization_id=self.organization_id,
            template_code=code,
            name=name,
            description=description,
            entry_type=JournalEntryType(entry_type),
            entry_description=entry_description or name,
            status=TemplateStatus.ACTIVE,
            requires_approval=requires_approval,
            created_by_id=self.actor_id,
        )
        template.lines = self._build_lines(lines)
        template.variables = self._build_variables(variables)
        self.session.add(template)
        self.session.flush()

        logger.info(
            "template_created",
            extra={"template_id": str(template.id), "template_code": code, "line_count": len(lines)},
        )
        self._record_audit(AuditAction.TEMPLATE_CREATED, _RESOURCE, template.id, template_code=code, name=name)
        self._invalidate_cache("templates")
        return template

    def get_template(self, template_id: UUID) -> EntryTemplate:
        template = self.session.execute(
            select(EntryTemplate).where(
                EntryTemplate.id == template_id,
                EntryTemplate.organization_id == self.organization_id,
            )
        ).scalar_one_or_none()
        if template is None:
            raise TemplateNotFoundError(str(template_id))
        return template

    def list_templates(
        self,
        status: TemplateStatus | str | None = None,
        search: str | None = None,
    ) -> list[EntryTemplate]:
        query = select(EntryTemplate).where(EntryTemplate.organization_id == self.organization_id)
        if status is not None:
            query = query.where(EntryTemplate.status == TemplateStatus(status))
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(EntryTemplate.name.ilike(pattern), EntryTemplate.template_code.ilike(pattern))
            )
        return list(self.session.execute(query.order_by(EntryTemplate.template_code)).scalars())

    def update_template(
        self,
        template_id: UUID,
        *,
        lines: Sequence[TemplateLineData] | None = None,
        variables: Sequence[TemplateVariableData] | None = None,
        **fields: Any,
    ) -> EntryTemplate:
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise TypeError(f"update_template() got unexpected fields: {sorted(unknown)}")

        template = self.get_template(template_id)
        if template.status != TemplateStatus.ACTIVE:
            raise TemplateStateError(str(template.id), template.status.value, "update")

        if lines is not None or variables is not None:
            new_lines = lines if lines is not None else [_line_data(line) for line in template.lines]
            new_variables = (
                variables if variables is not None else [_variable_data(v) for v in template.variables]
            )
            self._check_definition(new_lines, new_variables)
            template.lines.clear()
            template.variables.clear()
            self.session.flush()
            template.lines.extend(self._build_lines(new_lines))
            template.variables.extend(self._build_variables(new_variables))

        for name, value in fields.items():
            setattr(template, name, value)
        template.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "template_updated",
            extra={"template_id": str(template.id), "fields": sorted(fields), "lines_replaced": lines is not None},
        )
        self._record_audit(AuditAction.TEMPLATE_UPDATED, _RESOURCE, template.id, fields=sorted(fields))
        self._invalidate_cache("templates")
        return template

    def archive_template(self, template_id: UUID) -> EntryTemplate:
        template = self.get_template(template_id)
        if template.status == TemplateStatus.ARCHIVED:
            raise TemplateStateError(str(template.id), template.status.value, "archive")
        template.status = TemplateStatus.ARCHIVED
        template.updated_by_id = self.actor_id
        self.session.flush()

        logger.info("template_archived", extra={"template_id": str(template.id)})
        self._record_audit(AuditAction.TEMPLATE_ARCHIVED, _RESOURCE, template.id)
        self._invalidate_cache("templates")
        return template

    def restore_template(self, template_id: UUID) -> EntryTemplate:
        template = self.get_template(template_id)
        if template.status != TemplateStatus.ARCHIVED:
            raise TemplateStateError(str(template.id), template.status.value, "restore")
        template.status = TemplateStatus.ACTIVE
        template.updated_by_id = self.actor_id
        self.session.flush()

        logger.info("template_restored", extra={"template_id": str(template.id)})
        self._record_audit(AuditAction.TEMPLATE_UPDATED, _RESOURCE, template.id, status=TemplateStatus.ACTIVE)
        self._invalidate_cache("templates")
        return template

    def create_from_entry(
        self,
        entry_id: UUID,
        name: str,
        *,
        template_code: str | None = None,
        description: str | None = None,
    ) -> EntryTemplate:
        """Template with one FIXED line per line of an existing entry."""
        entry: JournalEntry = self._journal.get_entry(entry_id)
        return self.create_template(
            name,
            [
                TemplateLineData(
                    account_id=line.account_id,
                    amount_type=TemplateAmountType.FIXED.value,
                    fixed_debit_amount=line.debit_amount,
                    fixed_credit_amount=line.credit_amount,
                    description=line.description,
                    currency=line.currency,
                    cost_center_id=line.cost_center_id,
                )
                for line in entry.lines
            ],
            template_code=template_code,
            entry_description=entry.description,
            description=description or f"Created from entry {entry.entry_number}",
            entry_type=(
                JournalEntryType.STANDARD
                if entry.entry_type == JournalEntryType.REVERSING
                else entry.entry_type
            ),
            requires_approval=entry.requires_approval,
        )

    # =========================================================================
    # Rendering
    # =========================================================================

    @staticmethod
    def resolve_variables(
        template: EntryTemplate,
        values: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """
        Declared variables with caller values or defaults applied.

        NUMBER variables become Decimal.

        Raises:
            TemplateVariableError: Required value missing or not a number.
        """
        values = dict(values or {})
        resolved: dict[str, Any] = {}
        for variable in template.variables:
            raw = values.get(variable.name, variable.default_value)
            if raw is None or raw == "":
                if variable.is_required:
                    raise TemplateVariableError(variable.name, "required value missing")
                continue
            if variable.variable_type == VariableType.NUMBER:
                try:
                    resolved[variable.name] = Decimal(str(raw))
                except InvalidOperation as exc:
                    raise TemplateVariableError(variable.name, f"not a number: {raw!r}") from exc
            else:
                resolved[variable.name] = raw
        return resolved

    def render_lines(
        self,
        template: EntryTemplate,
        variables: Mapping[str, Any] | None = None,
        overrides: Sequence[AmountOverride] | None = None,
    ) -> list[LineData]:
        """
        Concrete entry lines for a template.

        Lines whose rendered amount is zero on both sides are dropped.

        Raises:
            TemplateVariableError: Missing or malformed variable value.
            TemplateValidationError: Formula error or negative amount.
        """
        resolved = self.resolve_variables(template, variables)
        numeric = {k: v for k, v in resolved.items() if isinstance(v, Decimal)}
        by_line = {o.line_number: o for o in overrides or ()}

        rendered: list[LineData] = []
        for line in template.lines:
            debit, credit = self._line_amounts(line, resolved, numeric)

            override = by_line.get(line.line_number)
            if override is not None:
                if override.debit_amount is not None:
                    debit = Decimal(str(override.debit_amount))
                if override.credit_amount is not None:
                    credit = Decimal(str(override.credit_amount))

            if debit < ZERO or credit < ZERO:
                raise TemplateValidationError(f"line {line.line_number} renders a negative amount")
            if debit == ZERO and credit == ZERO:
                continue

            rendered.append(
                LineData(
                    account_id=line.account_id,
                    debit_amount=debit,
                    credit_amount=credit,
                    currency=line.currency,
                    description=render_text(line.description, resolved) if line.description else None,
                    cost_center_id=line.cost_center_id,
                )
            )
        return rendered

    @staticmethod
    def _line_amounts(
        line: EntryTemplateLine,
        resolved: Mapping[str, Any],
        numeric: Mapping[str, Decimal],
    ) -> tuple[Decimal, Decimal]:
        if line.amount_type == TemplateAmountType.FIXED:
            return line.fixed_debit_amount, line.fixed_credit_amount

        if line.amount_type == TemplateAmountType.VARIABLE:
            if line.variable_name not in numeric:
                raise TemplateVariableError(line.variable_name, "no numeric value supplied")
            amount = numeric[line.variable_name]
        else:
            try:
                amount = evaluate_formula(line.formula, numeric)
            except FormulaError as exc:
                raise TemplateValidationError(f"line {line.line_number}: {exc}") from exc

        amount = round_money(amount)
        if line.side == LineSide.DEBIT:
            return amount, ZERO
        return ZERO, amount

    def generate_entry(
        self,
        template_id: UUID,
        entry_date: date,
        variables: Mapping[str, Any] | None = None,
        overrides: Sequence[AmountOverride] | None = None,
        *,
        description: str | None = None,
        reference: str | None = None,
        recurring_schedule_id: UUID | None = None,
    ) -> JournalEntry:
        """DRAFT entry rendered from an ACTIVE template."""
        template = self.get_template(template_id)
        if template.status != TemplateStatus.ACTIVE:
            raise TemplateStateError(str(template.id), template.status.value, "generate")

        resolved = self.resolve_variables(template, variables)
        lines = self.render_lines(template, variables, overrides)
        entry_type = template.entry_type
        if recurring_schedule_id is not None and entry_type == JournalEntryType.STANDARD:
            entry_type = JournalEntryType.RECURRING

        entry = self._journal.create_entry(
            EntryData(
                entry_date=entry_date,
                description=description or render_text(template.entry_description, resolved),
                lines=lines,
                entry_type=entry_type.value,
                reference=reference,
                requires_approval=template.requires_approval,
            ),
            template_id=template.id,
            recurring_schedule_id=recurring_schedule_id,
        )

        template.usage_count += 1
        template.last_used_at = self._clock.now()
        self.session.flush()

        logger.info(
            "entry_generated_from_template",
            extra={
                "template_id": str(template.id),
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
            },
        )
        return entry


def _line_data(line: EntryTemplateLine) -> TemplateLineData:
    return TemplateLineData(
        account_id=line.account_id,
        amount_type=line.amount_type.value,
        side=line.side.value if line.side else None,
        fixed_debit_amount=line.fixed_debit_amount,
        fixed_credit_amount=line.fixed_credit_amount,
        variable_name=line.variable_name,
        formula=line.formula,
        description=line.description,
        currency=line.currency,
        cost_center_id=line.cost_center_id,
    )


def _variable_data(variable: TemplateVariable) -> TemplateVariableData:
    return TemplateVariableData(
        name=variable.name,
        variable_type=variable.variable_type.value,
        display_name=variable.display_name,
        is_required=variable.is_required,
        default_value=variable.default_value,
    )
