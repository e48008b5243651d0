"""
EntryValidationService -- gathers validator inputs and manages custom rules.

Responsibility:
    Resolves the accounts (through the AccountRegistry port), the period
    and the organization's active custom rules for an entry candidate,
    then calls the pure ``evaluate_entry``.  Stores the verdict only when
    the caller opts in.  Also owns CRUD for the custom rules themselves.

Architecture position:
    Kernel > Services -- imperative shell around domain/validation.py.
    Used by JournalEntryService before create, update and post.
"""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.audit import AuditAction
from ledger_kernel.domain.dtos import EntryData, LineData
from ledger_kernel.domain.validation import (
    DEFAULT_BUSINESS_RULES,
    BalanceCheck,
    CustomRule,
    Severity,
    ValidationVerdict,
    check_balance,
    evaluate_entry,
    validate_conditions,
)
from ledger_kernel.exceptions import (
    DuplicateValidationRuleError,
    EntryNotFoundError,
    InvalidRuleConditionError,
    ValidationRuleNotFoundError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.journal import JournalEntry
from ledger_kernel.models.validation_rule import (
    ValidationRule,
    ValidationRuleType,
    ValidationRun,
)
from ledger_kernel.services.account_registry import AccountRegistry, SqlAccountRegistry
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.fiscal_calendar_service import (
    FiscalCalendarService,
    to_period_info,
)

logger = get_logger("services.validation")

_RULE_FIELDS = frozenset(
    {
        "rule_name",
        "description",
        "rule_type",
        "severity",
        "conditions",
        "error_message",
        "applies_to_entry_types",
        "is_active",
        "sort_order",
    }
)


def entry_data_from_model(entry: JournalEntry) -> EntryData:
    """Validator view of a persisted entry and its lines."""
    return EntryData(
        entry_date=entry.entry_date,
        description=entry.description,
        entry_type=entry.entry_type.value,
        reference=entry.reference,
        notes=entry.notes,
        source_document_id=entry.source_document_id,
        requires_approval=entry.requires_approval,
        lines=tuple(
            LineData(
                account_id=line.account_id,
                debit_amount=line.debit_amount,
                credit_amount=line.credit_amount,
                currency=line.currency,
                exchange_rate=line.exchange_rate,
                description=line.description,
                cost_center_id=line.cost_center_id,
            )
            for line in entry.lines
        ),
    )


class EntryValidationService(BaseService[ValidationRule]):
    """
    Entry validator facade.

    Guarantees:
        - ``validate_entry`` / ``validate_entry_data`` never mutate entries;
          with ``store_result=True`` they add one ValidationRun row.
        - Custom rules are evaluated in ``sort_order`` after the fixed rules.
    """

    def __init__(self, session, ctx, *, account_registry: AccountRegistry | None = None, **kwargs):
        super().__init__(session, ctx, **kwargs)
        self._registry = account_registry or SqlAccountRegistry(session)

    @property
    def account_registry(self) -> AccountRegistry:
        return self._registry

    # =========================================================================
    # Validation
    # =========================================================================

    def validate_entry(self, entry_id: UUID, store_result: bool = False) -> ValidationVerdict:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.id == entry_id,
                JournalEntry.organization_id == self.organization_id,
            )
        ).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return self._validate(entry_data_from_model(entry), store_result, entry_id=entry.id)

    def validate_entry_data(self, data: EntryData, store_result: bool = False) -> ValidationVerdict:
        return self._validate(data, store_result, entry_id=None)

    def check_balance(self, lines: Sequence[LineData]) -> BalanceCheck:
        return check_balance(
            lines,
            self._settings.base_currency,
            self._settings.balance_tolerance,
        )

    def _validate(self, data: EntryData, store_result: bool, entry_id: UUID | None) -> ValidationVerdict:
        accounts = self._registry.lookup_accounts(
            self.organization_id,
            [line.account_id for line in data.lines],
        )
        calendar = FiscalCalendarService(self.session, self.ctx, **self._collaborator_kwargs())
        period = calendar.find_period_for_date(data.entry_date)
        verdict = evaluate_entry(
            data,
            accounts,
            to_period_info(period) if period is not None else None,
            self.active_custom_rules(),
            base_currency=self._settings.base_currency,
            tolerance=self._settings.balance_tolerance,
        )

        logger.debug(
            "entry_validated",
            extra={
                "entry_id": str(entry_id) if entry_id else None,
                "is_valid": verdict.is_valid,
                "can_post": verdict.can_post,
                "failed_rules": verdict.failed_codes(),
            },
        )

        if store_result:
            self._store_run(verdict, entry_id)
        return verdict

    def _store_run(self, verdict: ValidationVerdict, entry_id: UUID | None) -> ValidationRun:
        summary = verdict.summary
        run = ValidationRun(
            organization_id=self.organization_id,
            journal_entry_id=entry_id,
            is_valid=verdict.is_valid,
            can_post=verdict.can_post,
            error_count=summary.errors,
            warning_count=summary.warnings,
            info_count=summary.infos,
            results=[r.to_dict() for r in verdict.results],
            validated_at=self._clock.now(),
            created_by_id=self.actor_id,
        )
        self.session.add(run)
        self.session.flush()
        return run

    def get_validation_history(self, entry_id: UUID, limit: int = 20) -> list[ValidationRun]:
        return list(
            self.session.execute(
                select(ValidationRun)
                .where(
                    ValidationRun.organization_id == self.organization_id,
                    ValidationRun.journal_entry_id == entry_id,
                )
                .order_by(ValidationRun.validated_at.desc())
                .limit(limit)
            ).scalars()
        )

    # =========================================================================
    # Custom rules
    # =========================================================================

    def active_custom_rules(self) -> list[CustomRule]:
        rows = self.session.execute(
            select(ValidationRule)
            .where(
                ValidationRule.organization_id == self.organization_id,
                ValidationRule.is_active.is_(True),
            )
            .order_by(ValidationRule.sort_order, ValidationRule.rule_code)
        ).scalars()
        return [
            CustomRule(
                rule_code=row.rule_code,
                rule_name=row.rule_name,
                severity=row.severity,
                conditions=row.conditions,
                error_message=row.error_message,
                applies_to_entry_types=tuple(row.applies_to_entry_types or ()) or None,
            )
            for row in rows
        ]

    @staticmethod
    def _check_conditions(rule_code: str, conditions: dict[str, Any]) -> None:
        try:
            validate_conditions(conditions)
        except ValueError as exc:
            raise InvalidRuleConditionError(rule_code, str(exc)) from exc

    def create_rule(
        self,
        rule_code: str,
        rule_name: str,
        conditions: dict[str, Any],
        error_message: str,
        *,
        severity: Severity | str = Severity.WARNING,
        rule_type: ValidationRuleType | str = ValidationRuleType.CUSTOM,
        description: str | None = None,
        applies_to_entry_types: list[str] | None = None,
        is_active: bool = True,
        sort_order: int = 0,
    ) -> ValidationRule:
        existing = self.session.execute(
            select(ValidationRule.id).where(
                ValidationRule.organization_id == self.organization_id,
                ValidationRule.rule_code == rule_code,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateValidationRuleError(rule_code)
        self._check_conditions(rule_code, conditions)

        rule = ValidationRule(
            organization_id=self.organization_id,
            rule_code=rule_code,
            rule_name=rule_name,
            description=description,
            rule_type=ValidationRuleType(rule_type),
            severity=Severity(severity),
            conditions=dict(conditions),
            error_message=error_message,
            applies_to_entry_types=list(applies_to_entry_types) if applies_to_entry_types else None,
            is_active=is_active,
            sort_order=sort_order,
            created_by_id=self.actor_id,
        )
        self.session.add(rule)
        self.session.flush()

        logger.info("validation_rule_created", extra={"rule_code": rule_code})
        self._record_audit(
            AuditAction.VALIDATION_RULE_CREATED,
            "validation_rule",
            rule.id,
            rule_code=rule_code,
        )
        return rule

    def get_rule(self, rule_id: UUID) -> ValidationRule:
        rule = self.session.execute(
            select(ValidationRule).where(
                ValidationRule.id == rule_id,
                ValidationRule.organization_id == self.organization_id,
            )
        ).scalar_one_or_none()
        if rule is None:
            raise ValidationRuleNotFoundError(str(rule_id))
        return rule

    def list_rules(self, active_only: bool = False) -> list[ValidationRule]:
        query = select(ValidationRule).where(ValidationRule.organization_id == self.organization_id)
        if active_only:
            query = query.where(ValidationRule.is_active.is_(True))
        return list(
            self.session.execute(
                query.order_by(ValidationRule.sort_order, ValidationRule.rule_code)
            ).scalars()
        )

    def update_rule(self, rule_id: UUID, **fields: Any) -> ValidationRule:
        unknown = set(fields) - _RULE_FIELDS
        if unknown:
            raise TypeError(f"Unknown validation rule fields: {', '.join(sorted(unknown))}")

        rule = self.get_rule(rule_id)
        if "conditions" in fields:
            self._check_conditions(rule.rule_code, fields["conditions"])
        if "severity" in fields:
            fields["severity"] = Severity(fields["severity"])
        if "rule_type" in fields:
            fields["rule_type"] = ValidationRuleType(fields["rule_type"])

        for name, value in fields.items():
            setattr(rule, name, value)
        rule.updated_by_id = self.actor_id
        self.session.flush()

        logger.info(
            "validation_rule_updated",
            extra={"rule_code": rule.rule_code, "fields": sorted(fields)},
        )
        self._record_audit(
            AuditAction.VALIDATION_RULE_UPDATED,
            "validation_rule",
            rule.id,
            fields=sorted(fields),
        )
        return rule

    def toggle_rule(self, rule_id: UUID, is_active: bool | None = None) -> ValidationRule:
        """Flip (or set) a rule's active flag."""
        rule = self.get_rule(rule_id)
        target = (not rule.is_active) if is_active is None else is_active
        return self.update_rule(rule_id, is_active=target)

    def delete_rule(self, rule_id: UUID) -> None:
        rule = self.get_rule(rule_id)
        rule_code = rule.rule_code
        self.session.delete(rule)
        self.session.flush()

        logger.info("validation_rule_deleted", extra={"rule_code": rule_code})
        self._record_audit(
            AuditAction.VALIDATION_RULE_DELETED,
            "validation_rule",
            rule_id,
            rule_code=rule_code,
        )

    def install_default_rules(self) -> list[ValidationRule]:
        """Create the built-in business rules the organization does not have yet."""
        existing = {rule.rule_code for rule in self.list_rules()}
        created = []
        for default in DEFAULT_BUSINESS_RULES:
            if default["rule_code"] in existing:
                continue
            created.append(
                self.create_rule(
                    default["rule_code"],
                    default["rule_name"],
                    default["conditions"],
                    default["error_message"],
                    severity=default["severity"],
                    rule_type=default["rule_type"],
                )
            )
        return created
