"""
Entry validation -- pure rule evaluation for journal entry candidates.

Responsibility:
    Given an entry candidate, the registry's view of its accounts, the period
    its date falls into, and the organization's custom rules, produce a
    structured verdict.  Never touches persistence.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.  Called by
    EntryValidationService (which gathers the inputs) and JournalEntryService.

Fixed rules, evaluated in order, each independent:

    UNBALANCED             ERROR    |sum(base debit) - sum(base credit)| > tolerance
    ZERO_ENTRY             ERROR    both sums zero
    ACCOUNT_NOT_FOUND      ERROR    per line
    ACCOUNT_INACTIVE       ERROR    per line
    ACCOUNT_NOT_POSTABLE   ERROR    per line (header account)
    COST_CENTER_REQUIRED   ERROR    per line
    PERIOD_NOT_FOUND       ERROR
    PERIOD_CLOSED          ERROR    closed or locked; blocks posting
    PERIOD_SOFT_CLOSED     WARNING  posting still allowed
    EXCHANGE_RATE_SUSPECT  WARNING  foreign-currency line at rate 1

Custom rules follow.  ``is_valid`` means no failed ERROR result;
``can_post`` additionally requires the period not to be hard-closed.
"""

from __future__ import annotations

import operator
from collections.abc import Mapping, Sequence
from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import AccountInfo, EntryData, PeriodInfo


class Severity(str, Enum):
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


class RuleCode:
    UNBALANCED = "UNBALANCED"
    ZERO_ENTRY = "ZERO_ENTRY"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ACCOUNT_NOT_POSTABLE = "ACCOUNT_NOT_POSTABLE"
    COST_CENTER_REQUIRED = "COST_CENTER_REQUIRED"
    PERIOD_NOT_FOUND = "PERIOD_NOT_FOUND"
    PERIOD_CLOSED = "PERIOD_CLOSED"
    PERIOD_SOFT_CLOSED = "PERIOD_SOFT_CLOSED"
    EXCHANGE_RATE_SUSPECT = "EXCHANGE_RATE_SUSPECT"


@dataclass(frozen=True)
class CustomRule:
    """Organization rule as plain data (see ValidationRule model)."""

    rule_code: str
    rule_name: str
    severity: Severity
    conditions: Mapping[str, Any]
    error_message: str
    applies_to_entry_types: tuple[str, ...] | None = None

    def applies_to(self, entry_type: str) -> bool:
        return not self.applies_to_entry_types or entry_type in self.applies_to_entry_types


@dataclass(frozen=True)
class RuleResult:
    rule_code: str
    rule_name: str
    passed: bool
    severity: Severity
    message: str
    details: dict[str, Any] | None = None
    line_number: int | None = None
    account_code: str | None = None

    @property
    def is_blocking(self) -> bool:
        return not self.passed and self.severity == Severity.ERROR

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        if self.details:
            data["details"] = {k: str(v) if isinstance(v, Decimal) else v for k, v in self.details.items()}
        return data


@dataclass(frozen=True)
class BalanceCheck:
    total_debits: Decimal
    total_credits: Decimal
    difference: Decimal
    is_balanced: bool
    currency: str


@dataclass(frozen=True)
class ValidationSummary:
    total_rules: int
    passed: int
    errors: int
    warnings: int
    infos: int


@dataclass(frozen=True)
class ValidationVerdict:
    results: tuple[RuleResult, ...]
    balance: BalanceCheck
    period_hard_closed: bool

    @property
    def is_valid(self) -> bool:
        return not any(r.is_blocking for r in self.results)

    @property
    def can_post(self) -> bool:
        return self.is_valid and not self.period_hard_closed

    @property
    def errors(self) -> list[RuleResult]:
        return [r for r in self.results if r.is_blocking]

    @property
    def warnings(self) -> list[RuleResult]:
        return [r for r in self.results if not r.passed and r.severity == Severity.WARNING]

    @property
    def summary(self) -> ValidationSummary:
        failed = [r for r in self.results if not r.passed]
        return ValidationSummary(
            total_rules=len(self.results),
            passed=len(self.results) - len(failed),
            errors=sum(1 for r in failed if r.severity == Severity.ERROR),
            warnings=sum(1 for r in failed if r.severity == Severity.WARNING),
            infos=sum(1 for r in failed if r.severity == Severity.INFO),
        )

    def failed_codes(self) -> list[str]:
        return [r.rule_code for r in self.results if not r.passed]


# =============================================================================
# Balance
# =============================================================================


def check_balance(lines: Sequence, currency: str, tolerance: Decimal) -> BalanceCheck:
    """
    Base-currency balance of a set of lines.

    Contribution per line is ``debit * rate - credit * rate`` (rounded base
    amounts); the entry is balanced iff the absolute sum is within
    ``tolerance``.  The tolerance is absolute, whatever the entry size.
    ``difference`` is the magnitude of the imbalance, never negative.
    """
    total_debits = sum((line.base_debit for line in lines), ZERO)
    total_credits = sum((line.base_credit for line in lines), ZERO)
    difference = abs(total_debits - total_credits)
    return BalanceCheck(
        total_debits=total_debits,
        total_credits=total_credits,
        difference=difference,
        is_balanced=difference <= tolerance,
        currency=currency,
    )


# =============================================================================
# Custom rule conditions
# =============================================================================

_OPERATORS = {
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "eq": operator.eq,
    "ne": operator.ne,
}

_METRICS = ("total_amount", "line_count", "max_line_amount", "account_total")

_NAMED_RULES = ("large_amount", "vat_with_expense")

DEFAULT_BUSINESS_RULES: tuple[dict[str, Any], ...] = (
    {
        "rule_code": "BUS_VAT_WITH_EXPENSE",
        "rule_name": "VAT line expected with expense",
        "rule_type": "BUSINESS",
        "severity": Severity.WARNING,
        "conditions": {"rule": "vat_with_expense", "vat_account_prefix": "22"},
        "error_message": "Expense posted without an input VAT line",
    },
    {
        "rule_code": "BUS_LARGE_AMOUNT",
        "rule_name": "Large amount",
        "rule_type": "BUSINESS",
        "severity": Severity.WARNING,
        "conditions": {"rule": "large_amount", "threshold": 50000},
        "error_message": "Entry total exceeds the large amount threshold",
    },
)


def _threshold(conditions: Mapping[str, Any]) -> Decimal:
    try:
        return Decimal(str(conditions["threshold"]))
    except (KeyError, InvalidOperation) as exc:
        raise ValueError("a numeric 'threshold' is required") from exc


def validate_conditions(conditions: Mapping[str, Any]) -> None:
    """
    Reject condition payloads the evaluator cannot interpret.

    Raises:
        ValueError: With a human-readable reason.
    """
    if not isinstance(conditions, Mapping):
        raise ValueError("conditions must be an object")
    named = conditions.get("rule")
    if named is not None:
        if named not in _NAMED_RULES:
            raise ValueError(f"unknown rule '{named}'")
        if named == "large_amount":
            _threshold(conditions)
        return
    metric = conditions.get("metric")
    if metric not in _METRICS:
        raise ValueError(f"metric must be one of {', '.join(_METRICS)}")
    if conditions.get("operator") not in _OPERATORS:
        raise ValueError(f"operator must be one of {', '.join(_OPERATORS)}")
    _threshold(conditions)
    if metric == "account_total" and not conditions.get("account_prefix"):
        raise ValueError("account_total requires 'account_prefix'")


def _line_amount(line) -> Decimal:
    return line.base_debit + line.base_credit


def _metric_value(metric: str, conditions, entry: EntryData, accounts, balance) -> Decimal:
    if metric == "total_amount":
        return balance.total_debits
    if metric == "line_count":
        return Decimal(len(entry.lines))
    if metric == "max_line_amount":
        return max((_line_amount(line) for line in entry.lines), default=ZERO)
    prefix = str(conditions["account_prefix"])
    return sum(
        (
            _line_amount(line)
            for line in entry.lines
            if line.account_id in accounts and accounts[line.account_id].code.startswith(prefix)
        ),
        ZERO,
    )


def _evaluate_custom_rule(
    rule: CustomRule,
    entry: EntryData,
    accounts: Mapping[UUID, AccountInfo],
    balance: BalanceCheck,
) -> RuleResult:
    conditions = rule.conditions
    named = conditions.get("rule")
    details: dict[str, Any] = {}

    if named == "large_amount":
        threshold = _threshold(conditions)
        passed = balance.total_debits <= threshold
        details = {"total": balance.total_debits, "threshold": threshold}
    elif named == "vat_with_expense":
        vat_prefix = str(conditions.get("vat_account_prefix", "22"))
        expense_prefix = str(conditions.get("expense_account_prefix", "4"))
        codes = [
            (accounts[line.account_id].code, line)
            for line in entry.lines
            if line.account_id in accounts
        ]
        has_expense = any(code.startswith(expense_prefix) and line.debit_amount > 0 for code, line in codes)
        has_vat = any(code.startswith(vat_prefix) for code, _ in codes)
        passed = not has_expense or has_vat
        details = {"has_expense": has_expense, "has_vat": has_vat}
    else:
        # Generic comparison; the condition describes the violation
        metric = conditions["metric"]
        threshold = _threshold(conditions)
        value = _metric_value(metric, conditions, entry, accounts, balance)
        passed = not _OPERATORS[conditions["operator"]](value, threshold)
        details = {"metric": metric, "value": value, "threshold": threshold}

    return RuleResult(
        rule_code=rule.rule_code,
        rule_name=rule.rule_name,
        passed=passed,
        severity=rule.severity,
        message="OK" if passed else rule.error_message,
        details=details,
    )


# =============================================================================
# Evaluation
# =============================================================================


def _passed(code: str, name: str, severity: Severity = Severity.ERROR) -> RuleResult:
    return RuleResult(code, name, True, severity, "OK")


def _account_results(entry: EntryData, accounts: Mapping[UUID, AccountInfo]) -> list[RuleResult]:
    failures: dict[str, list[RuleResult]] = {
        RuleCode.ACCOUNT_NOT_FOUND: [],
        RuleCode.ACCOUNT_INACTIVE: [],
        RuleCode.ACCOUNT_NOT_POSTABLE: [],
        RuleCode.COST_CENTER_REQUIRED: [],
    }
    for number, line in enumerate(entry.lines, start=1):
        account = accounts.get(line.account_id)
        if account is None:
            failures[RuleCode.ACCOUNT_NOT_FOUND].append(
                RuleResult(
                    RuleCode.ACCOUNT_NOT_FOUND,
                    "Account exists",
                    False,
                    Severity.ERROR,
                    f"Account {line.account_id} does not exist",
                    details={"account_id": str(line.account_id)},
                    line_number=number,
                )
            )
            continue
        if not account.is_active:
            failures[RuleCode.ACCOUNT_INACTIVE].append(
                RuleResult(
                    RuleCode.ACCOUNT_INACTIVE,
                    "Account active",
                    False,
                    Severity.ERROR,
                    f"Account {account.code} is inactive",
                    line_number=number,
                    account_code=account.code,
                )
            )
        if not account.allows_posting:
            failures[RuleCode.ACCOUNT_NOT_POSTABLE].append(
                RuleResult(
                    RuleCode.ACCOUNT_NOT_POSTABLE,
                    "Account allows posting",
                    False,
                    Severity.ERROR,
                    f"Account {account.code} is a header account and does not allow posting",
                    line_number=number,
                    account_code=account.code,
                )
            )
        if account.requires_cost_center and line.cost_center_id is None:
            failures[RuleCode.COST_CENTER_REQUIRED].append(
                RuleResult(
                    RuleCode.COST_CENTER_REQUIRED,
                    "Cost center provided",
                    False,
                    Severity.ERROR,
                    f"Account {account.code} requires a cost center",
                    line_number=number,
                    account_code=account.code,
                )
            )

    names = {
        RuleCode.ACCOUNT_NOT_FOUND: "Account exists",
        RuleCode.ACCOUNT_INACTIVE: "Account active",
        RuleCode.ACCOUNT_NOT_POSTABLE: "Account allows posting",
        RuleCode.COST_CENTER_REQUIRED: "Cost center provided",
    }
    results: list[RuleResult] = []
    for code, failed in failures.items():
        results.extend(failed or [_passed(code, names[code])])
    return results


def _period_results(period: PeriodInfo | None) -> list[RuleResult]:
    if period is None:
        return [
            RuleResult(
                RuleCode.PERIOD_NOT_FOUND,
                "Fiscal period exists",
                False,
                Severity.ERROR,
                "No fiscal period covers the entry date",
            )
        ]
    results = [_passed(RuleCode.PERIOD_NOT_FOUND, "Fiscal period exists")]
    if period.is_hard_closed:
        results.append(
            RuleResult(
                RuleCode.PERIOD_CLOSED,
                "Fiscal period open",
                False,
                Severity.ERROR,
                f"Period {period.name} is {period.status}",
                details={"period_id": str(period.period_id), "status": period.status},
            )
        )
    else:
        results.append(_passed(RuleCode.PERIOD_CLOSED, "Fiscal period open"))
    if period.is_soft_closed:
        results.append(
            RuleResult(
                RuleCode.PERIOD_SOFT_CLOSED,
                "Fiscal period not soft-closed",
                False,
                Severity.WARNING,
                f"Period {period.name} is soft-closed; posting is allowed but flagged",
                details={"period_id": str(period.period_id)},
            )
        )
    else:
        results.append(_passed(RuleCode.PERIOD_SOFT_CLOSED, "Fiscal period not soft-closed", Severity.WARNING))
    return results


def _exchange_rate_results(entry: EntryData, base_currency: str) -> list[RuleResult]:
    suspects = [
        RuleResult(
            RuleCode.EXCHANGE_RATE_SUSPECT,
            "Exchange rate plausible",
            False,
            Severity.WARNING,
            f"Line in {line.currency} uses exchange rate 1",
            details={"currency": line.currency},
            line_number=number,
        )
        for number, line in enumerate(entry.lines, start=1)
        if line.currency not in (None, base_currency) and line.exchange_rate == Decimal("1")
    ]
    return suspects or [_passed(RuleCode.EXCHANGE_RATE_SUSPECT, "Exchange rate plausible", Severity.WARNING)]


def evaluate_entry(
    entry: EntryData,
    accounts: Mapping[UUID, AccountInfo],
    period: PeriodInfo | None,
    custom_rules: Sequence[CustomRule] = (),
    *,
    base_currency: str = "PLN",
    tolerance: Decimal = Decimal("0.01"),
) -> ValidationVerdict:
    """
    Evaluate every rule against an entry candidate.

    Args:
        entry: Candidate header and lines.
        accounts: Registry lookup result keyed by account id; missing keys
            mean the account does not exist.
        period: Period covering ``entry.entry_date``, or None.
        custom_rules: Active organization rules.
        base_currency: Organization reporting currency.
        tolerance: Absolute balance tolerance in base currency.

    Returns:
        ValidationVerdict with one result per rule (per line for line
        failures).
    """
    balance = check_balance(entry.lines, base_currency, tolerance)
    results: list[RuleResult] = []

    if balance.is_balanced:
        results.append(
            RuleResult(
                RuleCode.UNBALANCED,
                "Entry balanced",
                True,
                Severity.ERROR,
                "OK",
                details={"total_debits": balance.total_debits, "total_credits": balance.total_credits},
            )
        )
    else:
        results.append(
            RuleResult(
                RuleCode.UNBALANCED,
                "Entry balanced",
                False,
                Severity.ERROR,
                f"Entry is unbalanced: debits {balance.total_debits}, "
                f"credits {balance.total_credits}, difference {balance.difference}",
                details={
                    "total_debits": balance.total_debits,
                    "total_credits": balance.total_credits,
                    "difference": balance.difference,
                },
            )
        )

    if balance.total_debits == ZERO and balance.total_credits == ZERO:
        results.append(
            RuleResult(
                RuleCode.ZERO_ENTRY,
                "Non-zero entry",
                False,
                Severity.ERROR,
                "Entry has no amounts",
            )
        )
    else:
        results.append(_passed(RuleCode.ZERO_ENTRY, "Non-zero entry"))

    results.extend(_account_results(entry, accounts))
    results.extend(_period_results(period))
    results.extend(_exchange_rate_results(entry, base_currency))

    for rule in custom_rules:
        if rule.applies_to(entry.entry_type):
            results.append(_evaluate_custom_rule(rule, entry, accounts, balance))

    return ValidationVerdict(
        results=tuple(results),
        balance=balance,
        period_hard_closed=period is None or period.is_hard_closed,
    )
