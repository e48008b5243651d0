"""
LedgerSettings -- immutable runtime configuration for the kernel.

Built by ``ledger_config.load_settings()`` from YAML; ``LedgerSettings()``
with no arguments gives the packaged defaults.
"""

from dataclasses import dataclass, field
from decimal import Decimal


POLISH_MONTH_NAMES: tuple[str, ...] = (
    "Styczeń",
    "Luty",
    "Marzec",
    "Kwiecień",
    "Maj",
    "Czerwiec",
    "Lipiec",
    "Sierpień",
    "Wrzesień",
    "Październik",
    "Listopad",
    "Grudzień",
)

DEFAULT_ENTRY_PREFIXES: dict[str, str] = {
    "STANDARD": "JE",
    "ADJUSTING": "AJ",
    "CLOSING": "CL",
    "OPENING": "OB",
    "REVERSING": "RV",
    "RECURRING": "RC",
}

DEFAULT_CACHE_PREFIXES: dict[str, str] = {
    "journal_entries": "journal_entries",
    "balances": "balances",
    "reports": "reports",
    "fiscal_years": "fiscal_years",
    "reversals": "reversals",
    "recurring_schedules": "recurring_schedules",
    "templates": "entry_templates",
}


@dataclass(frozen=True)
class LedgerSettings:
    """Kernel configuration values."""

    base_currency: str = "PLN"
    # Absolute tolerance in base currency, not scaled by entry size
    balance_tolerance: Decimal = Decimal("0.01")
    min_entry_lines: int = 2
    entry_number_padding: int = 4
    entry_prefixes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_ENTRY_PREFIXES)
    )
    cache_prefixes: dict[str, str] = field(
        default_factory=lambda: dict(DEFAULT_CACHE_PREFIXES)
    )
    max_periods_per_year: int = 12
    month_names: tuple[str, ...] = POLISH_MONTH_NAMES
    default_max_retries: int = 3
    max_generated_occurrences: int = 1000
    holiday_adjustment_attempts: int = 10
    # Missed occurrences generated by one backfill call
    max_missed_backfill: int = 100
    default_country_code: str = "PL"

    def prefix_for(self, entry_type: str) -> str:
        return self.entry_prefixes.get(entry_type, "JE")

    def cache_prefix(self, name: str) -> str:
        return self.cache_prefixes.get(name, name)
