"""
YAML loading for ledger settings.

Responsibility:
    Reads a settings file, merges it over the packaged ``defaults.yaml``,
    and builds a frozen ``LedgerSettings``.  Nothing else in the project
    reads configuration files.

Architecture position:
    Configuration.  Imports ``ledger_kernel.domain.settings`` only; the
    kernel never imports from ``ledger_config``.

Invariants enforced:
    - Every value passes through ``LedgerSettings`` so a loaded config is
      indistinguishable from one built in code.
    - ``balance_tolerance`` is parsed as Decimal from its string form.
    - Unknown top-level keys are rejected.

Failure modes:
    - ``FileNotFoundError`` if the requested file does not exist.
    - ``yaml.YAMLError`` on malformed YAML.
    - ``ValueError`` on unknown keys or values of the wrong shape.
"""

from __future__ import annotations

import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ledger_kernel.domain.settings import LedgerSettings

CONFIG_PATH_ENV = "LEDGER_CONFIG_PATH"

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_TOP_LEVEL_KEYS = frozenset({
    "base_currency",
    "balance_tolerance",
    "min_entry_lines",
    "entry_number_padding",
    "entry_prefixes",
    "cache_prefixes",
    "fiscal_calendar",
    "recurring",
})

_FISCAL_KEYS = frozenset({"max_periods_per_year", "month_names"})

_RECURRING_KEYS = frozenset({
    "default_max_retries",
    "max_generated_occurrences",
    "holiday_adjustment_attempts",
    "max_missed_backfill",
    "default_country_code",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file.

    Returns:
        The parsed mapping, ``{}`` for an empty file.
    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def _check_keys(section: str, data: dict[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"Unknown keys in {section}: {', '.join(unknown)}")


def _parse_decimal(value: Any) -> Decimal:
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"Cannot parse decimal from {value!r}") from exc


def parse_settings(data: dict[str, Any]) -> LedgerSettings:
    """
    Build ``LedgerSettings`` from a merged configuration mapping.

    Raises:
        ValueError: on unknown keys, a non-positive tolerance, or a month
            name list whose length differs from ``max_periods_per_year``.
    """
    if not isinstance(data, dict):
        raise ValueError("Configuration root must be a mapping")
    _check_keys("root", data, _TOP_LEVEL_KEYS)
    fiscal = data.get("fiscal_calendar") or {}
    recurring = data.get("recurring") or {}
    _check_keys("fiscal_calendar", fiscal, _FISCAL_KEYS)
    _check_keys("recurring", recurring, _RECURRING_KEYS)

    defaults = LedgerSettings()
    tolerance = _parse_decimal(data.get("balance_tolerance", defaults.balance_tolerance))
    if tolerance < 0:
        raise ValueError("balance_tolerance must not be negative")

    max_periods = int(fiscal.get("max_periods_per_year", defaults.max_periods_per_year))
    month_names = tuple(fiscal.get("month_names", defaults.month_names))
    if len(month_names) != max_periods:
        raise ValueError(
            f"month_names has {len(month_names)} entries, expected {max_periods}"
        )

    return LedgerSettings(
        base_currency=str(data.get("base_currency", defaults.base_currency)),
        balance_tolerance=tolerance,
        min_entry_lines=int(data.get("min_entry_lines", defaults.min_entry_lines)),
        entry_number_padding=int(
            data.get("entry_number_padding", defaults.entry_number_padding)
        ),
        entry_prefixes=dict(data.get("entry_prefixes") or defaults.entry_prefixes),
        cache_prefixes=dict(data.get("cache_prefixes") or defaults.cache_prefixes),
        max_periods_per_year=max_periods,
        month_names=month_names,
        default_max_retries=int(
            recurring.get("default_max_retries", defaults.default_max_retries)
        ),
        max_generated_occurrences=int(
            recurring.get("max_generated_occurrences", defaults.max_generated_occurrences)
        ),
        holiday_adjustment_attempts=int(
            recurring.get(
                "holiday_adjustment_attempts", defaults.holiday_adjustment_attempts
            )
        ),
        max_missed_backfill=int(
            recurring.get("max_missed_backfill", defaults.max_missed_backfill)
        ),
        default_country_code=str(
            recurring.get("default_country_code", defaults.default_country_code)
        ),
    )


def load_settings(path: Path | str | None = None) -> LedgerSettings:
    """
    Load settings from ``path``, ``$LEDGER_CONFIG_PATH``, or the defaults.

    An explicit file is merged over ``defaults.yaml`` one section deep, so
    it only needs the keys it changes.
    """
    data = load_yaml_file(DEFAULTS_PATH)
    if path is None:
        path = os.environ.get(CONFIG_PATH_ENV) or None
    if path is not None:
        data = _merge(data, load_yaml_file(Path(path)))
    return parse_settings(data)
