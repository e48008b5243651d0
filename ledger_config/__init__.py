"""
ledger_config -- YAML-backed settings for the ledger kernel.

``load_settings()`` is the single entrypoint.  It returns a frozen
``LedgerSettings`` that services receive through their ``settings`` kwarg.
"""

from ledger_config.loader import (
    CONFIG_PATH_ENV,
    DEFAULTS_PATH,
    load_settings,
    load_yaml_file,
    parse_settings,
)

__all__ = [
    "CONFIG_PATH_ENV",
    "DEFAULTS_PATH",
    "load_settings",
    "load_yaml_file",
    "parse_settings",
]
