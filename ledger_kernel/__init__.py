"""
Ledger Kernel - posting and period-lifecycle engine.

Double-entry bookkeeping core for Polish statutory accounting:
- Fiscal years and periods with an explicit lifecycle
- Balanced journal entries validated before posting
- Reversals, corrections and scheduled auto-reversals
- Recurring entries generated from templates
"""

__version__ = "0.1.0"
