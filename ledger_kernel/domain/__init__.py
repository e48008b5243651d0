"""Domain layer - pure values, rules and calendar arithmetic (no I/O)."""
