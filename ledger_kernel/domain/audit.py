"""
Audit records -- what the kernel hands to the AuditSink port.

Every externally visible state change (period lifecycle, posting,
reversal, schedule lifecycle) produces one AuditRecord.  Delivery is
fire-and-forget from the kernel's point of view.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID


class AuditAction(str, Enum):
    # Fiscal calendar
    FISCAL_YEAR_CREATED = "fiscal_year_created"
    FISCAL_YEAR_UPDATED = "fiscal_year_updated"
    FISCAL_YEAR_OPENED = "fiscal_year_opened"
    FISCAL_YEAR_CLOSED = "fiscal_year_closed"
    FISCAL_YEAR_LOCKED = "fiscal_year_locked"
    FISCAL_YEAR_SET_CURRENT = "fiscal_year_set_current"
    FISCAL_YEAR_DELETED = "fiscal_year_deleted"
    PERIOD_CLOSED = "period_closed"
    PERIOD_SOFT_CLOSED = "period_soft_closed"
    PERIOD_REOPENED = "period_reopened"

    # Journal entries
    ENTRY_CREATED = "entry_created"
    ENTRY_UPDATED = "entry_updated"
    ENTRY_DELETED = "entry_deleted"
    ENTRY_SUBMITTED = "entry_submitted"
    ENTRY_APPROVED = "entry_approved"
    ENTRY_POSTED = "entry_posted"

    # Reversal
    ENTRY_REVERSED = "entry_reversed"
    AUTO_REVERSAL_SCHEDULED = "auto_reversal_scheduled"
    AUTO_REVERSAL_CANCELLED = "auto_reversal_cancelled"
    CORRECTION_CREATED = "correction_created"

    # Templates and schedules
    TEMPLATE_CREATED = "template_created"
    TEMPLATE_UPDATED = "template_updated"
    TEMPLATE_ARCHIVED = "template_archived"
    SCHEDULE_CREATED = "schedule_created"
    SCHEDULE_UPDATED = "schedule_updated"
    SCHEDULE_PAUSED = "schedule_paused"
    SCHEDULE_RESUMED = "schedule_resumed"
    SCHEDULE_DELETED = "schedule_deleted"
    SCHEDULE_EXECUTED = "schedule_executed"
    SCHEDULE_EXECUTION_FAILED = "schedule_execution_failed"
    HOLIDAY_ADDED = "holiday_added"
    HOLIDAY_DELETED = "holiday_deleted"

    # Custom validation rules
    VALIDATION_RULE_CREATED = "validation_rule_created"
    VALIDATION_RULE_UPDATED = "validation_rule_updated"
    VALIDATION_RULE_DELETED = "validation_rule_deleted"


@dataclass(frozen=True)
class AuditRecord:
    action: AuditAction
    actor_id: UUID
    organization_id: UUID
    resource_type: str
    resource_id: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
