"""
AuditSink -- fire-and-forget port for audit records.

Services call ``BaseService._record_audit`` which hands an AuditRecord to
the configured sink and swallows (but logs) any sink failure, so auditing
can never fail the business operation it describes.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.domain.audit import AuditRecord
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.audit_event import AuditEvent

logger = get_logger("services.audit_sink")


@runtime_checkable
class AuditSink(Protocol):
    def log(self, record: AuditRecord) -> None:
        ...


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return value


class DatabaseAuditSink:
    """
    Writes AuditEvent rows inside a SAVEPOINT of the caller's transaction.

    A failed insert rolls back only the savepoint; the error propagates to
    the caller (BaseService), which logs it and carries on.
    """

    def __init__(self, session: Session):
        self._session = session

    def log(self, record: AuditRecord) -> None:
        with self._session.begin_nested():
            self._session.add(
                AuditEvent(
                    organization_id=record.organization_id,
                    actor_id=record.actor_id,
                    action=record.action.value,
                    resource_type=record.resource_type,
                    resource_id=record.resource_id,
                    details=_jsonable(record.metadata) or None,
                    occurred_at=record.timestamp,
                )
            )


class InMemoryAuditSink:
    """Collects records in a list.  Used by tests and dry tooling."""

    def __init__(self) -> None:
        self.records: list[AuditRecord] = []

    def log(self, record: AuditRecord) -> None:
        self.records.append(record)

    def actions(self) -> list[str]:
        return [r.action.value for r in self.records]


class LoggingAuditSink:
    """Emits each record as a structured ``audit_record`` log event."""

    def log(self, record: AuditRecord) -> None:
        logger.info("audit_record", extra={"audit": record})
