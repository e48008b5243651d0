"""
Module: ledger_kernel.models.audit_event
Responsibility: Rows written by the database audit sink adapter.
Architecture position: Kernel > Models.  May import from db/ only.

Audit events are append-only; db/immutability.py rejects UPDATE and DELETE.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class AuditEvent(Base):
    """One externally visible state change: who, what, when, why."""

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_event_resource", "resource_type", "resource_id"),
        Index("idx_audit_event_org_time", "organization_id", "occurred_at"),
    )

    organization_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # "metadata" is reserved by the declarative API
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action} {self.resource_type}:{self.resource_id}>"
