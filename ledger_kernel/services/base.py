"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Holds what every service needs: the caller's SQLAlchemy ``Session``,
    the explicit ``OrgContext`` (organization + authenticated actor), the
    injected clock, the settings, and the audit / cache ports.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Services flush within the caller's transaction and never commit or
      roll back; ``session_scope()`` (or the batch executor's savepoint)
      owns the boundary.
    - Every query is scoped by ``ctx.organization_id``.
    - Audit sink failures are logged and swallowed.
    - Cache invalidation is best-effort; failures are logged and swallowed.
"""

from abc import ABC
from typing import Any, Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.audit import AuditAction, AuditRecord
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.context import OrgContext
from ledger_kernel.domain.settings import LedgerSettings
from ledger_kernel.logging_config import get_logger
from ledger_kernel.services.audit_sink import AuditSink, DatabaseAuditSink
from ledger_kernel.services.cache import CacheInvalidator, NullCacheInvalidator

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an ``OrgContext`` from the
        caller and uses ``session.flush()`` to persist changes within the
        active transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT authorize the actor; the context arrives authenticated.
    """

    def __init__(
        self,
        session: Session,
        ctx: OrgContext,
        *,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
        audit_sink: AuditSink | None = None,
        cache: CacheInvalidator | None = None,
    ):
        self.session = session
        self.ctx = ctx
        self._clock = clock or SystemClock()
        self._settings = settings or LedgerSettings()
        self._audit_sink = audit_sink if audit_sink is not None else DatabaseAuditSink(session)
        self._cache = cache if cache is not None else NullCacheInvalidator()

    @property
    def organization_id(self) -> UUID:
        return self.ctx.organization_id

    @property
    def actor_id(self) -> UUID:
        return self.ctx.actor_id

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    def _collaborator_kwargs(self) -> dict[str, Any]:
        """Constructor kwargs so a collaborating service shares our ports."""
        return {
            "clock": self._clock,
            "settings": self._settings,
            "audit_sink": self._audit_sink,
            "cache": self._cache,
        }

    def _record_audit(
        self,
        action: AuditAction,
        resource_type: str,
        resource_id,
        **metadata: Any,
    ) -> None:
        record = AuditRecord(
            action=action,
            actor_id=self.actor_id,
            organization_id=self.organization_id,
            resource_type=resource_type,
            resource_id=str(resource_id),
            timestamp=self._clock.now_utc(),
            metadata=metadata,
        )
        try:
            self._audit_sink.log(record)
        except Exception:
            logger.warning(
                "audit_sink_failed",
                extra={
                    "action": action.value,
                    "resource_type": resource_type,
                    "resource_id": str(resource_id),
                },
                exc_info=True,
            )

    def _invalidate_cache(self, *names: str) -> None:
        for name in names:
            pattern = f"{self._settings.cache_prefix(name)}:{self.organization_id}:*"
            try:
                self._cache.invalidate(pattern)
            except Exception:
                logger.warning(
                    "cache_invalidation_failed",
                    extra={"pattern": pattern},
                    exc_info=True,
                )
