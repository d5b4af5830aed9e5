"""Protocols for collaborators outside the payroll core."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from territorial_payroll.events.types import DomainEvent
    from territorial_payroll.services.pay_stub_service import PayStubView

logger = logging.getLogger(__name__)


@runtime_checkable
class DocumentGenerator(Protocol):
    """Renders a pay stub projection to document bytes."""

    def render(self, view: PayStubView) -> bytes:
        ...


@runtime_checkable
class ObjectStore(Protocol):
    """Binary object storage."""

    async def put(self, key: str, data: bytes) -> None:
        ...

    async def get(self, key: str) -> bytes | None:
        ...

    async def exists(self, key: str) -> bool:
        ...


@runtime_checkable
class AuditSink(Protocol):
    """Receives audit records."""

    def record(
        self,
        actor_id: UUID | None,
        action: str,
        record_type: str,
        record_id: UUID,
        metadata: dict[str, Any],
        timestamp: datetime,
    ) -> None:
        ...


class LoggingAuditSink:
    """Audit sink that writes records to the application log."""

    def __init__(self, log: logging.Logger | None = None):
        self.log = log or logging.getLogger("territorial_payroll.audit")

    def record(
        self,
        actor_id: UUID | None,
        action: str,
        record_type: str,
        record_id: UUID,
        metadata: dict[str, Any],
        timestamp: datetime,
    ) -> None:
        self.log.info(
            "%s %s %s",
            action,
            record_type,
            record_id,
            extra={
                "actor_id": str(actor_id) if actor_id else None,
                "audit_metadata": metadata,
                "audit_timestamp": timestamp.isoformat(),
            },
        )


def audit_handler(sink: AuditSink):
    """Adapt an audit sink into an event handler."""

    def handle(event: DomainEvent) -> None:
        sink.record(
            actor_id=event.metadata.actor_id,
            action=event.action,
            record_type=event.record_type,
            record_id=event.record_id,
            metadata=event.payload(),
            timestamp=event.metadata.timestamp,
        )

    return handle
