"""Tests for domain events, the emitter and the audit hook."""

from datetime import datetime, timezone
from decimal import Decimal
from uuid import uuid4

from territorial_payroll.context import RequestContext
from territorial_payroll.events import (
    EventCategory,
    EventEmitter,
    EventMetadata,
    PayPeriodCommitted,
    TaxSyncFailed,
    YtdTotalsReset,
)
from territorial_payroll.interfaces import AuditSink, LoggingAuditSink, audit_handler


def metadata():
    return EventMetadata.from_context(RequestContext(company_id=uuid4(), actor_id=uuid4()))


def committed_event():
    return PayPeriodCommitted(
        metadata=metadata(),
        pay_period_id=uuid4(),
        committed_at=datetime(2026, 1, 22, 18, 30, tzinfo=timezone.utc),
        item_count=2,
        total_gross=Decimal("2740.00"),
    )


def failed_event():
    return TaxSyncFailed(
        metadata=metadata(), pay_period_id=uuid4(), attempts=1, error="boom", status_code=500
    )


class TestEventTypes:
    def test_class_level_descriptors(self):
        event = committed_event()

        assert event.event_type == "PayPeriodCommitted"
        assert event.category == EventCategory.PAY_PERIOD
        assert event.action == "pay_period.committed"
        assert event.record_type == "PayPeriod"
        assert event.record_id == event.pay_period_id
        assert failed_event().category == EventCategory.TAX_SYNC

    def test_payload_is_json_ready(self):
        event = committed_event()

        assert event.payload() == {
            "pay_period_id": str(event.pay_period_id),
            "committed_at": "2026-01-22T18:30:00+00:00",
            "item_count": 2,
            "total_gross": "2740.00",
        }

    def test_ytd_record_type_follows_scope(self):
        event = YtdTotalsReset(
            metadata=metadata(), scope="department", entity_id=uuid4(), year=2026
        )
        assert event.record_type == "DepartmentYtdTotal"

    def test_metadata_actor_type(self):
        assert metadata().actor_type == "user"
        anonymous = EventMetadata.from_context(RequestContext(company_id=uuid4()))
        assert anonymous.actor_type == "system"


class TestEmitter:
    def test_type_and_category_filters(self):
        emitter = EventEmitter()
        by_type, by_category, everything = [], [], []
        emitter.on(PayPeriodCommitted, by_type.append)
        emitter.on_category(EventCategory.TAX_SYNC, by_category.append)
        emitter.on_all(everything.append)

        committed, failed = committed_event(), failed_event()
        emitter.emit_all([committed, failed])

        assert by_type == [committed]
        assert by_category == [failed]
        assert everything == [committed, failed]

    def test_failing_handler_is_isolated(self):
        emitter = EventEmitter()
        received = []

        def broken(event):
            raise RuntimeError("handler bug")

        emitter.on_all(broken)
        emitter.on_all(received.append)

        errors = emitter.emit(committed_event())

        assert len(received) == 1
        assert [str(e) for e in errors] == ["handler bug"]

    def test_off(self):
        emitter = EventEmitter()
        received = []
        handler = received.append
        emitter.on([PayPeriodCommitted, TaxSyncFailed], handler)
        emitter.off(handler)

        emitter.emit(committed_event())

        assert received == []


class RecordingSink:
    def __init__(self):
        self.records = []

    def record(self, actor_id, action, record_type, record_id, metadata, timestamp):
        self.records.append((actor_id, action, record_type, record_id, metadata, timestamp))


class TestAudit:
    def test_audit_handler_records_every_event(self):
        sink = RecordingSink()
        emitter = EventEmitter()
        emitter.on_all(audit_handler(sink))
        event = committed_event()

        emitter.emit(event)

        ((actor_id, action, record_type, record_id, payload, timestamp),) = sink.records
        assert actor_id == event.metadata.actor_id
        assert action == "pay_period.committed"
        assert record_type == "PayPeriod"
        assert record_id == event.pay_period_id
        assert payload["item_count"] == 2
        assert timestamp == event.metadata.timestamp

    def test_logging_sink(self, caplog):
        assert isinstance(LoggingAuditSink(), AuditSink)
        handler = audit_handler(LoggingAuditSink())

        with caplog.at_level("INFO", logger="territorial_payroll.audit"):
            handler(failed_event())

        assert "tax_sync.failed PayPeriod" in caplog.text
