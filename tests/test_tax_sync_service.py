"""Tests for tax remittance sync against a mock ingest endpoint."""

import json
from dataclasses import replace
from datetime import date, datetime, timezone
from uuid import uuid4

import httpx
import pytest

from territorial_payroll.errors import NotFoundError, TaxSyncError
from territorial_payroll.events import TaxSyncCompleted, TaxSyncFailed
from territorial_payroll.models import PayPeriod
from territorial_payroll.services.tax_sync_service import (
    MAX_ERROR_LENGTH,
    TaxSyncConfigurationError,
    TaxSyncService,
    TaxSyncValidationError,
    idempotency_key_for,
    truncate,
)

from conftest import INGEST_URL


class RecordingEndpoint:
    """Mock ingest endpoint answering with queued responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


class TestHelpers:
    def test_truncate(self):
        assert truncate("short", 10) == "short"
        cut = truncate("x" * 20, 10)
        assert cut == "xxxxxxx..."
        assert len(cut) == 10

    def test_idempotency_key_treats_naive_as_utc(self):
        period_id = uuid4()
        naive = PayPeriod(pay_period_id=period_id, committed_at=datetime(2026, 1, 22, 18, 30))
        aware = PayPeriod(
            pay_period_id=period_id,
            committed_at=datetime(2026, 1, 22, 18, 30, tzinfo=timezone.utc),
        )

        assert idempotency_key_for(naive) == idempotency_key_for(aware)
        assert idempotency_key_for(aware) == f"tps-{period_id}-1769106600"


class TestSync:
    async def test_success(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.Response(201, json={"status": "accepted"}))
        service = TaxSyncService(session, settings, endpoint.transport)

        period = await service.sync(committed_period.pay_period_id)

        assert period.tax_sync_status == "synced"
        assert period.tax_sync_attempts == 1
        assert period.tax_sync_last_error is None
        assert period.tax_synced_at is not None
        assert period.tax_sync_idempotency_key.startswith(f"tps-{period.pay_period_id}-")

        (request,) = endpoint.requests
        assert str(request.url) == INGEST_URL
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/json"
        assert request.headers["Idempotency-Key"] == period.tax_sync_idempotency_key
        assert request.headers["X-Source"] == "territorial-payroll-test"
        assert request.headers["Authorization"] == "Bearer test-token"
        assert request.headers["X-Shared-Secret"] == "test-secret"

        body = json.loads(request.content)
        assert body["idempotency_key"] == period.tax_sync_idempotency_key
        assert body["totals"]["employee_count"] == 2
        assert body["totals"]["gross_pay"] == 2740.0

        (event,) = service.events
        assert isinstance(event, TaxSyncCompleted)
        assert event.duplicate is False
        assert event.metadata.actor_type == "worker"

    async def test_conflict_counts_as_synced(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.Response(409, text="duplicate submission"))
        service = TaxSyncService(session, settings, endpoint.transport)

        period = await service.sync(committed_period.pay_period_id)

        assert period.tax_sync_status == "synced"
        assert service.events[0].duplicate is True

    async def test_rejected_payload(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.Response(422, text="y" * 2000))
        service = TaxSyncService(session, settings, endpoint.transport)

        with pytest.raises(TaxSyncError) as exc_info:
            await service.sync(committed_period.pay_period_id)

        assert exc_info.value.status_code == 422
        period = await session.get(PayPeriod, committed_period.pay_period_id)
        assert period.tax_sync_status == "failed"
        assert period.tax_sync_attempts == 1
        assert "(422)" in period.tax_sync_last_error
        assert period.tax_sync_last_error.endswith("...")
        assert len(period.tax_sync_last_error) <= MAX_ERROR_LENGTH

        (event,) = service.events
        assert isinstance(event, TaxSyncFailed)
        assert event.status_code == 422

    async def test_server_error(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.Response(503, text="maintenance"))
        service = TaxSyncService(session, settings, endpoint.transport)

        with pytest.raises(TaxSyncError) as exc_info:
            await service.sync(committed_period.pay_period_id)

        assert exc_info.value.status_code == 503
        assert committed_period.tax_sync_status == "failed"
        assert "maintenance" in committed_period.tax_sync_last_error

    async def test_network_error(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.ConnectError("connection refused"))
        service = TaxSyncService(session, settings, endpoint.transport)

        with pytest.raises(TaxSyncError) as exc_info:
            await service.sync(committed_period.pay_period_id)

        assert exc_info.value.status_code is None
        assert committed_period.tax_sync_status == "failed"
        assert committed_period.tax_sync_last_error.startswith("Network error:")

    async def test_retry_reuses_idempotency_key(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(
            httpx.Response(500, text="boom"),
            httpx.Response(200, json={}),
        )

        with pytest.raises(TaxSyncError):
            await TaxSyncService(session, settings, endpoint.transport).sync(
                committed_period.pay_period_id
            )
        period = await TaxSyncService(session, settings, endpoint.transport).sync(
            committed_period.pay_period_id
        )

        assert period.tax_sync_status == "synced"
        assert period.tax_sync_attempts == 2
        assert period.tax_sync_last_error is None
        keys = {r.headers["Idempotency-Key"] for r in endpoint.requests}
        assert keys == {period.tax_sync_idempotency_key}

    async def test_not_configured_changes_nothing(self, session, settings, committed_period):
        unconfigured = replace(settings, tax_sync_ingest_url=None)
        endpoint = RecordingEndpoint()

        with pytest.raises(TaxSyncConfigurationError):
            await TaxSyncService(session, unconfigured, endpoint.transport).sync(
                committed_period.pay_period_id
            )

        assert committed_period.tax_sync_status == "pending"
        assert committed_period.tax_sync_attempts == 0
        assert endpoint.requests == []

    async def test_shared_secret_optional(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.Response(200))
        no_auth = replace(settings, tax_sync_api_token=None, tax_sync_shared_secret=None)

        await TaxSyncService(session, no_auth, endpoint.transport).sync(
            committed_period.pay_period_id
        )

        headers = endpoint.requests[0].headers
        assert "Authorization" not in headers
        assert "X-Shared-Secret" not in headers

    async def test_uncommitted_period_rejected(self, session, settings, pay_period_service):
        period = await pay_period_service.create_period(
            date(2026, 1, 4), date(2026, 1, 17), date(2026, 1, 23)
        )
        endpoint = RecordingEndpoint()

        with pytest.raises(TaxSyncValidationError):
            await TaxSyncService(session, settings, endpoint.transport).sync(
                period.pay_period_id
            )

        assert period.tax_sync_attempts == 0
        assert endpoint.requests == []

    async def test_missing_period(self, session, settings):
        with pytest.raises(NotFoundError):
            await TaxSyncService(session, settings, RecordingEndpoint().transport).sync(uuid4())

    async def test_synced_period_is_not_sent_again(self, session, settings, committed_period):
        endpoint = RecordingEndpoint(httpx.Response(201))
        await TaxSyncService(session, settings, endpoint.transport).sync(
            committed_period.pay_period_id
        )

        with pytest.raises(TaxSyncValidationError):
            await TaxSyncService(session, settings, endpoint.transport).sync(
                committed_period.pay_period_id
            )

        assert len(endpoint.requests) == 1
        assert committed_period.tax_sync_attempts == 1

    async def test_empty_committed_period_rejected(
        self, session, settings, pay_period_service, tax_config_2026, hourly_employee
    ):
        period = await pay_period_service.create_period(
            date(2026, 1, 4), date(2026, 1, 17), date(2026, 1, 23)
        )
        result = await pay_period_service.run_payroll(period.pay_period_id)
        for item in result.calculated:
            await pay_period_service.remove_item(period.pay_period_id, item.payroll_item_id)
        await pay_period_service.approve(period.pay_period_id)
        await pay_period_service.commit(period.pay_period_id)
        endpoint = RecordingEndpoint()

        with pytest.raises(TaxSyncValidationError):
            await TaxSyncService(session, settings, endpoint.transport).sync(
                period.pay_period_id
            )

        assert endpoint.requests == []
        assert period.status == "committed"
        assert period.tax_sync_status == "pending"
        assert period.tax_sync_attempts == 0


class TestSyncTransactions:
    """The claim is committed before the request goes out."""

    async def test_syncing_is_visible_while_request_is_in_flight(
        self, session, session_factory, settings, committed_period
    ):
        await session.commit()
        period_id = committed_period.pay_period_id
        seen = []

        async def endpoint(request):
            async with session_factory() as other:
                period = await other.get(PayPeriod, period_id)
                seen.append((period.tax_sync_status, period.tax_sync_attempts))
                with pytest.raises(TaxSyncValidationError):
                    await TaxSyncService(other, settings, httpx.MockTransport(endpoint)).sync(
                        period_id
                    )
            return httpx.Response(201)

        period = await TaxSyncService(session, settings, httpx.MockTransport(endpoint)).sync(
            period_id
        )

        assert seen == [("syncing", 1)]
        assert period.tax_sync_status == "synced"
        async with session_factory() as fresh:
            stored = await fresh.get(PayPeriod, period_id)
            assert stored.tax_sync_status == "synced"
            assert stored.tax_sync_attempts == 1

    async def test_failure_is_committed(
        self, session, session_factory, settings, committed_period
    ):
        await session.commit()
        endpoint = RecordingEndpoint(httpx.Response(500, text="down"))

        with pytest.raises(TaxSyncError):
            await TaxSyncService(session, settings, endpoint.transport).sync(
                committed_period.pay_period_id
            )

        async with session_factory() as fresh:
            stored = await fresh.get(PayPeriod, committed_period.pay_period_id)
            assert stored.tax_sync_status == "failed"
            assert stored.tax_sync_attempts == 1
            assert stored.tax_sync_idempotency_key is not None
