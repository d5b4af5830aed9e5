"""Tests for environment-driven settings."""

import pytest

from territorial_payroll.config import Settings

TAX_SYNC_VARS = (
    "TAX_SYNC_INGEST_URL",
    "TAX_SYNC_API_TOKEN",
    "TAX_SYNC_SHARED_SECRET",
    "TAX_SYNC_SOURCE",
    "TAX_SYNC_TIMEOUT_SECONDS",
    "TAX_SYNC_MAX_ATTEMPTS",
    "TAX_SYNC_WORKER_ENABLED",
    "TAX_SYNC_SWEEP_INTERVAL_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in TAX_SYNC_VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    settings = Settings.from_env()

    assert settings.tax_sync_configured is False
    assert settings.tax_sync_source == "territorial-payroll"
    assert settings.tax_sync_timeout_seconds == 30.0
    assert settings.tax_sync_max_attempts == 5
    assert settings.tax_sync_worker_enabled is True
    assert settings.tax_sync_sweep_interval_seconds == 300.0


def test_shared_secret_falls_back_to_token(monkeypatch):
    monkeypatch.setenv("TAX_SYNC_INGEST_URL", "https://tax.example.gov/ingest")
    monkeypatch.setenv("TAX_SYNC_API_TOKEN", "abc123")

    settings = Settings.from_env()

    assert settings.tax_sync_configured is True
    assert settings.tax_sync_shared_secret == "abc123"


def test_explicit_values(monkeypatch):
    monkeypatch.setenv("TAX_SYNC_API_TOKEN", "abc123")
    monkeypatch.setenv("TAX_SYNC_SHARED_SECRET", "s3cret")
    monkeypatch.setenv("TAX_SYNC_MAX_ATTEMPTS", "3")
    monkeypatch.setenv("TAX_SYNC_WORKER_ENABLED", "false")
    monkeypatch.setenv("TAX_SYNC_SWEEP_INTERVAL_SECONDS", "0")

    settings = Settings.from_env()

    assert settings.tax_sync_shared_secret == "s3cret"
    assert settings.tax_sync_max_attempts == 3
    assert settings.tax_sync_worker_enabled is False
    assert settings.tax_sync_sweep_interval_seconds == 0.0
