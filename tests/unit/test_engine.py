"""Tests for the engine composition root."""

from datetime import UTC, datetime, timedelta

import pytest
import structlog

from src.config import Settings
from src.domains.compliance import (
    CollectingEventSink,
    ComplianceConfig,
    ComplianceError,
    ErrorKind,
    InMemoryPartyProvider,
    InMemorySARRepository,
    MonitoringConfig,
    Party,
    SanctionsResult,
)
from src.main import create_engine
from src.shared.logging import setup_logging

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


class StaticSanctions:
    def get_sanctions_result(self, party):
        return SanctionsResult(party_id=party.party_id, has_matches=True, highest_match_score=60)


class TestCreateEngine:
    def test_components_share_config(self):
        config = ComplianceConfig(monitoring=MonitoringConfig(large_transaction_threshold=1_000.0))
        engine = create_engine(config, configure_logging=False)

        assert engine.config is config
        assert engine.monitor.config is config.monitoring
        assert engine.cases.config is config.sar

    def test_invalid_config_rejected(self):
        config = ComplianceConfig(monitoring=MonitoringConfig(velocity_multiplier=0.5))
        with pytest.raises(ComplianceError) as exc_info:
            create_engine(config, configure_logging=False)
        assert exc_info.value.kind == ErrorKind.CONFIGURATION

    def test_env_config_by_default(self, monkeypatch):
        monkeypatch.setenv("COMPLIANCE_DAILY_LIMIT", "5000")
        engine = create_engine(configure_logging=False)
        assert engine.config.monitoring.daily_limit == 5_000.0

    def test_providers_wired(self):
        party = Party(party_id="party-001", country_code="US", name="Jane Roe")
        parties = InMemoryPartyProvider([party])
        repository = InMemorySARRepository()
        sink = CollectingEventSink()
        engine = create_engine(
            repository=repository,
            party_provider=parties,
            sanctions_provider=StaticSanctions(),
            event_sink=sink,
            configure_logging=False,
        )

        score = engine.assessor.assess_by_id("party-001", now=NOW)
        assert score.factors.sanctions_score == 60

        txs = [
            {"id": f"tx-{d}", "amount": 9_500.0, "date": NOW - timedelta(days=d)}
            for d in range(1, 4)
        ]
        result = engine.monitor.monitor("party-001", txs, NOW - timedelta(days=30), NOW, now=NOW)
        sar = engine.cases.create_from_monitoring(result, created_by="analyst-1")

        assert repository.exists(sar.sar_id)
        assert sar.narrative.startswith("Subject: Jane Roe (ID: party-001)")
        assert len(sink.events) == 1

    def test_configures_logging(self):
        settings = Settings(log_level="WARNING", log_json=True)
        try:
            create_engine(ComplianceConfig(), app_settings=settings)
            assert structlog.is_configured()
        finally:
            structlog.reset_defaults()


class TestSetupLogging:
    def test_json_output(self, capsys):
        setup_logging("INFO", json=True)
        try:
            structlog.get_logger().info("sar_created", sar_id="SAR-1")
            assert '"event": "sar_created"' in capsys.readouterr().out
        finally:
            structlog.reset_defaults()

    def test_level_filtering(self, capsys):
        setup_logging("WARNING")
        try:
            structlog.get_logger().info("quiet_event")
            assert "quiet_event" not in capsys.readouterr().out
        finally:
            structlog.reset_defaults()
