"""Composition root for the AML compliance engine.

Wires the risk assessor, transaction monitor and SAR case manager around a
shared configuration and the host's providers.
"""

from dataclasses import dataclass

import structlog

from src.config import Settings, settings
from src.domains.compliance import (
    CaseManager,
    ComplianceConfig,
    EventSink,
    PartyProvider,
    RiskAssessor,
    SanctionsProvider,
    SARRepository,
    TransactionMonitor,
)
from src.shared.logging import setup_logging

logger = structlog.get_logger()


@dataclass
class ComplianceEngine:
    config: ComplianceConfig
    assessor: RiskAssessor
    monitor: TransactionMonitor
    cases: CaseManager


def create_engine(
    config: ComplianceConfig | None = None,
    *,
    repository: SARRepository | None = None,
    party_provider: PartyProvider | None = None,
    sanctions_provider: SanctionsProvider | None = None,
    event_sink: EventSink | None = None,
    app_settings: Settings | None = None,
    configure_logging: bool = True,
) -> ComplianceEngine:
    """Build the three components. Config defaults to env overrides (COMPLIANCE_*)."""
    app_settings = app_settings or settings
    if configure_logging:
        setup_logging(app_settings.log_level, app_settings.log_json)

    config = config or ComplianceConfig.from_env()
    config.validate()

    engine = ComplianceEngine(
        config=config,
        assessor=RiskAssessor(
            config=config,
            party_provider=party_provider,
            sanctions_provider=sanctions_provider,
        ),
        monitor=TransactionMonitor(config=config.monitoring),
        cases=CaseManager(
            config=config.sar,
            repository=repository,
            party_provider=party_provider,
            event_sink=event_sink,
        ),
    )

    logger.info(
        "compliance_engine_created",
        app_name=app_settings.app_name,
        version=app_settings.app_version,
        structuring_threshold=config.monitoring.structuring_threshold,
        filing_deadline_days=config.sar.filing_deadline_days,
    )
    return engine
