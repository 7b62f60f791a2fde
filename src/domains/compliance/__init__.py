"""AML compliance domain: risk scoring, transaction monitoring, SAR cases."""

from .config import ComplianceConfig, MonitoringConfig, RiskScoringConfig, SARConfig, default_config
from .errors import ComplianceError, ErrorKind
from .models import (
    AlertCategory,
    AmlRiskScore,
    BeneficialOwner,
    MonitoringPattern,
    Party,
    RiskFactors,
    RiskLevel,
    SanctionsResult,
    SARCategory,
    SAREvent,
    SAREventType,
    SARStatus,
    Severity,
    SuspiciousActivityReport,
    Transaction,
    TransactionAlert,
    TransactionMonitoringResult,
)
from .monitoring import TransactionMonitor
from .providers import (
    CollectingEventSink,
    EventSink,
    InMemoryPartyProvider,
    InMemorySARRepository,
    PartyProvider,
    SanctionsProvider,
    SARRepository,
)
from .risk_scoring import RiskAssessor, TransactionProfile
from .sar import CaseManager

__all__ = [
    "AlertCategory",
    "AmlRiskScore",
    "BeneficialOwner",
    "CaseManager",
    "CollectingEventSink",
    "ComplianceConfig",
    "ComplianceError",
    "ErrorKind",
    "EventSink",
    "InMemoryPartyProvider",
    "InMemorySARRepository",
    "MonitoringConfig",
    "MonitoringPattern",
    "Party",
    "PartyProvider",
    "RiskAssessor",
    "RiskFactors",
    "RiskLevel",
    "RiskScoringConfig",
    "SARCategory",
    "SARConfig",
    "SAREvent",
    "SAREventType",
    "SARRepository",
    "SARStatus",
    "SanctionsProvider",
    "SanctionsResult",
    "Severity",
    "SuspiciousActivityReport",
    "Transaction",
    "TransactionAlert",
    "TransactionMonitor",
    "TransactionMonitoringResult",
    "TransactionProfile",
    "default_config",
]
