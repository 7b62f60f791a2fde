"""AML compliance configuration with regulatory rationale.

Every threshold, window, and multiplier is configurable. Each default is
documented with the regulatory basis or guidance that justifies its value.

References:
- 31 CFR § 1010.311 — Currency transaction reports over $10,000
- 31 USC § 5324 — Structuring transactions to evade reporting requirements
- 31 CFR § 1020.320 — SAR filing within 30 calendar days of detection
- 31 CFR § 1010.230 — Customer Due Diligence (beneficial ownership)
- FATF Recommendations 10, 12, 19 — CDD, PEPs, higher-risk countries
"""

import os
from dataclasses import dataclass, field

from .errors import configuration_error


def _parse_env(name: str, value: str, convert):
    try:
        return convert(value)
    except ValueError:
        raise configuration_error(name, f"expected {convert.__name__}, got {value!r}") from None


@dataclass
class RiskScoringConfig:
    """Party risk scoring parameters.

    Regulatory basis: FATF Recommendation 10 (risk-based CDD) and
    Recommendation 12 (PEPs). The factor weights and risk-level bands are
    fixed in models.py so that a score is always a pure function of its
    factors; only the inputs to each factor are tunable here.
    """

    # PEP multipliers by PEP level (FATF Rec. 12: heightened scrutiny scales
    # with the prominence of the public function).
    pep_multipliers: dict[int, float] = field(
        default_factory=lambda: {
            1: 2.0,  # head of state / government
            2: 1.8,  # senior government official
            3: 1.5,  # regional political figure
            4: 1.3,  # family member of a PEP
            5: 1.2,  # close associate of a PEP
        }
    )
    default_pep_level: int = 5
    default_pep_multiplier: float = 1.2

    # Jurisdiction composition: primary country 70%, worst associated 30%
    primary_jurisdiction_weight: float = 0.7
    associated_jurisdiction_weight: float = 0.3
    # An associated prohibited jurisdiction never aborts scoring; it
    # contributes this fixed score instead.
    prohibited_associated_score: int = 95
    # Beneficial owner (UBO) jurisdiction exposure adds up to 20 points
    # (31 CFR § 1010.230).
    beneficial_owner_weight: float = 0.2

    # Business type
    missing_industry_score: int = 50
    cash_intensive_points: int = 15
    high_value_points: int = 10
    international_exposure_points: int = 10
    international_exposure_min_countries: int = 3

    # Sanctions
    confirmed_match_score: int = 90
    match_count_step: float = 0.1
    max_match_count_multiplier: float = 1.5

    # Transaction profile
    default_volume_threshold: float = 1_000_000.0

    # Review frequency by risk level (days)
    low_review_days: int = 365
    medium_review_days: int = 180
    high_review_days: int = 90


@dataclass
class MonitoringConfig:
    """Transaction monitoring thresholds.

    Regulatory basis: 31 USC § 5324 (structuring), 31 CFR § 1010.311
    (CTR threshold), FinCEN Advisory FIN-2014-A007 (pattern monitoring).
    """

    # ---- Structuring ----
    # The federal CTR threshold; structuring looks for amounts just below it.
    structuring_threshold: float = 10_000.0
    # 15% margin below threshold: $8,500 – $9,999.99 at the default threshold
    structuring_margin: float = 0.15
    structuring_min_transactions: int = 3

    # ---- Velocity ----
    velocity_multiplier: float = 3.0
    velocity_min_days: int = 2

    # ---- Geography ----
    geographic_max_countries: int = 5

    # ---- Round amounts ----
    round_amount_min_transactions: int = 5
    round_amount_threshold: float = 0.8

    # ---- Single large transaction ----
    large_transaction_threshold: float = 50_000.0
    large_transaction_high_multiple: float = 5.0

    # ---- Daily aggregation ----
    daily_limit: float = 25_000.0

    # ---- Dormancy ----
    dormancy_days: int = 180
    dormancy_enabled: bool = True

    # ---- Layering (receive-then-send) ----
    layering_enabled: bool = True
    layering_window_hours: int = 24
    layering_transfer_ratio: float = 0.80
    layering_min_amount: float = 1_000.0
    inbound_types: list[str] = field(
        default_factory=lambda: ["credit", "deposit", "incoming", "transfer_in", "receive"]
    )
    outbound_types: list[str] = field(
        default_factory=lambda: ["debit", "withdrawal", "outgoing", "transfer_out", "send"]
    )

    # ---- Aggregate scoring ----
    pattern_weights: dict[str, int] = field(
        default_factory=lambda: {
            "structuring": 35,
            "velocity": 20,
            "geographic": 25,
            "round_amounts": 15,
            "large_amount": 20,
            "daily_aggregation": 25,
            "dormancy": 15,
        }
    )
    other_pattern_weight: int = 10
    severity_multipliers: dict[str, float] = field(
        default_factory=lambda: {
            "critical": 1.5,
            "high": 1.3,
            "medium": 1.1,
            "low": 1.0,
        }
    )

    default_currency: str = "USD"


@dataclass
class SARConfig:
    """SAR lifecycle parameters.

    Regulatory basis: 31 CFR § 1020.320(b)(3) — a SAR must be filed no later
    than 30 calendar days after initial detection of facts that may
    constitute a basis for filing. FinCEN SAR narrative guidance requires a
    complete, sufficient narrative (who, what, when, where, why, how).
    """

    filing_deadline_days: int = 30
    min_narrative_length: int = 100
    sar_id_prefix: str = "SAR"
    default_currency: str = "USD"
    max_id_attempts: int = 5


@dataclass
class ComplianceConfig:
    """Top-level AML compliance configuration."""

    risk_scoring: RiskScoringConfig = field(default_factory=RiskScoringConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    sar: SARConfig = field(default_factory=SARConfig)

    @classmethod
    def from_env(cls) -> "ComplianceConfig":
        """Load config with env var overrides (COMPLIANCE_ prefix)."""
        config = cls()

        # Monitoring overrides
        if v := os.getenv("COMPLIANCE_STRUCTURING_THRESHOLD"):
            config.monitoring.structuring_threshold = _parse_env("COMPLIANCE_STRUCTURING_THRESHOLD", v, float)
        if v := os.getenv("COMPLIANCE_STRUCTURING_MARGIN"):
            config.monitoring.structuring_margin = _parse_env("COMPLIANCE_STRUCTURING_MARGIN", v, float)
        if v := os.getenv("COMPLIANCE_VELOCITY_MULTIPLIER"):
            config.monitoring.velocity_multiplier = _parse_env("COMPLIANCE_VELOCITY_MULTIPLIER", v, float)
        if v := os.getenv("COMPLIANCE_LARGE_TRANSACTION_THRESHOLD"):
            config.monitoring.large_transaction_threshold = _parse_env("COMPLIANCE_LARGE_TRANSACTION_THRESHOLD", v, float)
        if v := os.getenv("COMPLIANCE_DAILY_LIMIT"):
            config.monitoring.daily_limit = _parse_env("COMPLIANCE_DAILY_LIMIT", v, float)
        if v := os.getenv("COMPLIANCE_DORMANCY_DAYS"):
            config.monitoring.dormancy_days = _parse_env("COMPLIANCE_DORMANCY_DAYS", v, int)
        if v := os.getenv("COMPLIANCE_DORMANCY_ENABLED"):
            config.monitoring.dormancy_enabled = v.lower() in ("true", "1", "yes")

        # Risk scoring overrides
        if v := os.getenv("COMPLIANCE_VOLUME_THRESHOLD"):
            config.risk_scoring.default_volume_threshold = _parse_env("COMPLIANCE_VOLUME_THRESHOLD", v, float)

        # SAR overrides
        if v := os.getenv("COMPLIANCE_SAR_DEADLINE_DAYS"):
            config.sar.filing_deadline_days = _parse_env("COMPLIANCE_SAR_DEADLINE_DAYS", v, int)
        if v := os.getenv("COMPLIANCE_SAR_MIN_NARRATIVE"):
            config.sar.min_narrative_length = _parse_env("COMPLIANCE_SAR_MIN_NARRATIVE", v, int)

        config.validate()
        return config

    def validate(self) -> None:
        """Raise a configuration error for values the engine cannot run with."""
        mc = self.monitoring
        if mc.structuring_threshold <= 0:
            raise configuration_error("monitoring.structuring_threshold", "must be positive")
        if not 0 < mc.structuring_margin < 1:
            raise configuration_error("monitoring.structuring_margin", "must be between 0 and 1")
        if mc.structuring_min_transactions < 1:
            raise configuration_error("monitoring.structuring_min_transactions", "must be at least 1")
        if mc.velocity_multiplier <= 1:
            raise configuration_error("monitoring.velocity_multiplier", "must be greater than 1")
        if not 0 < mc.round_amount_threshold <= 1:
            raise configuration_error("monitoring.round_amount_threshold", "must be in (0, 1]")
        if mc.large_transaction_threshold <= 0 or mc.daily_limit <= 0:
            raise configuration_error("monitoring.amount_thresholds", "must be positive")
        if mc.dormancy_days < 1:
            raise configuration_error("monitoring.dormancy_days", "must be at least 1")

        rc = self.risk_scoring
        missing_levels = {1, 2, 3, 4, 5} - set(rc.pep_multipliers)
        if missing_levels:
            raise configuration_error(
                "risk_scoring.pep_multipliers",
                f"missing PEP levels {sorted(missing_levels)}",
            )
        if any(m < 1.0 for m in rc.pep_multipliers.values()):
            raise configuration_error("risk_scoring.pep_multipliers", "multipliers must be >= 1.0")
        if abs(rc.primary_jurisdiction_weight + rc.associated_jurisdiction_weight - 1.0) > 1e-9:
            raise configuration_error("risk_scoring.jurisdiction_weights", "must sum to 1.0")

        if self.sar.filing_deadline_days < 1:
            raise configuration_error("sar.filing_deadline_days", "must be at least 1")
        if self.sar.min_narrative_length < 1:
            raise configuration_error("sar.min_narrative_length", "must be at least 1")


# Module-level default instance
default_config = ComplianceConfig()
