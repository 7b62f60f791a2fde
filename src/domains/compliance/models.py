"""Pydantic models for the AML compliance domain.

All models are frozen. Operations that "change" a model return a new instance
so earlier versions stay intact for audit. Derived values (composite score,
risk level, filing deadline) are computed from stored fields and never stored
independently.
"""

import math
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any, ClassVar

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

# 31 CFR § 1020.320(b)(3): file within 30 calendar days of initial detection
FILING_DEADLINE_DAYS = 30


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (2.5 -> 3)."""
    if value < 0:
        return -int(math.floor(-value + 0.5))
    return int(math.floor(value + 0.5))


def clamp_score(value: float) -> int:
    return max(0, min(100, int(value)))


def _dedupe(values: list[str]) -> list[str]:
    return list(dict.fromkeys(values))


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# ---------------------------------------------------------------------------
# Parties and sanctions
# ---------------------------------------------------------------------------


class BeneficialOwner(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    ownership_percentage: float = Field(ge=0, le=100)
    country_code: str


class Party(BaseModel):
    """A counterparty under assessment.

    Country codes are validated by the risk assessor rather than here, so a
    malformed record surfaces as a compliance error with the party id attached.
    """

    model_config = ConfigDict(frozen=True)

    party_id: str
    country_code: str
    name: str | None = None
    party_type: str = "individual"
    associated_country_codes: list[str] = Field(default_factory=list)
    industry_code: str | None = None
    is_pep: bool = False
    pep_level: int | None = None
    beneficial_owners: list[BeneficialOwner] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_cash_intensive(self) -> bool:
        return bool(self.metadata.get("is_cash_intensive", False))

    @property
    def has_high_value_transactions(self) -> bool:
        return bool(self.metadata.get("high_value_transactions", False))

    @property
    def display_name(self) -> str:
        return self.name or self.party_id


class SanctionsResult(BaseModel):
    """Outcome of an external sanctions screening. Matching itself happens elsewhere."""

    model_config = ConfigDict(frozen=True)

    party_id: str | None = None
    is_blocked: bool = False
    has_matches: bool = False
    match_count: int = Field(default=0, ge=0)
    highest_match_score: float = Field(default=0.0, ge=0, le=100)
    has_confirmed_match: bool = False


# ---------------------------------------------------------------------------
# Risk scoring
# ---------------------------------------------------------------------------


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_score(cls, score: int) -> "RiskLevel":
        """Fixed bands: Low < 40 <= Medium < 70 <= High."""
        if score >= RISK_LEVEL_HIGH_MIN:
            return cls.HIGH
        if score >= RISK_LEVEL_MEDIUM_MIN:
            return cls.MEDIUM
        return cls.LOW

    @property
    def rank(self) -> int:
        return _RISK_LEVEL_RANK[self]


RISK_LEVEL_MEDIUM_MIN = 40
RISK_LEVEL_HIGH_MIN = 70

_RISK_LEVEL_RANK: dict[RiskLevel, int] = {
    RiskLevel.LOW: 0,
    RiskLevel.MEDIUM: 1,
    RiskLevel.HIGH: 2,
}


class RiskFactors(BaseModel):
    """The four component scores, each an int clamped to [0, 100]."""

    model_config = ConfigDict(frozen=True)

    WEIGHTS: ClassVar[dict[str, float]] = {
        "jurisdiction": 0.30,
        "business_type": 0.20,
        "sanctions": 0.25,
        "transaction": 0.25,
    }
    HIGH_RISK_THRESHOLD: ClassVar[int] = 70

    jurisdiction_score: int = 0
    business_type_score: int = 0
    sanctions_score: int = 0
    transaction_score: int = 0
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator(
        "jurisdiction_score",
        "business_type_score",
        "sanctions_score",
        "transaction_score",
        mode="before",
    )
    @classmethod
    def _clamp(cls, v: Any) -> int:
        return clamp_score(v)

    def as_dict(self) -> dict[str, int]:
        return {
            "jurisdiction": self.jurisdiction_score,
            "business_type": self.business_type_score,
            "sanctions": self.sanctions_score,
            "transaction": self.transaction_score,
        }

    def composite_score(self) -> int:
        weighted = sum(score * self.WEIGHTS[name] for name, score in self.as_dict().items())
        return clamp_score(round_half_up(weighted))

    def highest_risk_factor(self) -> str:
        """Name of the largest factor; ties resolve in weight-table order."""
        scores = self.as_dict()
        return max(scores, key=lambda name: scores[name])

    def factors_above(self, threshold: int) -> dict[str, int]:
        return {name: score for name, score in self.as_dict().items() if score >= threshold}

    def has_high_risk_factor(self) -> bool:
        return bool(self.factors_above(self.HIGH_RISK_THRESHOLD))

    def has_sanctions_risk(self) -> bool:
        return self.sanctions_score > 0

    def _evolve(self, **changes: Any) -> "RiskFactors":
        return type(self).model_validate({**dict(self), **changes})

    def with_jurisdiction_score(self, score: int) -> "RiskFactors":
        return self._evolve(jurisdiction_score=score)

    def with_business_type_score(self, score: int) -> "RiskFactors":
        return self._evolve(business_type_score=score)

    def with_sanctions_score(self, score: int) -> "RiskFactors":
        return self._evolve(sanctions_score=score)

    def with_transaction_score(self, score: int) -> "RiskFactors":
        return self._evolve(transaction_score=score)

    def with_metadata(self, **metadata: Any) -> "RiskFactors":
        return self._evolve(metadata={**self.metadata, **metadata})


class AmlRiskScore(BaseModel):
    """Overall AML risk score for a party.

    ``overall_score`` and ``risk_level`` are computed from ``factors`` on
    access, so two scores with identical factors always agree.
    """

    model_config = ConfigDict(frozen=True)

    party_id: str
    factors: RiskFactors
    recommendations: list[str] = Field(default_factory=list)
    assessed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    assessed_by: str = "system"
    next_review_at: datetime | None = None

    @field_validator("recommendations")
    @classmethod
    def _dedupe_recommendations(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def overall_score(self) -> int:
        return self.factors.composite_score()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def risk_level(self) -> RiskLevel:
        return RiskLevel.from_score(self.overall_score)

    @property
    def requires_edd(self) -> bool:
        return self.risk_level == RiskLevel.HIGH

    @property
    def requires_enhanced_monitoring(self) -> bool:
        return self.risk_level in (RiskLevel.MEDIUM, RiskLevel.HIGH)

    @property
    def primary_risk_factor(self) -> str:
        return self.factors.highest_risk_factor()

    def has_escalated_from(self, previous: "AmlRiskScore") -> bool:
        return self.risk_level.rank > previous.risk_level.rank

    def score_change(self, previous: "AmlRiskScore") -> int:
        return self.overall_score - previous.overall_score


# ---------------------------------------------------------------------------
# Transactions and monitoring
# ---------------------------------------------------------------------------


class Transaction(BaseModel):
    """A normalized transaction record. Naive dates are taken as UTC."""

    model_config = ConfigDict(frozen=True)

    id: str
    amount: float
    currency: str = "USD"
    type: str = "unknown"
    date: datetime
    counterparty_id: str | None = None
    counterparty_country: str | None = None
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("date")
    @classmethod
    def _utc_date(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("counterparty_country")
    @classmethod
    def _upper_country(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip().upper()
        return v or None


class AlertCategory(StrEnum):
    STRUCTURING = "structuring"
    VELOCITY_SPIKE = "velocity_spike"
    GEOGRAPHIC_ANOMALY = "geographic_anomaly"
    ROUND_AMOUNT = "round_amount"
    LARGE_AMOUNT = "large_amount"
    THRESHOLD_BREACH = "threshold_breach"
    DORMANCY = "dormancy"
    LAYERING = "layering"
    COUNTERPARTY = "counterparty"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.LOW: 0,
    Severity.MEDIUM: 1,
    Severity.HIGH: 2,
    Severity.CRITICAL: 3,
}

# Hours allowed before an analyst must pick up a result, by top severity
REVIEW_SLA_HOURS: dict[Severity, int] = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 24,
    Severity.MEDIUM: 72,
    Severity.LOW: 168,
}


class MonitoringPattern(StrEnum):
    STRUCTURING = "structuring"
    VELOCITY = "velocity"
    GEOGRAPHIC = "geographic"
    ROUND_AMOUNTS = "round_amounts"
    LARGE_AMOUNT = "large_amount"
    DAILY_AGGREGATION = "daily_aggregation"
    DORMANCY = "dormancy"
    LAYERING = "layering"
    COUNTERPARTY = "counterparty"


class TransactionAlert(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: AlertCategory
    severity: Severity
    message: str
    evidence: dict[str, Any] = Field(default_factory=dict)
    triggered_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    transaction_id: str | None = None
    amount: float | None = None
    currency: str | None = None

    @property
    def is_critical(self) -> bool:
        return self.severity == Severity.CRITICAL

    @property
    def is_high_severity(self) -> bool:
        return self.severity.rank >= Severity.HIGH.rank

    def referenced_transaction_ids(self) -> list[str]:
        """The alert's own transaction plus any listed in its evidence."""
        ids: list[str] = []
        if self.transaction_id:
            ids.append(self.transaction_id)
        ids.extend(str(tx_id) for tx_id in self.evidence.get("transaction_ids", []))
        return _dedupe(ids)


class TransactionMonitoringResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    SAR_SCORE_THRESHOLD: ClassVar[int] = 70

    party_id: str
    is_suspicious: bool
    risk_score: int = Field(ge=0, le=100)
    patterns: list[str] = Field(default_factory=list)
    reasons: list[str] = Field(default_factory=list)
    alerts: list[TransactionAlert] = Field(default_factory=list)
    period_start: datetime
    period_end: datetime
    transaction_count: int = 0
    total_volume: float = 0.0
    analyzed_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("patterns")
    @classmethod
    def _distinct_patterns(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @property
    def highest_severity(self) -> Severity | None:
        if not self.alerts:
            return None
        return max((a.severity for a in self.alerts), key=lambda s: s.rank)

    @property
    def alert_counts_by_severity(self) -> dict[str, int]:
        counts = {severity.value: 0 for severity in Severity}
        for alert in self.alerts:
            counts[alert.severity.value] += 1
        return counts

    @property
    def should_consider_sar(self) -> bool:
        if self.is_suspicious and self.risk_score >= self.SAR_SCORE_THRESHOLD:
            return True
        return any(a.is_high_severity for a in self.alerts)

    @property
    def review_sla_hours(self) -> int:
        return REVIEW_SLA_HOURS[self.highest_severity or Severity.LOW]

    def has_pattern(self, pattern: str) -> bool:
        return pattern in self.patterns


# ---------------------------------------------------------------------------
# Suspicious Activity Reports
# ---------------------------------------------------------------------------


class SARStatus(StrEnum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUBMITTED = "submitted"
    CLOSED = "closed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "SARStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]

    @property
    def allowed_targets(self) -> frozenset["SARStatus"]:
        return _ALLOWED_TRANSITIONS[self]

    @property
    def is_editable(self) -> bool:
        return self in _EDITABLE

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL

    @property
    def has_filing_reference(self) -> bool:
        return self in _FILED

    @property
    def phase(self) -> str:
        return _PHASE[self]


_ALLOWED_TRANSITIONS: dict[SARStatus, frozenset[SARStatus]] = {
    SARStatus.DRAFT: frozenset({SARStatus.PENDING_REVIEW, SARStatus.CANCELLED}),
    SARStatus.PENDING_REVIEW: frozenset(
        {SARStatus.APPROVED, SARStatus.REJECTED, SARStatus.CANCELLED}
    ),
    SARStatus.APPROVED: frozenset({SARStatus.SUBMITTED, SARStatus.CANCELLED}),
    SARStatus.SUBMITTED: frozenset({SARStatus.CLOSED}),
    SARStatus.REJECTED: frozenset(),
    SARStatus.CLOSED: frozenset(),
    SARStatus.CANCELLED: frozenset(),
}

# Narrative and transactions can only change before review starts
_EDITABLE: frozenset[SARStatus] = frozenset({SARStatus.DRAFT})

_TERMINAL: frozenset[SARStatus] = frozenset(
    {SARStatus.REJECTED, SARStatus.CLOSED, SARStatus.CANCELLED}
)

_FILED: frozenset[SARStatus] = frozenset({SARStatus.SUBMITTED, SARStatus.CLOSED})

_PHASE: dict[SARStatus, str] = {
    SARStatus.DRAFT: "preparation",
    SARStatus.PENDING_REVIEW: "review",
    SARStatus.APPROVED: "review",
    SARStatus.REJECTED: "review",
    SARStatus.SUBMITTED: "filed",
    SARStatus.CLOSED: "closed",
    SARStatus.CANCELLED: "closed",
}


class SARCategory(StrEnum):
    STRUCTURING = "structuring"
    MONEY_LAUNDERING = "money_laundering"
    TERRORIST_FINANCING = "terrorist_financing"
    FRAUD = "fraud"
    IDENTITY_THEFT = "identity_theft"
    SANCTIONS_EVASION = "sanctions_evasion"
    BRIBERY_CORRUPTION = "bribery_corruption"
    TAX_EVASION = "tax_evasion"
    INSIDER_TRADING = "insider_trading"
    SUSPICIOUS_PARTY = "suspicious_party"
    UNUSUAL_ACTIVITY = "unusual_activity"
    OTHER = "other"


class SuspiciousActivityReport(BaseModel):
    """A SAR case. Status changes go through the case manager's guards."""

    model_config = ConfigDict(frozen=True)

    sar_id: str
    party_id: str
    status: SARStatus = SARStatus.DRAFT
    category: str
    narrative: str = ""
    total_amount: float | None = None
    currency: str | None = None
    activity_start: datetime | None = None
    activity_end: datetime | None = None
    transaction_ids: list[str] = Field(default_factory=list)
    activity_tags: list[str] = Field(default_factory=list)
    alerts: list[TransactionAlert] = Field(default_factory=list)
    created_by: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    assigned_officer: str | None = None
    filing_reference: str | None = None
    rejection_reason: str | None = None
    cancellation_reason: str | None = None
    updated_at: datetime | None = None
    updated_by: str | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    review_comments: str | None = None
    submitted_by: str | None = None
    submitted_at: datetime | None = None
    resolution: str | None = None
    closed_at: datetime | None = None
    filing_deadline_days: int = Field(default=FILING_DEADLINE_DAYS, ge=1)

    @field_validator("transaction_ids", "activity_tags")
    @classmethod
    def _dedupe_lists(cls, v: list[str]) -> list[str]:
        return _dedupe(v)

    @field_validator("created_at")
    @classmethod
    def _utc_created(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("activity_start", "activity_end")
    @classmethod
    def _utc_activity(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v) if v is not None else None

    @model_validator(mode="after")
    def _check_invariants(self) -> "SuspiciousActivityReport":
        if self.status.has_filing_reference and not self.filing_reference:
            raise ValueError(f"filing_reference is required in status {self.status}")
        if not self.status.has_filing_reference and self.filing_reference:
            raise ValueError(f"filing_reference must be unset in status {self.status}")
        if (
            self.activity_start is not None
            and self.activity_end is not None
            and self.activity_end < self.activity_start
        ):
            raise ValueError("activity_end must not precede activity_start")
        return self

    def evolve(self, **changes: Any) -> "SuspiciousActivityReport":
        """Return a validated copy with ``changes`` applied."""
        return type(self).model_validate({**dict(self), **changes})

    @property
    def filing_deadline(self) -> datetime:
        return self.created_at + timedelta(days=self.filing_deadline_days)

    def days_until_deadline(self, now: datetime | None = None) -> int:
        now = _as_utc(now or datetime.now(UTC))
        return (self.filing_deadline - now).days

    def is_overdue(self, now: datetime | None = None) -> bool:
        """Past the deadline without having been filed or closed out."""
        if self.status.has_filing_reference or self.status.is_terminal:
            return False
        now = _as_utc(now or datetime.now(UTC))
        return now > self.filing_deadline


class SAREventType(StrEnum):
    CREATED = "sar-created"
    STATUS_CHANGED = "sar-status-changed"
    UPDATED = "sar-updated"


class SAREvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    event_type: SAREventType
    sar_id: str
    party_id: str
    status: SARStatus
    previous_status: SARStatus | None = None
    actor: str
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    details: dict[str, Any] = Field(default_factory=dict)
