"""Multi-factor AML risk scoring for a counterparty.

Computes a composite risk score (0–100) from four factor categories:
  1. Jurisdiction (30%)
  2. Business type (20%)
  3. Sanctions screening (25%)
  4. Transaction profile (25%)

Jurisdiction and business type are amplified for Politically Exposed Persons
before weighting. The weights and level bands live in models.py so that a
score is always a pure function of its factors.

Risk levels:
  low     (0–39)   Standard monitoring, annual review
  medium  (40–69)  Enhanced monitoring, semi-annual review
  high    (70–100) EDD required, quarterly review

Regulatory basis:
  31 CFR § 1010.230 — Customer Due Diligence (CDD Rule)
  FATF Recommendation 10 — risk-based customer due diligence
  FATF Recommendation 12 — Politically Exposed Persons
  FATF Recommendation 19 — higher-risk countries
"""

import re
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from .config import ComplianceConfig, default_config
from .errors import (
    ComplianceError,
    external_provider_failure,
    invalid_input,
    not_found,
    prohibited_jurisdiction,
)
from .jurisdictions import (
    BUSINESS_TYPE_SCORES,
    JurisdictionRisk,
    business_type_risk,
    jurisdiction_risk,
    jurisdiction_score,
)
from .models import (
    AlertCategory,
    AmlRiskScore,
    MonitoringPattern,
    Party,
    RiskFactors,
    RiskLevel,
    SanctionsResult,
    TransactionMonitoringResult,
    clamp_score,
    round_half_up,
)
from .providers import PartyProvider, SanctionsProvider

_COUNTRY_CODE = re.compile(r"^[A-Za-z]{2}$")


# ---------------------------------------------------------------------------
# Transaction profile input
# ---------------------------------------------------------------------------


class TransactionProfile(BaseModel):
    """Aggregated transaction statistics for the transaction risk factor.

    ``volume_threshold`` falls back to the configured default and
    ``average_frequency`` to ``transaction_count`` (a ratio of 1).
    """

    total_volume: float = 0.0
    volume_threshold: float | None = None
    transaction_count: int = 0
    average_frequency: float | None = None
    unique_countries: int = 1
    high_risk_country_transactions: int = 0
    structuring_detected: bool = False
    round_amount_percentage: float = 0.0

    @classmethod
    def from_monitoring_result(
        cls, result: TransactionMonitoringResult
    ) -> "TransactionProfile":
        """Derive a profile from what the transaction monitor observed."""
        high_risk_tx: set[str] = set()
        countries: set[str] = set()
        country_count = 0
        round_pct = 0.0

        for alert in result.alerts:
            if alert.category == AlertCategory.GEOGRAPHIC_ANOMALY:
                if country := alert.evidence.get("country"):
                    countries.add(country)
                    if alert.transaction_id:
                        high_risk_tx.add(alert.transaction_id)
                country_count = max(country_count, int(alert.evidence.get("country_count", 0)))
            elif alert.category == AlertCategory.ROUND_AMOUNT:
                round_pct = max(round_pct, float(alert.evidence.get("round_percentage", 0.0)))

        return cls(
            total_volume=result.total_volume,
            transaction_count=result.transaction_count,
            unique_countries=max(1, country_count, len(countries)),
            high_risk_country_transactions=len(high_risk_tx),
            structuring_detected=result.has_pattern(MonitoringPattern.STRUCTURING),
            round_amount_percentage=round_pct,
        )


# ---------------------------------------------------------------------------
# Recommendations
# ---------------------------------------------------------------------------

_HIGH = 70
_ELEVATED = 40

_RECOMMENDATIONS: list[tuple[str, list[str], list[str]]] = [
    (
        "jurisdiction",
        [
            "Enhanced Due Diligence required due to high-risk jurisdiction",
            "Verify source of funds documentation",
            "Obtain additional beneficial ownership information",
        ],
        ["Consider additional jurisdiction verification"],
    ),
    (
        "business_type",
        [
            "Enhanced monitoring for high-risk business type",
            "Verify business license and registration",
            "Implement enhanced transaction monitoring",
        ],
        ["Verify nature of business and expected account activity"],
    ),
    (
        "sanctions",
        [
            "URGENT: Review sanctions matches immediately",
            "Escalate to compliance officer",
            "Consider relationship termination if match confirmed",
        ],
        [
            "Review potential sanctions matches",
            "Document false positive analysis if applicable",
        ],
    ),
    (
        "transaction",
        [
            "Review transaction patterns for suspicious activity",
            "Consider filing SAR if patterns persist",
        ],
        ["Monitor transaction patterns closely"],
    ),
]

_OVERALL_HIGH = [
    "Quarterly risk review required",
    "Senior management approval required for continued relationship",
]
_OVERALL_ELEVATED = ["Semi-annual risk review required"]


# ---------------------------------------------------------------------------
# Assessor
# ---------------------------------------------------------------------------


class RiskAssessor:
    """Scores a party's AML risk. Holds configuration only; no mutable state."""

    def __init__(
        self,
        config: ComplianceConfig | None = None,
        party_provider: PartyProvider | None = None,
        sanctions_provider: SanctionsProvider | None = None,
        logger: Any = None,
    ) -> None:
        self.config = config or default_config
        self.party_provider = party_provider
        self.sanctions_provider = sanctions_provider
        self._log = logger or structlog.get_logger()

    # ---- Entry points ----

    def assess(
        self,
        party: Party,
        sanctions_result: SanctionsResult | None = None,
        transaction_data: TransactionProfile | Mapping[str, Any] | None = None,
        *,
        assessed_by: str = "system",
        now: datetime | None = None,
    ) -> AmlRiskScore:
        """Compute the AML risk score for ``party``.

        Raises a prohibited-jurisdiction error when the primary country is on
        the hard blocklist, and an invalid-input error for a missing party id
        or malformed country code.
        """
        self._validate_party(party)
        now = now or datetime.now(UTC)

        jurisdiction = self.assess_jurisdiction_risk(party)
        business_type = self.assess_business_type_risk(party)
        sanctions = (
            self.assess_sanctions_risk(sanctions_result)
            if sanctions_result is not None
            else 0
        )
        transaction = (
            self.assess_transaction_risk(transaction_data) if transaction_data else 0
        )

        multiplier = self.get_pep_multiplier(party)
        factors = RiskFactors(
            jurisdiction_score=int(min(100, jurisdiction * multiplier)),
            business_type_score=int(min(100, business_type * multiplier)),
            sanctions_score=sanctions,
            transaction_score=transaction,
            metadata={"pep_multiplier": multiplier, "pep_level": party.pep_level},
        )

        preliminary = AmlRiskScore(
            party_id=party.party_id,
            factors=factors,
            assessed_at=now,
            assessed_by=assessed_by,
        )
        score = AmlRiskScore(
            party_id=party.party_id,
            factors=factors,
            recommendations=self.generate_recommendations(preliminary),
            assessed_at=now,
            assessed_by=assessed_by,
            next_review_at=self.calculate_next_review_date(preliminary.risk_level, now),
        )

        self._log.info(
            "risk_score_computed",
            party_id=party.party_id,
            overall_score=score.overall_score,
            risk_level=score.risk_level.value,
            jurisdiction_score=factors.jurisdiction_score,
            business_type_score=factors.business_type_score,
            sanctions_score=factors.sanctions_score,
            transaction_score=factors.transaction_score,
            pep_multiplier=multiplier,
            requires_edd=score.requires_edd,
        )
        return score

    def assess_by_id(
        self,
        party_id: str,
        transaction_data: TransactionProfile | Mapping[str, Any] | None = None,
        *,
        assessed_by: str = "system",
        now: datetime | None = None,
    ) -> AmlRiskScore:
        """Load the party and its sanctions result from the injected providers, then assess."""
        if self.party_provider is None:
            raise invalid_input("party_provider", "no party provider configured", entity_id=party_id)

        try:
            party = self.party_provider.get_party(party_id)
        except ComplianceError:
            raise
        except Exception as e:
            self._log.error("party_lookup_failed", party_id=party_id, error=str(e))
            raise external_provider_failure("party_provider", "get_party", e, party_id) from e
        if party is None:
            raise not_found("Party", party_id)

        sanctions_result = None
        if self.sanctions_provider is not None:
            try:
                sanctions_result = self.sanctions_provider.get_sanctions_result(party)
            except ComplianceError:
                raise
            except Exception as e:
                self._log.error("sanctions_lookup_failed", party_id=party_id, error=str(e))
                raise external_provider_failure(
                    "sanctions_provider", "get_sanctions_result", e, party_id
                ) from e

        return self.assess(
            party,
            sanctions_result,
            transaction_data,
            assessed_by=assessed_by,
            now=now,
        )

    # ---- Factors ----

    def assess_jurisdiction_risk(self, party: Party) -> int:
        """Primary country 70%, riskiest associated country 30%, plus UBO exposure.

        Regulatory basis: FATF Recommendation 19 and 31 CFR § 1010.230
        (beneficial ownership).
        """
        rc = self.config.risk_scoring
        country = party.country_code.strip().upper()
        primary = jurisdiction_risk(country)
        if primary == JurisdictionRisk.PROHIBITED:
            self._log.warning(
                "prohibited_jurisdiction_detected",
                party_id=party.party_id,
                country_code=country,
            )
            raise prohibited_jurisdiction(party.party_id, country)

        max_associated = 0
        for code in party.associated_country_codes:
            code = code.strip().upper()
            if code == country:
                continue
            risk = jurisdiction_risk(code)
            if risk == JurisdictionRisk.PROHIBITED:
                max_associated = max(max_associated, rc.prohibited_associated_score)
            else:
                max_associated = max(max_associated, jurisdiction_score(code))

        score = round_half_up(
            jurisdiction_score(country) * rc.primary_jurisdiction_weight
            + max_associated * rc.associated_jurisdiction_weight
        )

        if party.beneficial_owners:
            owner_risk = self._beneficial_owner_risk(party)
            score = min(100, score + round_half_up(owner_risk * rc.beneficial_owner_weight))

        self._log.debug(
            "jurisdiction_risk_assessed",
            party_id=party.party_id,
            country_code=country,
            primary_risk=primary.value,
            score=score,
        )
        return clamp_score(score)

    def _beneficial_owner_risk(self, party: Party) -> int:
        total_risk = 0.0
        total_weight = 0.0
        for owner in party.beneficial_owners:
            weight = owner.ownership_percentage / 100
            total_risk += jurisdiction_score(owner.country_code) * weight
            total_weight += weight
        if total_weight == 0:
            return 0
        return round_half_up(total_risk / total_weight)

    def assess_business_type_risk(self, party: Party) -> int:
        rc = self.config.risk_scoring
        if not party.industry_code:
            return rc.missing_industry_score

        tier = business_type_risk(party.industry_code)
        score = BUSINESS_TYPE_SCORES[tier]
        if party.is_cash_intensive:
            score += rc.cash_intensive_points
        if party.has_high_value_transactions:
            score += rc.high_value_points
        if len(party.associated_country_codes) > rc.international_exposure_min_countries:
            score += rc.international_exposure_points

        self._log.debug(
            "business_type_risk_assessed",
            party_id=party.party_id,
            industry_code=party.industry_code,
            business_risk=tier.value,
            score=min(100, score),
        )
        return min(100, score)

    def assess_sanctions_risk(self, result: SanctionsResult) -> int:
        rc = self.config.risk_scoring
        if result.is_blocked:
            return 100
        if not result.has_matches:
            return 0
        if result.has_confirmed_match:
            return rc.confirmed_match_score

        multiplier = min(
            rc.max_match_count_multiplier,
            1.0 + result.match_count * rc.match_count_step,
        )
        return min(100, round_half_up(result.highest_match_score * multiplier))

    def assess_transaction_risk(
        self, data: TransactionProfile | Mapping[str, Any]
    ) -> int:
        if isinstance(data, Mapping):
            try:
                data = TransactionProfile.model_validate(dict(data))
            except ValidationError as e:
                raise invalid_input("transaction_data", str(e)) from e

        threshold = data.volume_threshold or self.config.risk_scoring.default_volume_threshold
        score = 0

        if data.total_volume > threshold:
            ratio = min(2.0, data.total_volume / threshold)
            score += round_half_up(30 * (ratio - 1))

        average = data.average_frequency if data.average_frequency is not None else data.transaction_count
        if data.transaction_count > 0 and average > 0:
            frequency_ratio = data.transaction_count / average
            if frequency_ratio > 2.0:
                score += round_half_up(min(20, (frequency_ratio - 2) * 10))

        if data.unique_countries > 5:
            score += min(15, (data.unique_countries - 5) * 3)

        if data.high_risk_country_transactions > 0:
            ratio = min(1.0, data.high_risk_country_transactions / max(1, data.transaction_count))
            score += min(25, round_half_up(25 * ratio))

        if data.structuring_detected:
            score += 30

        if data.round_amount_percentage > 0.6:
            score += round_half_up((data.round_amount_percentage - 0.6) * 50)

        return min(100, score)

    def get_pep_multiplier(self, party: Party) -> float:
        rc = self.config.risk_scoring
        if not party.is_pep:
            return 1.0
        level = party.pep_level if party.pep_level is not None else rc.default_pep_level
        return rc.pep_multipliers.get(level, rc.default_pep_multiplier)

    # ---- Derived outputs ----

    def get_risk_level(self, score: int) -> RiskLevel:
        return RiskLevel.from_score(clamp_score(score))

    def requires_edd(self, score: AmlRiskScore) -> bool:
        return score.requires_edd

    def generate_recommendations(self, score: AmlRiskScore) -> list[str]:
        """Banded advice per factor (>= 70, 40–69), then for the overall score."""
        factors = score.factors.as_dict()
        recommendations: list[str] = []
        for name, high, elevated in _RECOMMENDATIONS:
            if factors[name] >= _HIGH:
                recommendations.extend(high)
            elif factors[name] >= _ELEVATED:
                recommendations.extend(elevated)

        if score.overall_score >= _HIGH:
            recommendations.extend(_OVERALL_HIGH)
        elif score.overall_score >= _ELEVATED:
            recommendations.extend(_OVERALL_ELEVATED)

        return list(dict.fromkeys(recommendations))

    def calculate_next_review_date(
        self, level: RiskLevel, now: datetime | None = None
    ) -> datetime:
        rc = self.config.risk_scoring
        days = {
            RiskLevel.LOW: rc.low_review_days,
            RiskLevel.MEDIUM: rc.medium_review_days,
            RiskLevel.HIGH: rc.high_review_days,
        }[level]
        return (now or datetime.now(UTC)) + timedelta(days=days)

    # ---- Input checks ----

    def _validate_party(self, party: Party) -> None:
        if not party.party_id or not party.party_id.strip():
            raise invalid_input("party_id", "party id is required")
        if not _COUNTRY_CODE.match(party.country_code.strip()):
            raise invalid_input(
                "country_code",
                f"expected a two-letter ISO country code, got {party.country_code!r}",
                entity_id=party.party_id,
            )
