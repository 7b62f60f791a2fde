"""Tests for multi-factor AML risk scoring.

Covers each factor in isolation, PEP amplification, the composite score and
its level bands, recommendations, and provider-backed assessment.
"""

from datetime import UTC, datetime, timedelta

import pytest

from src.domains.compliance.config import ComplianceConfig
from src.domains.compliance.errors import ComplianceError, ErrorKind
from src.domains.compliance.models import (
    AmlRiskScore,
    BeneficialOwner,
    Party,
    RiskFactors,
    RiskLevel,
    SanctionsResult,
)
from src.domains.compliance.monitoring import TransactionMonitor
from src.domains.compliance.providers import InMemoryPartyProvider
from src.domains.compliance.risk_scoring import RiskAssessor, TransactionProfile

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _make_party(**kwargs) -> Party:
    defaults = {
        "party_id": "party-001",
        "country_code": "US",
        "name": "Acme Trading LLC",
        "party_type": "organization",
    }
    defaults.update(kwargs)
    return Party(**defaults)


def _make_sanctions(**kwargs) -> SanctionsResult:
    defaults = {"party_id": "party-001", "has_matches": True, "match_count": 1}
    defaults.update(kwargs)
    return SanctionsResult(**defaults)


class TestJurisdictionRisk:
    def setup_method(self):
        self.assessor = RiskAssessor()

    def test_low_risk_primary_only(self):
        assert self.assessor.assess_jurisdiction_risk(_make_party(country_code="US")) == 7

    def test_high_risk_primary_only(self):
        assert self.assessor.assess_jurisdiction_risk(_make_party(country_code="NG")) == 49

    def test_lowercase_country_code(self):
        assert self.assessor.assess_jurisdiction_risk(_make_party(country_code="ng")) == 49

    def test_riskiest_associated_country_contributes_30_percent(self):
        party = _make_party(country_code="US", associated_country_codes=["GB", "NG"])
        # 10 * 0.7 + 70 * 0.3
        assert self.assessor.assess_jurisdiction_risk(party) == 28

    def test_associated_equal_to_primary_is_skipped(self):
        party = _make_party(country_code="NG", associated_country_codes=["NG"])
        assert self.assessor.assess_jurisdiction_risk(party) == 49

    def test_prohibited_associated_country_contributes_95(self):
        party = _make_party(country_code="US", associated_country_codes=["KP"])
        assert self.assessor.assess_jurisdiction_risk(party) == 36

    def test_prohibited_primary_raises(self):
        with pytest.raises(ComplianceError) as exc_info:
            self.assessor.assess_jurisdiction_risk(_make_party(country_code="KP"))
        assert exc_info.value.kind == ErrorKind.PROHIBITED_JURISDICTION
        assert exc_info.value.entity_id == "party-001"
        assert exc_info.value.context["country_code"] == "KP"

    def test_beneficial_owners_add_weighted_exposure(self):
        party = _make_party(
            beneficial_owners=[
                BeneficialOwner(name="A. Owner", ownership_percentage=50, country_code="NG"),
                BeneficialOwner(name="B. Owner", ownership_percentage=50, country_code="US"),
            ]
        )
        # 7 + round(mean(70, 10) * 0.2)
        assert self.assessor.assess_jurisdiction_risk(party) == 15

    def test_beneficial_owner_exposure_capped_at_20_points(self):
        party = _make_party(
            beneficial_owners=[
                BeneficialOwner(name="A. Owner", ownership_percentage=100, country_code="IR"),
            ]
        )
        assert self.assessor.assess_jurisdiction_risk(party) == 27

    def test_zero_ownership_owners_add_nothing(self):
        party = _make_party(
            beneficial_owners=[
                BeneficialOwner(name="A. Owner", ownership_percentage=0, country_code="SY"),
            ]
        )
        assert self.assessor.assess_jurisdiction_risk(party) == 7


class TestBusinessTypeRisk:
    def setup_method(self):
        self.assessor = RiskAssessor()

    def test_missing_industry_is_flat_50(self):
        party = _make_party(metadata={"is_cash_intensive": True, "high_value_transactions": True})
        assert self.assessor.assess_business_type_risk(party) == 50

    def test_naics_securities_is_high(self):
        assert self.assessor.assess_business_type_risk(_make_party(industry_code="523110")) == 75

    def test_naics_health_care_is_low(self):
        assert self.assessor.assess_business_type_risk(_make_party(industry_code="621111")) == 20

    def test_textual_casino_is_very_high(self):
        assert self.assessor.assess_business_type_risk(_make_party(industry_code="casino")) == 90

    def test_unknown_industry_is_medium(self):
        assert self.assessor.assess_business_type_risk(_make_party(industry_code="widgets")) == 50

    def test_add_ons(self):
        party = _make_party(
            industry_code="retail",
            associated_country_codes=["GB", "CA", "MX", "FR"],
            metadata={"is_cash_intensive": True, "high_value_transactions": True},
        )
        # 50 + 15 + 10 + 10
        assert self.assessor.assess_business_type_risk(party) == 85

    def test_three_associated_countries_is_not_international_exposure(self):
        party = _make_party(industry_code="retail", associated_country_codes=["GB", "CA", "MX"])
        assert self.assessor.assess_business_type_risk(party) == 50

    def test_clamped_to_100(self):
        party = _make_party(
            industry_code="casino",
            associated_country_codes=["GB", "CA", "MX", "FR"],
            metadata={"is_cash_intensive": True, "high_value_transactions": True},
        )
        assert self.assessor.assess_business_type_risk(party) == 100


class TestSanctionsRisk:
    def setup_method(self):
        self.assessor = RiskAssessor()

    def test_blocked_is_maximum(self):
        assert self.assessor.assess_sanctions_risk(_make_sanctions(is_blocked=True)) == 100

    def test_no_matches_is_zero(self):
        result = SanctionsResult(has_matches=False, highest_match_score=99)
        assert self.assessor.assess_sanctions_risk(result) == 0

    def test_confirmed_match_not_blocked(self):
        result = _make_sanctions(has_confirmed_match=True, highest_match_score=40)
        assert self.assessor.assess_sanctions_risk(result) == 90

    def test_scales_with_match_count(self):
        result = _make_sanctions(match_count=2, highest_match_score=80)
        assert self.assessor.assess_sanctions_risk(result) == 96

    def test_match_count_multiplier_capped(self):
        result = _make_sanctions(match_count=10, highest_match_score=60)
        assert self.assessor.assess_sanctions_risk(result) == 90

    def test_clamped_to_100(self):
        result = _make_sanctions(match_count=5, highest_match_score=90)
        assert self.assessor.assess_sanctions_risk(result) == 100


class TestTransactionRisk:
    def setup_method(self):
        self.assessor = RiskAssessor()

    def test_empty_profile_is_zero(self):
        assert self.assessor.assess_transaction_risk(TransactionProfile()) == 0

    def test_volume_over_threshold(self):
        assert self.assessor.assess_transaction_risk(TransactionProfile(total_volume=1_500_000)) == 15

    def test_volume_ratio_capped_at_two(self):
        assert self.assessor.assess_transaction_risk(TransactionProfile(total_volume=5_000_000)) == 30

    def test_custom_volume_threshold(self):
        profile = TransactionProfile(total_volume=200_000, volume_threshold=100_000)
        assert self.assessor.assess_transaction_risk(profile) == 30

    def test_frequency_spike(self):
        profile = TransactionProfile(transaction_count=50, average_frequency=10)
        assert self.assessor.assess_transaction_risk(profile) == 20

    def test_frequency_without_history_is_neutral(self):
        assert self.assessor.assess_transaction_risk(TransactionProfile(transaction_count=50)) == 0

    def test_country_diversity(self):
        assert self.assessor.assess_transaction_risk(TransactionProfile(unique_countries=8)) == 9

    def test_country_diversity_capped(self):
        assert self.assessor.assess_transaction_risk(TransactionProfile(unique_countries=20)) == 15

    def test_high_risk_country_ratio_rounds_half_up(self):
        profile = TransactionProfile(transaction_count=10, high_risk_country_transactions=5)
        assert self.assessor.assess_transaction_risk(profile) == 13

    @pytest.mark.parametrize(("count", "high_risk"), [(0, 3), (2, 10)])
    def test_high_risk_country_signal_capped(self, count, high_risk):
        profile = TransactionProfile(transaction_count=count, high_risk_country_transactions=high_risk)
        assert self.assessor.assess_transaction_risk(profile) == 25

    def test_structuring_flag(self):
        assert self.assessor.assess_transaction_risk({"structuring_detected": True}) == 30

    def test_round_amount_percentage(self):
        profile = TransactionProfile(round_amount_percentage=0.9)
        assert self.assessor.assess_transaction_risk(profile) == 15

    def test_total_clamped_to_100(self):
        profile = TransactionProfile(
            total_volume=5_000_000,
            transaction_count=50,
            average_frequency=10,
            unique_countries=20,
            high_risk_country_transactions=50,
            structuring_detected=True,
            round_amount_percentage=1.0,
        )
        assert self.assessor.assess_transaction_risk(profile) == 100

    def test_malformed_mapping_is_invalid_input(self):
        with pytest.raises(ComplianceError) as exc_info:
            self.assessor.assess_transaction_risk({"transaction_count": "many"})
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT


class TestPepMultiplier:
    def test_level_one_pep_amplifies_jurisdiction_and_business(self, monkeypatch):
        assessor = RiskAssessor()
        monkeypatch.setattr(assessor, "assess_jurisdiction_risk", lambda party: 60)
        monkeypatch.setattr(assessor, "assess_business_type_risk", lambda party: 40)
        party = _make_party(is_pep=True, pep_level=1)
        sanctions = _make_sanctions(match_count=0, highest_match_score=50)

        score = assessor.assess(party, sanctions, {"structuring_detected": True}, now=NOW)

        assert score.factors.jurisdiction_score == 100
        assert score.factors.business_type_score == 80
        assert score.factors.sanctions_score == 50
        assert score.factors.transaction_score == 30

    @pytest.mark.parametrize(
        ("level", "expected"),
        [(1, 2.0), (2, 1.8), (3, 1.5), (4, 1.3), (5, 1.2), (None, 1.2), (9, 1.2)],
    )
    def test_multiplier_by_level(self, level, expected):
        party = _make_party(is_pep=True, pep_level=level)
        assert RiskAssessor().get_pep_multiplier(party) == expected

    def test_non_pep_is_neutral(self):
        assert RiskAssessor().get_pep_multiplier(_make_party(pep_level=1)) == 1.0

    def test_amplified_scores_are_truncated(self):
        party = _make_party(country_code="NG", industry_code="retail", is_pep=True, pep_level=3)
        score = RiskAssessor().assess(party, now=NOW)
        # 49 * 1.5 = 73.5
        assert score.factors.jurisdiction_score == 73
        assert score.factors.business_type_score == 75

    def test_multiplier_recorded_in_metadata(self):
        party = _make_party(is_pep=True, pep_level=2)
        score = RiskAssessor().assess(party, now=NOW)
        assert score.factors.metadata == {"pep_multiplier": 1.8, "pep_level": 2}


class TestAssess:
    def test_high_risk_pep_with_sanctions_match(self):
        party = _make_party(country_code="NG", is_pep=True, pep_level=1)
        sanctions = _make_sanctions(highest_match_score=85)

        score = RiskAssessor().assess(party, sanctions, now=NOW)

        assert score.factors.jurisdiction_score == 98
        assert score.factors.business_type_score == 100
        assert score.factors.sanctions_score == 94
        assert score.overall_score == 73
        assert score.risk_level == RiskLevel.HIGH
        assert score.requires_edd is True
        assert score.next_review_at == NOW + timedelta(days=90)

    def test_low_risk_party(self):
        score = RiskAssessor().assess(_make_party(industry_code="621111"), now=NOW)
        assert score.overall_score == 6
        assert score.risk_level == RiskLevel.LOW
        assert score.requires_edd is False
        assert score.next_review_at == NOW + timedelta(days=365)

    def test_deterministic(self):
        assessor = RiskAssessor()
        party = _make_party(country_code="PH", industry_code="real_estate", is_pep=True)
        sanctions = _make_sanctions(highest_match_score=55, match_count=3)
        first = assessor.assess(party, sanctions, {"unique_countries": 9}, now=NOW)
        second = assessor.assess(party, sanctions, {"unique_countries": 9}, now=NOW)
        assert first.model_dump() == second.model_dump()

    @pytest.mark.parametrize("country", ["US", "NG", "SY", "BR", "GB"])
    @pytest.mark.parametrize("industry", [None, "casino", "621111", "retail"])
    def test_scores_within_bounds(self, country, industry):
        party = _make_party(
            country_code=country,
            industry_code=industry,
            associated_country_codes=["IR", "SY", "CU", "YE"],
            is_pep=True,
            pep_level=1,
            metadata={"is_cash_intensive": True},
        )
        score = RiskAssessor().assess(
            party,
            _make_sanctions(is_blocked=True),
            {"structuring_detected": True, "total_volume": 9_000_000},
            now=NOW,
        )
        for value in score.factors.as_dict().values():
            assert 0 <= value <= 100
        assert 0 <= score.overall_score <= 100

    def test_missing_party_id_is_invalid_input(self):
        with pytest.raises(ComplianceError) as exc_info:
            RiskAssessor().assess(_make_party(party_id="  "))
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT

    @pytest.mark.parametrize("country", ["USA", "U", "", "1A"])
    def test_malformed_country_is_invalid_input(self, country):
        with pytest.raises(ComplianceError) as exc_info:
            RiskAssessor().assess(_make_party(country_code=country))
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT
        assert exc_info.value.entity_id == "party-001"

    def test_prohibited_primary_aborts_assessment(self):
        with pytest.raises(ComplianceError) as exc_info:
            RiskAssessor().assess(_make_party(country_code="IR"))
        assert exc_info.value.kind == ErrorKind.PROHIBITED_JURISDICTION

    def test_assessed_by_recorded(self):
        score = RiskAssessor().assess(_make_party(), assessed_by="analyst-7", now=NOW)
        assert score.assessed_by == "analyst-7"
        assert score.assessed_at == NOW


class TestRiskLevelBands:
    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (0, RiskLevel.LOW),
            (39, RiskLevel.LOW),
            (40, RiskLevel.MEDIUM),
            (69, RiskLevel.MEDIUM),
            (70, RiskLevel.HIGH),
            (100, RiskLevel.HIGH),
        ],
    )
    def test_band_boundaries(self, score, level):
        assert RiskAssessor().get_risk_level(score) == level

    @pytest.mark.parametrize(
        ("level", "days"),
        [(RiskLevel.LOW, 365), (RiskLevel.MEDIUM, 180), (RiskLevel.HIGH, 90)],
    )
    def test_next_review_date(self, level, days):
        assert RiskAssessor().calculate_next_review_date(level, NOW) == NOW + timedelta(days=days)

    def test_review_days_configurable(self):
        config = ComplianceConfig()
        config.risk_scoring.high_review_days = 30
        review = RiskAssessor(config).calculate_next_review_date(RiskLevel.HIGH, NOW)
        assert review == NOW + timedelta(days=30)


class TestRecommendations:
    def _score(self, **factors) -> AmlRiskScore:
        return AmlRiskScore(party_id="party-001", factors=RiskFactors(**factors), assessed_at=NOW)

    def test_ordering_and_overall(self):
        score = self._score(
            jurisdiction_score=80,
            business_type_score=80,
            sanctions_score=45,
            transaction_score=75,
        )
        recommendations = RiskAssessor().generate_recommendations(score)

        assert score.overall_score == 70
        assert recommendations[0] == "Enhanced Due Diligence required due to high-risk jurisdiction"
        assert recommendations.index("Enhanced monitoring for high-risk business type") > 2
        assert "Review potential sanctions matches" in recommendations
        assert recommendations[-2:] == [
            "Quarterly risk review required",
            "Senior management approval required for continued relationship",
        ]
        assert len(recommendations) == len(set(recommendations))

    def test_elevated_band(self):
        score = self._score(jurisdiction_score=40, transaction_score=69)
        recommendations = RiskAssessor().generate_recommendations(score)
        assert recommendations == [
            "Consider additional jurisdiction verification",
            "Monitor transaction patterns closely",
        ]

    def test_no_recommendations_for_low_factors(self):
        assert RiskAssessor().generate_recommendations(self._score(jurisdiction_score=39)) == []

    def test_assess_attaches_recommendations(self):
        party = _make_party(country_code="NG", is_pep=True, pep_level=1)
        score = RiskAssessor().assess(party, _make_sanctions(is_blocked=True), now=NOW)
        assert "URGENT: Review sanctions matches immediately" in score.recommendations
        assert "Quarterly risk review required" in score.recommendations


class _StubSanctionsProvider:
    def __init__(self, result=None, error: Exception | None = None):
        self.result = result
        self.error = error
        self.calls: list[str] = []

    def get_sanctions_result(self, party):
        self.calls.append(party.party_id)
        if self.error:
            raise self.error
        return self.result


class _FailingPartyProvider:
    def get_party(self, party_id):
        raise ConnectionError("party service unavailable")


class TestAssessById:
    def test_loads_party_and_sanctions(self):
        provider = InMemoryPartyProvider([_make_party(country_code="NG")])
        sanctions = _StubSanctionsProvider(_make_sanctions(is_blocked=True))
        assessor = RiskAssessor(party_provider=provider, sanctions_provider=sanctions)

        score = assessor.assess_by_id("party-001", now=NOW)

        assert sanctions.calls == ["party-001"]
        assert score.factors.sanctions_score == 100
        assert score.factors.jurisdiction_score == 49

    def test_unknown_party_is_not_found(self):
        assessor = RiskAssessor(party_provider=InMemoryPartyProvider())
        with pytest.raises(ComplianceError) as exc_info:
            assessor.assess_by_id("ghost")
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert exc_info.value.entity_id == "ghost"

    def test_party_provider_failure(self):
        assessor = RiskAssessor(party_provider=_FailingPartyProvider())
        with pytest.raises(ComplianceError) as exc_info:
            assessor.assess_by_id("party-001")
        assert exc_info.value.kind == ErrorKind.EXTERNAL_PROVIDER_FAILURE
        assert exc_info.value.context["provider"] == "party_provider"
        assert isinstance(exc_info.value.__cause__, ConnectionError)

    def test_sanctions_provider_failure(self):
        assessor = RiskAssessor(
            party_provider=InMemoryPartyProvider([_make_party()]),
            sanctions_provider=_StubSanctionsProvider(error=TimeoutError("slow")),
        )
        with pytest.raises(ComplianceError) as exc_info:
            assessor.assess_by_id("party-001")
        assert exc_info.value.kind == ErrorKind.EXTERNAL_PROVIDER_FAILURE
        assert exc_info.value.context["operation"] == "get_sanctions_result"

    def test_without_provider_is_invalid_input(self):
        with pytest.raises(ComplianceError) as exc_info:
            RiskAssessor().assess_by_id("party-001")
        assert exc_info.value.kind == ErrorKind.INVALID_INPUT


class TestTransactionProfileFromMonitoring:
    def test_profile_reflects_monitoring_result(self):
        transactions = [
            {"id": f"tx-{i}", "amount": 9_000.0, "date": NOW - timedelta(days=i), "counterparty_country": "NG"}
            for i in range(1, 4)
        ]
        result = TransactionMonitor().monitor(
            "party-001", transactions, NOW - timedelta(days=30), NOW, now=NOW
        )

        profile = TransactionProfile.from_monitoring_result(result)

        assert profile.structuring_detected is True
        assert profile.transaction_count == 3
        assert profile.total_volume == 27_000.0
        assert profile.high_risk_country_transactions == 3
        # structuring 30 + all three in a high-risk country 25
        assert RiskAssessor().assess_transaction_risk(profile) == 55
