"""SAR (Suspicious Activity Report) case management.

Creates SAR cases from monitoring results, risk assessments or analyst input,
synthesizes their narratives, and moves them through a guarded lifecycle:

  draft → pending_review → approved → submitted → closed
                         ↘ rejected
  any non-terminal state except submitted → cancelled

Approval follows maker-checker: the officer approving a SAR must not be the
one who created it. Nothing is ever deleted; every saved version stays in the
repository for audit.

Regulatory basis:
  31 CFR § 1020.320 — SAR filing requirements
  31 CFR § 1020.320(b)(3) — filing within 30 calendar days of detection
  FinCEN SAR filing instructions — narrative elements (who, what, when,
  where, why, how)
"""

import secrets
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import structlog

from .config import SARConfig, default_config
from .errors import (
    ComplianceError,
    already_submitted,
    approval_required,
    external_provider_failure,
    insufficient_evidence,
    invalid_input,
    invalid_transition,
    not_found,
    operation_not_allowed,
)
from .models import (
    AmlRiskScore,
    MonitoringPattern,
    Party,
    SARCategory,
    SAREvent,
    SAREventType,
    SARStatus,
    SuspiciousActivityReport,
    TransactionMonitoringResult,
    _as_utc,
)
from .providers import EventSink, InMemorySARRepository, PartyProvider, SARRepository

VALID_CATEGORIES: frozenset[str] = frozenset(c.value for c in SARCategory)

# First matching pattern decides the category
_CATEGORY_PRIORITY: list[tuple[MonitoringPattern, SARCategory]] = [
    (MonitoringPattern.STRUCTURING, SARCategory.STRUCTURING),
    (MonitoringPattern.LAYERING, SARCategory.MONEY_LAUNDERING),
    (MonitoringPattern.GEOGRAPHIC, SARCategory.SANCTIONS_EVASION),
    (MonitoringPattern.VELOCITY, SARCategory.UNUSUAL_ACTIVITY),
    (MonitoringPattern.ROUND_AMOUNTS, SARCategory.STRUCTURING),
]

HIGH_RISK_JURISDICTION_SCORE = 50
NARRATIVE_PREVIEW_LENGTH = 200
# PEPs without a recorded level are treated as the lowest tier
DEFAULT_PEP_LEVEL = default_config.risk_scoring.default_pep_level


# ---------------------------------------------------------------------------
# Narrative synthesis
# ---------------------------------------------------------------------------


def category_for_patterns(patterns: Iterable[str]) -> SARCategory:
    detected = set(patterns)
    for pattern, category in _CATEGORY_PRIORITY:
        if pattern in detected:
            return category
    return SARCategory.OTHER


def _subject_line(party_id: str, party: Party | None) -> str:
    if party is None:
        return f"Subject: party {party_id}."
    return (
        f"Subject: {party.display_name} (ID: {party.party_id}), "
        f"a {party.party_type} operating in {party.country_code}."
    )


def build_monitoring_narrative(
    result: TransactionMonitoringResult,
    party: Party | None = None,
    currency: str = "USD",
) -> str:
    """WHO, WHAT, WHEN, amount, WHY and an alert summary, separated by blank lines."""
    parts = [
        _subject_line(result.party_id, party),
        (
            "During the monitoring period, the following suspicious patterns "
            f"were detected: {', '.join(result.patterns)}."
        ),
        (
            f"Activity period: {result.period_start:%Y-%m-%d} "
            f"to {result.period_end:%Y-%m-%d}."
        ),
    ]
    if result.total_volume > 0:
        parts.append(
            f"Total transaction volume: {result.total_volume:.2f} {currency} "
            f"across {result.transaction_count} transactions."
        )
    if result.reasons:
        parts.append("Reasons for suspicion: " + " ".join(result.reasons))
    if result.alerts:
        severity = result.highest_severity
        parts.append(
            f"Total alerts generated: {len(result.alerts)}. "
            f"Highest severity: {severity.value if severity else 'unknown'}."
        )
    return "\n\n".join(parts)


def _pep_level(score: AmlRiskScore, party: Party | None) -> int | None:
    """PEP level when the subject is a PEP, else None."""
    if party is not None:
        if not party.is_pep:
            return None
        return party.pep_level if party.pep_level is not None else DEFAULT_PEP_LEVEL
    if score.factors.metadata.get("pep_multiplier", 1.0) > 1.0:
        level = score.factors.metadata.get("pep_level")
        return level if level is not None else DEFAULT_PEP_LEVEL
    return None


def build_risk_assessment_narrative(
    score: AmlRiskScore,
    reason: str,
    party: Party | None = None,
) -> str:
    factors = score.factors
    parts = [
        _subject_line(score.party_id, party),
        (
            f"Risk Assessment: Overall score of {score.overall_score} "
            f"(Level: {score.risk_level.value}). Assessment performed on "
            f"{score.assessed_at:%Y-%m-%d %H:%M:%S} by {score.assessed_by or 'system'}."
        ),
        (
            f"Risk Factor Breakdown: Jurisdiction Risk: {factors.jurisdiction_score}, "
            f"Business Type Risk: {factors.business_type_score}, "
            f"Sanctions Risk: {factors.sanctions_score}, "
            f"Transaction Risk: {factors.transaction_score}."
        ),
    ]
    pep_level = _pep_level(score, party)
    if pep_level is not None:
        parts.append(f"Note: Subject is a Politically Exposed Person (Level {pep_level}).")
    parts.append(f"Reason for filing: {reason}")
    if score.recommendations:
        parts.append("Recommendations: " + "; ".join(score.recommendations))
    return "\n\n".join(parts)


def risk_assessment_tags(score: AmlRiskScore, party: Party | None = None) -> list[str]:
    tags: list[str] = []
    if _pep_level(score, party) is not None:
        tags.append("pep_involvement")
    if score.factors.has_sanctions_risk():
        tags.append("sanctions_exposure")
    if score.factors.jurisdiction_score >= HIGH_RISK_JURISDICTION_SCORE:
        tags.append("high_risk_jurisdiction")
    return tags or ["elevated_risk_score"]


# ---------------------------------------------------------------------------
# Case manager
# ---------------------------------------------------------------------------


class CaseManager:
    """Creates SARs and enforces their lifecycle.

    Every successful change is saved to the repository, then published to the
    event sink. A failing sink is logged and never undoes a saved change.
    """

    def __init__(
        self,
        config: SARConfig | None = None,
        repository: SARRepository | None = None,
        party_provider: PartyProvider | None = None,
        event_sink: EventSink | None = None,
        logger: Any = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config or default_config.sar
        self.repository = repository if repository is not None else InMemorySARRepository()
        self.party_provider = party_provider
        self.event_sink = event_sink
        self._log = logger or structlog.get_logger()
        self._clock = clock or (lambda: datetime.now(UTC))

    # ---- Creation ----

    def create_from_monitoring(
        self,
        result: TransactionMonitoringResult,
        created_by: str,
        party: Party | None = None,
    ) -> SuspiciousActivityReport:
        if not result.is_suspicious:
            raise insufficient_evidence(
                result.party_id,
                risk_score=result.risk_score,
                transaction_count=result.transaction_count,
            )

        party = party or self._resolve_party(result.party_id)
        transaction_ids: list[str] = []
        for alert in result.alerts:
            transaction_ids.extend(alert.referenced_transaction_ids())

        sar = self._new_sar(
            party_id=result.party_id,
            category=category_for_patterns(result.patterns).value,
            narrative=build_monitoring_narrative(result, party, self.config.default_currency),
            total_amount=result.total_volume,
            currency=self.config.default_currency,
            activity_start=result.period_start,
            activity_end=result.period_end,
            transaction_ids=transaction_ids,
            activity_tags=[alert.category.value for alert in result.alerts],
            alerts=list(result.alerts),
            created_by=created_by,
        )
        return self._store_new(sar, source="transaction_monitoring")

    def create_from_risk_assessment(
        self,
        score: AmlRiskScore,
        reason: str,
        created_by: str,
        party: Party | None = None,
    ) -> SuspiciousActivityReport:
        if not reason or not reason.strip():
            raise invalid_input("reason", "a reason for filing is required", entity_id=score.party_id)

        party = party or self._resolve_party(score.party_id)
        sar = self._new_sar(
            party_id=score.party_id,
            category=SARCategory.SUSPICIOUS_PARTY.value,
            narrative=build_risk_assessment_narrative(score, reason.strip(), party),
            activity_tags=risk_assessment_tags(score, party),
            created_by=created_by,
        )
        return self._store_new(sar, source="risk_assessment", risk_level=score.risk_level.value)

    def create_manual(
        self,
        party_id: str,
        category: str,
        narrative: str,
        created_by: str,
        amount: float | None = None,
        currency: str | None = None,
        activity_start: datetime | None = None,
        activity_end: datetime | None = None,
    ) -> SuspiciousActivityReport:
        if category not in VALID_CATEGORIES:
            raise invalid_input(
                "category",
                f"unknown SAR category {category!r}; valid categories are "
                f"{', '.join(sorted(VALID_CATEGORIES))}",
                entity_id=party_id,
            )
        if activity_start is not None:
            activity_start = _as_utc(activity_start)
        if activity_end is not None:
            activity_end = _as_utc(activity_end)
        if activity_start is not None and activity_end is not None and activity_end < activity_start:
            raise invalid_input(
                "activity_end",
                "activity end date must not precede start date",
                entity_id=party_id,
            )

        sar = self._new_sar(
            party_id=party_id,
            category=category,
            narrative=narrative,
            total_amount=amount,
            currency=currency,
            activity_start=activity_start,
            activity_end=activity_end,
            activity_tags=[category],
            created_by=created_by,
        )
        return self._store_new(sar, source="manual")

    # ---- Lookup ----

    def get(self, sar_id: str) -> SuspiciousActivityReport:
        try:
            sar = self.repository.load(sar_id)
        except ComplianceError:
            raise
        except Exception as e:
            raise external_provider_failure("sar_repository", "load", e, sar_id) from e
        if sar is None:
            raise not_found("SAR", sar_id)
        return sar

    def exists(self, sar_id: str) -> bool:
        try:
            return self.repository.exists(sar_id)
        except ComplianceError:
            raise
        except Exception as e:
            raise external_provider_failure("sar_repository", "exists", e, sar_id) from e

    # ---- Edits (draft only) ----

    def update_narrative(self, sar_id: str, narrative: str, updated_by: str) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        if not sar.status.is_editable:
            raise operation_not_allowed(sar_id, sar.status.value, "update_narrative")

        updated = sar.evolve(narrative=narrative, updated_at=self._clock(), updated_by=updated_by)
        self._save(updated)
        self._log.debug("sar_narrative_updated", sar_id=sar_id, narrative_length=len(narrative))
        self._publish(updated, SAREventType.UPDATED, updated_by, field="narrative")
        return updated

    def add_transactions(
        self,
        sar_id: str,
        transaction_ids: Iterable[str],
        updated_by: str,
    ) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        if not sar.status.is_editable:
            raise operation_not_allowed(sar_id, sar.status.value, "add_transactions")

        new_ids = list(transaction_ids)
        updated = sar.evolve(
            transaction_ids=[*sar.transaction_ids, *new_ids],
            updated_at=self._clock(),
            updated_by=updated_by,
        )
        self._save(updated)
        self._log.debug(
            "sar_transactions_added",
            sar_id=sar_id,
            new_transactions=len(new_ids),
            total_transactions=len(updated.transaction_ids),
        )
        self._publish(updated, SAREventType.UPDATED, updated_by, field="transaction_ids")
        return updated

    def assign_officer(self, sar_id: str, officer_id: str, assigned_by: str) -> SuspiciousActivityReport:
        if not officer_id or not officer_id.strip():
            raise invalid_input("officer_id", "an officer id is required", entity_id=sar_id)
        sar = self.get(sar_id)
        if sar.status.is_terminal:
            raise operation_not_allowed(sar_id, sar.status.value, "assign_officer")

        updated = sar.evolve(
            assigned_officer=officer_id,
            updated_at=self._clock(),
            updated_by=assigned_by,
        )
        self._save(updated)
        self._log.info("sar_officer_assigned", sar_id=sar_id, officer_id=officer_id)
        self._publish(updated, SAREventType.UPDATED, assigned_by, field="assigned_officer")
        return updated

    # ---- Lifecycle ----

    def submit_for_review(self, sar_id: str, submitted_by: str) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        self._require_transition(sar, SARStatus.PENDING_REVIEW)
        errors = self.validate(sar)
        if errors:
            raise invalid_transition(
                sar_id,
                sar.status.value,
                SARStatus.PENDING_REVIEW.value,
                reason="; ".join(errors),
                errors=errors,
            )
        return self._transition(sar, SARStatus.PENDING_REVIEW, submitted_by)

    def approve(
        self,
        sar_id: str,
        approved_by: str,
        comments: str | None = None,
    ) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        if approved_by == sar.created_by:
            raise approval_required(sar_id, "different_officer", created_by=sar.created_by)
        self._require_transition(sar, SARStatus.APPROVED)
        now = self._clock()
        return self._transition(
            sar,
            SARStatus.APPROVED,
            approved_by,
            now=now,
            approved_by=approved_by,
            approved_at=now,
            review_comments=comments,
        )

    def reject(self, sar_id: str, rejected_by: str, reason: str) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        self._require_transition(sar, SARStatus.REJECTED)
        if not reason or not reason.strip():
            raise invalid_input("reason", "a rejection reason is required", entity_id=sar_id)
        return self._transition(sar, SARStatus.REJECTED, rejected_by, rejection_reason=reason)

    def submit_to_authority(
        self,
        sar_id: str,
        filing_reference: str,
        submitted_by: str,
    ) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        if sar.status in (SARStatus.DRAFT, SARStatus.PENDING_REVIEW):
            raise approval_required(sar_id, "compliance_officer", status=sar.status.value)
        self._require_transition(sar, SARStatus.SUBMITTED)
        if not filing_reference or not filing_reference.strip():
            raise invalid_input("filing_reference", "a filing reference is required", entity_id=sar_id)
        now = self._clock()
        return self._transition(
            sar,
            SARStatus.SUBMITTED,
            submitted_by,
            now=now,
            filing_reference=filing_reference.strip(),
            submitted_by=submitted_by,
            submitted_at=now,
        )

    def close(self, sar_id: str, resolution: str, closed_by: str) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        self._require_transition(sar, SARStatus.CLOSED)
        if not resolution or not resolution.strip():
            raise invalid_input("resolution", "a resolution is required", entity_id=sar_id)
        now = self._clock()
        return self._transition(
            sar,
            SARStatus.CLOSED,
            closed_by,
            now=now,
            resolution=resolution,
            closed_at=now,
        )

    def cancel(self, sar_id: str, reason: str, cancelled_by: str) -> SuspiciousActivityReport:
        sar = self.get(sar_id)
        if sar.status == SARStatus.SUBMITTED:
            raise already_submitted(sar_id, sar.filing_reference)
        self._require_transition(sar, SARStatus.CANCELLED)
        if not reason or not reason.strip():
            raise invalid_input("reason", "a cancellation reason is required", entity_id=sar_id)
        return self._transition(sar, SARStatus.CANCELLED, cancelled_by, cancellation_reason=reason)

    # ---- Validation and reporting ----

    def validate(self, sar: SuspiciousActivityReport) -> list[str]:
        """Filing-readiness problems, empty when the SAR may go to review."""
        errors: list[str] = []
        if not sar.party_id or not sar.party_id.strip():
            errors.append("Party ID is required")
        if not sar.category:
            errors.append("SAR category is required")
        elif sar.category not in VALID_CATEGORIES:
            errors.append(f"Invalid SAR category: {sar.category}")

        min_length = self.config.min_narrative_length
        if not sar.narrative:
            errors.append("Narrative is required")
        elif len(sar.narrative) < min_length:
            errors.append(
                f"Narrative must be at least {min_length} characters "
                f"(currently {len(sar.narrative)})"
            )

        if sar.transaction_ids:
            if sar.activity_start is None:
                errors.append("Activity start date is required for transaction-related SARs")
            if sar.activity_end is None:
                errors.append("Activity end date is required for transaction-related SARs")

        if sar.total_amount is not None:
            if sar.total_amount < 0:
                errors.append("Total amount cannot be negative")
            if not sar.currency:
                errors.append("Currency is required when amount is specified")
        return errors

    def is_overdue(self, sar: SuspiciousActivityReport, now: datetime | None = None) -> bool:
        return sar.is_overdue(now or self._clock())

    def days_until_deadline(self, sar: SuspiciousActivityReport, now: datetime | None = None) -> int:
        return sar.days_until_deadline(now or self._clock())

    def generate_summary(
        self,
        sar: SuspiciousActivityReport,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or self._clock()
        preview = sar.narrative[:NARRATIVE_PREVIEW_LENGTH]
        if len(sar.narrative) > NARRATIVE_PREVIEW_LENGTH:
            preview += "..."
        return {
            "sar_id": sar.sar_id,
            "party_id": sar.party_id,
            "status": sar.status.value,
            "status_phase": sar.status.phase,
            "category": sar.category,
            "total_amount": sar.total_amount,
            "currency": sar.currency,
            "transaction_count": len(sar.transaction_ids),
            "alert_count": len(sar.alerts),
            "activity_period": {
                "start": sar.activity_start.date().isoformat() if sar.activity_start else None,
                "end": sar.activity_end.date().isoformat() if sar.activity_end else None,
            },
            "created": {"at": sar.created_at.isoformat(), "by": sar.created_by},
            "updated": {
                "at": sar.updated_at.isoformat() if sar.updated_at else None,
                "by": sar.updated_by,
            },
            "assigned_officer": sar.assigned_officer,
            "filing_reference": sar.filing_reference,
            "filing_deadline": sar.filing_deadline.isoformat(),
            "is_overdue": sar.is_overdue(now),
            "days_until_deadline": sar.days_until_deadline(now),
            "is_editable": sar.status.is_editable,
            "is_terminal": sar.status.is_terminal,
            "narrative_length": len(sar.narrative),
            "narrative_preview": preview,
            "validation_errors": self.validate(sar),
        }

    # ---- Internals ----

    def _resolve_party(self, party_id: str) -> Party | None:
        if self.party_provider is None:
            return None
        try:
            return self.party_provider.get_party(party_id)
        except ComplianceError:
            raise
        except Exception as e:
            self._log.error("party_lookup_failed", party_id=party_id, error=str(e))
            raise external_provider_failure("party_provider", "get_party", e, party_id) from e

    def _generate_sar_id(self, now: datetime) -> str:
        for _ in range(self.config.max_id_attempts):
            sar_id = f"{self.config.sar_id_prefix}-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"
            if not self.exists(sar_id):
                return sar_id
            self._log.warning("sar_id_collision", sar_id=sar_id)
        raise external_provider_failure(
            "sar_repository",
            "exists",
            RuntimeError(f"no unique SAR id after {self.config.max_id_attempts} attempts"),
        )

    def _new_sar(self, **fields: Any) -> SuspiciousActivityReport:
        now = self._clock()
        return SuspiciousActivityReport(
            sar_id=self._generate_sar_id(now),
            status=SARStatus.DRAFT,
            created_at=now,
            filing_deadline_days=self.config.filing_deadline_days,
            **fields,
        )

    def _store_new(self, sar: SuspiciousActivityReport, source: str, **context: Any) -> SuspiciousActivityReport:
        self._save(sar)
        self._log.info(
            "sar_created",
            sar_id=sar.sar_id,
            party_id=sar.party_id,
            category=sar.category,
            source=source,
            transaction_count=len(sar.transaction_ids),
            **context,
        )
        self._publish(sar, SAREventType.CREATED, sar.created_by, source=source)
        return sar

    def _require_transition(self, sar: SuspiciousActivityReport, target: SARStatus) -> None:
        if not sar.status.can_transition_to(target):
            raise invalid_transition(
                sar.sar_id,
                sar.status.value,
                target.value,
                reason=f"allowed targets: {', '.join(sorted(sar.status.allowed_targets)) or 'none'}",
            )

    def _transition(
        self,
        sar: SuspiciousActivityReport,
        target: SARStatus,
        actor: str,
        now: datetime | None = None,
        **changes: Any,
    ) -> SuspiciousActivityReport:
        self._require_transition(sar, target)
        updated = sar.evolve(
            status=target,
            updated_at=now or self._clock(),
            updated_by=actor,
            **changes,
        )
        self._save(updated)
        self._log.info(
            "sar_status_changed",
            sar_id=sar.sar_id,
            party_id=sar.party_id,
            from_status=sar.status.value,
            to_status=target.value,
            actor=actor,
        )
        self._publish(updated, SAREventType.STATUS_CHANGED, actor, previous_status=sar.status)
        return updated

    def _save(self, sar: SuspiciousActivityReport) -> None:
        try:
            self.repository.save(sar)
        except ComplianceError:
            raise
        except Exception as e:
            self._log.error("sar_save_failed", sar_id=sar.sar_id, error=str(e))
            raise external_provider_failure("sar_repository", "save", e, sar.sar_id) from e

    def _publish(
        self,
        sar: SuspiciousActivityReport,
        event_type: SAREventType,
        actor: str,
        previous_status: SARStatus | None = None,
        **details: Any,
    ) -> None:
        if self.event_sink is None:
            return
        event = SAREvent(
            event_type=event_type,
            sar_id=sar.sar_id,
            party_id=sar.party_id,
            status=sar.status,
            previous_status=previous_status,
            actor=actor,
            occurred_at=sar.updated_at or sar.created_at,
            details=details,
        )
        try:
            self.event_sink.publish(event)
        except Exception:
            self._log.warning(
                "sar_event_publish_failed",
                sar_id=sar.sar_id,
                event_type=event_type.value,
                exc_info=True,
            )
