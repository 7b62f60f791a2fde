"""Transaction monitoring rules for a party's transaction window.

Each rule is an independent module-level check that returns zero or more
alerts. ``TransactionMonitor`` normalizes the input window, runs every rule,
and folds the alerts into a scored ``TransactionMonitoringResult``.

Rules:
  structuring        — repeated amounts just below the CTR threshold
  velocity           — one day far busier than the window's daily average
  geographic         — high-risk counterparty countries, or too many countries
  round_amounts      — most transactions are round figures
  large_amount       — single transactions at or above the large threshold
  daily_aggregation  — one UTC day's total at or above the daily limit
  dormancy           — activity resuming after a long dormant period
  layering           — inbound funds sent back out within hours
  counterparty       — transactions with a watch-listed counterparty

Regulatory basis:
  31 USC § 5324 — Structuring transactions to evade reporting requirements
  31 CFR § 1010.311 — Currency transaction reporting threshold
  31 CFR § 1020.320(a)(2) — Suspicious activity reporting
  FinCEN Advisory FIN-2014-A007 — Transaction monitoring for MSBs
"""

import math
import uuid
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence
from datetime import UTC, date, datetime, time, timedelta
from typing import Any

import structlog
from pydantic import ValidationError

from .config import MonitoringConfig, default_config
from .errors import invalid_input
from .jurisdictions import JurisdictionRisk, jurisdiction_risk
from .models import (
    AlertCategory,
    MonitoringPattern,
    Severity,
    Transaction,
    TransactionAlert,
    TransactionMonitoringResult,
    clamp_score,
    round_half_up,
)

logger = structlog.get_logger()

TransactionInput = Transaction | Mapping[str, Any]

PATTERN_BY_CATEGORY: dict[AlertCategory, MonitoringPattern] = {
    AlertCategory.STRUCTURING: MonitoringPattern.STRUCTURING,
    AlertCategory.VELOCITY_SPIKE: MonitoringPattern.VELOCITY,
    AlertCategory.GEOGRAPHIC_ANOMALY: MonitoringPattern.GEOGRAPHIC,
    AlertCategory.ROUND_AMOUNT: MonitoringPattern.ROUND_AMOUNTS,
    AlertCategory.LARGE_AMOUNT: MonitoringPattern.LARGE_AMOUNT,
    AlertCategory.THRESHOLD_BREACH: MonitoringPattern.DAILY_AGGREGATION,
    AlertCategory.DORMANCY: MonitoringPattern.DORMANCY,
    AlertCategory.LAYERING: MonitoringPattern.LAYERING,
    AlertCategory.COUNTERPARTY: MonitoringPattern.COUNTERPARTY,
}

PATTERN_REASONS: dict[MonitoringPattern, str] = {
    MonitoringPattern.STRUCTURING: (
        "Potential structuring detected - multiple transactions just below reporting threshold"
    ),
    MonitoringPattern.VELOCITY: "Unusual transaction velocity detected",
    MonitoringPattern.GEOGRAPHIC: "Geographic anomalies detected",
    MonitoringPattern.ROUND_AMOUNTS: "Suspicious round amount pattern detected",
    MonitoringPattern.LARGE_AMOUNT: "Large transaction(s) detected",
    MonitoringPattern.DAILY_AGGREGATION: "Daily transaction aggregation exceeds threshold",
    MonitoringPattern.DORMANCY: "Dormant account reactivated",
    MonitoringPattern.LAYERING: "Rapid movement of funds consistent with layering",
    MonitoringPattern.COUNTERPARTY: "Transactions with watch-listed counterparties",
}


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def _to_utc_datetime(value: Any, now: datetime) -> datetime:
    if value is None:
        return now
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, date):
        return datetime.combine(value, time(), tzinfo=UTC)
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def normalize_transaction(
    record: TransactionInput,
    now: datetime | None = None,
    default_currency: str = "USD",
) -> Transaction:
    """Coerce a raw record into a ``Transaction``.

    Missing dates become ``now``; missing ids are synthesized. A non-numeric
    amount is an input error, never silently zero.
    """
    if isinstance(record, Transaction):
        return record
    if not isinstance(record, Mapping):
        raise invalid_input("transaction", f"expected a mapping, got {type(record).__name__}")

    now = now or datetime.now(UTC)
    tx_id = record.get("id")
    tx_id = str(tx_id) if tx_id not in (None, "") else f"tx_{uuid.uuid4().hex[:13]}"

    raw_amount = record.get("amount", 0.0)
    try:
        amount = float(raw_amount)
    except (TypeError, ValueError) as e:
        raise invalid_input("amount", f"not a number: {raw_amount!r}", entity_id=tx_id) from e
    if not math.isfinite(amount):
        raise invalid_input("amount", f"not a finite number: {raw_amount!r}", entity_id=tx_id)

    try:
        tx_date = _to_utc_datetime(record.get("date"), now)
    except ValueError as e:
        raise invalid_input("date", f"unparseable date {record.get('date')!r}", entity_id=tx_id) from e

    try:
        return Transaction(
            id=tx_id,
            amount=amount,
            currency=str(record.get("currency") or default_currency),
            type=str(record.get("type") or "unknown"),
            date=tx_date,
            counterparty_id=record.get("counterparty_id"),
            counterparty_country=record.get("counterparty_country"),
            description=str(record.get("description") or ""),
            metadata=dict(record.get("metadata") or {}),
        )
    except ValidationError as e:
        raise invalid_input("transaction", str(e), entity_id=tx_id) from e


def normalize_transactions(
    records: Iterable[TransactionInput],
    now: datetime | None = None,
    default_currency: str = "USD",
) -> list[Transaction]:
    """Normalize and order by (date, id) so results do not depend on input order."""
    now = now or datetime.now(UTC)
    normalized = [normalize_transaction(r, now, default_currency) for r in records]
    return sorted(normalized, key=lambda tx: (tx.date, tx.id))


def is_round_amount(amount: float) -> bool:
    if math.fmod(amount, 1000) == 0:
        return True
    if math.fmod(amount, 500) == 0:
        return True
    return amount >= 100 and math.fmod(amount, 100) == 0


# ---------------------------------------------------------------------------
# Standalone detectors
# ---------------------------------------------------------------------------


def _structuring_candidates(
    transactions: Sequence[Transaction],
    threshold: float,
    margin: float,
) -> list[Transaction]:
    lower_bound = threshold * (1 - margin)
    return [tx for tx in transactions if lower_bound <= tx.amount < threshold]


def detect_structuring(
    transactions: Iterable[TransactionInput],
    threshold: float | None = None,
    config: MonitoringConfig = default_config.monitoring,
) -> bool:
    """True when enough amounts fall in [threshold × (1 − margin), threshold).

    Regulatory basis: 31 USC § 5324.
    """
    txs = normalize_transactions(transactions)
    candidates = _structuring_candidates(
        txs, threshold or config.structuring_threshold, config.structuring_margin
    )
    return len(candidates) >= config.structuring_min_transactions


def detect_round_amount_pattern(
    transactions: Iterable[TransactionInput],
    percentage_threshold: float | None = None,
    config: MonitoringConfig = default_config.monitoring,
) -> bool:
    txs = normalize_transactions(transactions)
    if len(txs) < config.round_amount_min_transactions:
        return False
    round_count = sum(1 for tx in txs if is_round_amount(tx.amount))
    threshold = percentage_threshold if percentage_threshold is not None else config.round_amount_threshold
    return round_count / len(txs) >= threshold


def detect_velocity_anomaly(
    transactions: Iterable[TransactionInput],
    average_transaction_count: float = 10.0,
    multiplier_threshold: float | None = None,
    config: MonitoringConfig = default_config.monitoring,
) -> bool:
    """Compare the window's count against a historical average count."""
    if average_transaction_count <= 0:
        return False
    count = len(normalize_transactions(transactions))
    threshold = multiplier_threshold or config.velocity_multiplier
    return count / average_transaction_count >= threshold


def detect_geographic_anomaly(
    transactions: Iterable[TransactionInput],
    expected_countries: Iterable[str],
) -> bool:
    """True for any unexpected counterparty country or any high-risk one."""
    expected = {c.strip().upper() for c in expected_countries}
    countries = {
        tx.counterparty_country
        for tx in normalize_transactions(transactions)
        if tx.counterparty_country
    }
    if countries - expected:
        return True
    return any(
        jurisdiction_risk(c) in (JurisdictionRisk.HIGH, JurisdictionRisk.VERY_HIGH)
        for c in countries
    )


def detect_dormancy_reactivation(
    last_activity_at: datetime | None,
    transactions: Iterable[TransactionInput],
    dormancy_days: int | None = None,
    config: MonitoringConfig = default_config.monitoring,
) -> bool:
    """True when the first new transaction comes at least ``dormancy_days`` after the last activity."""
    txs = normalize_transactions(transactions)
    if last_activity_at is None or not txs:
        return False
    last = last_activity_at if last_activity_at.tzinfo else last_activity_at.replace(tzinfo=UTC)
    threshold = dormancy_days if dormancy_days is not None else config.dormancy_days
    return (txs[0].date - last).days >= threshold


# ---------------------------------------------------------------------------
# Alerting rules
# ---------------------------------------------------------------------------


def check_structuring(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    threshold = config.structuring_threshold
    candidates = _structuring_candidates(transactions, threshold, config.structuring_margin)
    if len(candidates) < config.structuring_min_transactions:
        return []

    cumulative = sum(tx.amount for tx in candidates)
    logger.warning(
        "structuring_pattern_detected",
        transaction_count=len(candidates),
        cumulative_amount=cumulative,
        threshold=threshold,
    )
    return [
        TransactionAlert(
            category=AlertCategory.STRUCTURING,
            severity=Severity.HIGH,
            message=(
                f"Potential structuring: {len(candidates)} transactions totaling "
                f"${cumulative:,.2f}, each just below the ${threshold:,.2f} reporting threshold"
            ),
            evidence={
                "transaction_ids": [tx.id for tx in candidates],
                "cumulative_amount": cumulative,
                "transaction_count": len(candidates),
                "threshold": threshold,
                "lower_bound": threshold * (1 - config.structuring_margin),
                "pattern": "below_threshold",
            },
            triggered_at=now or datetime.now(UTC),
            amount=cumulative,
            currency=candidates[0].currency,
        )
    ]


def _velocity_severity(increase_pct: float) -> Severity:
    if increase_pct >= 500:
        return Severity.CRITICAL
    if increase_pct >= 300:
        return Severity.HIGH
    if increase_pct >= 150:
        return Severity.MEDIUM
    return Severity.LOW


def check_velocity(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    daily_counts: dict[date, int] = defaultdict(int)
    for tx in transactions:
        daily_counts[tx.date.date()] += 1

    if len(daily_counts) < config.velocity_min_days:
        return []

    average = sum(daily_counts.values()) / len(daily_counts)
    peak_day, peak = max(daily_counts.items(), key=lambda item: (item[1], item[0]))
    if average <= 0 or peak / average < config.velocity_multiplier:
        return []

    increase_pct = (peak / average - 1) * 100
    return [
        TransactionAlert(
            category=AlertCategory.VELOCITY_SPIKE,
            severity=_velocity_severity(increase_pct),
            message=(
                f"Velocity spike: {peak} transactions on {peak_day.isoformat()} "
                f"vs average of {average:.1f}/day ({increase_pct:.0f}% increase)"
            ),
            evidence={
                "current_count": peak,
                "average_count": average,
                "period_days": len(daily_counts),
                "peak_date": peak_day.isoformat(),
                "increase_percentage": increase_pct,
            },
            triggered_at=now or datetime.now(UTC),
        )
    ]


def check_geographic(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    now = now or datetime.now(UTC)
    alerts: list[TransactionAlert] = []
    countries: dict[str, int] = defaultdict(int)

    for tx in transactions:
        country = tx.counterparty_country
        if not country:
            continue
        countries[country] += 1

        risk = jurisdiction_risk(country)
        if risk not in (
            JurisdictionRisk.HIGH,
            JurisdictionRisk.VERY_HIGH,
            JurisdictionRisk.PROHIBITED,
        ):
            continue
        alerts.append(
            TransactionAlert(
                category=AlertCategory.GEOGRAPHIC_ANOMALY,
                severity=(
                    Severity.CRITICAL if risk == JurisdictionRisk.PROHIBITED else Severity.HIGH
                ),
                message=f"Transaction {tx.id} with {risk.value} jurisdiction {country}",
                evidence={
                    "country": country,
                    "jurisdiction_risk": risk.value,
                    "reason": f"Transaction with {risk.value} jurisdiction",
                },
                triggered_at=now,
                transaction_id=tx.id,
                amount=tx.amount,
                currency=tx.currency,
            )
        )

    if len(countries) > config.geographic_max_countries:
        alerts.append(
            TransactionAlert(
                category=AlertCategory.GEOGRAPHIC_ANOMALY,
                severity=Severity.HIGH,
                message=(
                    f"Transactions across {len(countries)} countries "
                    f"(threshold: {config.geographic_max_countries})"
                ),
                evidence={
                    "countries": sorted(countries),
                    "country_count": len(countries),
                    "threshold": config.geographic_max_countries,
                },
                triggered_at=now,
            )
        )

    return alerts


def check_round_amounts(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    if len(transactions) < config.round_amount_min_transactions:
        return []
    round_txs = [tx for tx in transactions if is_round_amount(tx.amount)]
    fraction = len(round_txs) / len(transactions)
    if fraction < config.round_amount_threshold:
        return []

    return [
        TransactionAlert(
            category=AlertCategory.ROUND_AMOUNT,
            severity=Severity.MEDIUM,
            message=(
                f"Round amount pattern: {len(round_txs)} of {len(transactions)} "
                f"transactions ({fraction:.1%}) are round amounts"
            ),
            evidence={
                "round_count": len(round_txs),
                "total_count": len(transactions),
                "round_percentage": fraction,
                "transaction_ids": [tx.id for tx in round_txs],
            },
            triggered_at=now or datetime.now(UTC),
        )
    ]


def check_large_amounts(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    now = now or datetime.now(UTC)
    threshold = config.large_transaction_threshold
    alerts: list[TransactionAlert] = []
    for tx in transactions:
        if tx.amount < threshold:
            continue
        multiple = tx.amount / threshold
        alerts.append(
            TransactionAlert(
                category=AlertCategory.LARGE_AMOUNT,
                severity=(
                    Severity.HIGH
                    if multiple >= config.large_transaction_high_multiple
                    else Severity.MEDIUM
                ),
                message=(
                    f"Large transaction {tx.id}: {tx.amount:,.2f} {tx.currency} "
                    f"(threshold {threshold:,.2f})"
                ),
                evidence={
                    "threshold": threshold,
                    "exceeds_by": tx.amount - threshold,
                    "multiple": multiple,
                },
                triggered_at=now,
                transaction_id=tx.id,
                amount=tx.amount,
                currency=tx.currency,
            )
        )
    return alerts


def check_daily_aggregation(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    """Flag each UTC day whose total reaches the daily limit.

    Regulatory basis: 31 CFR § 1010.313 — multiple transactions in one
    business day are aggregated for CTR purposes.
    """
    now = now or datetime.now(UTC)
    by_day: dict[date, list[Transaction]] = defaultdict(list)
    for tx in transactions:
        by_day[tx.date.date()].append(tx)

    alerts: list[TransactionAlert] = []
    for day in sorted(by_day):
        day_txs = by_day[day]
        total = sum(tx.amount for tx in day_txs)
        if total < config.daily_limit:
            continue
        alerts.append(
            TransactionAlert(
                category=AlertCategory.THRESHOLD_BREACH,
                severity=Severity.MEDIUM,
                message=(
                    f"Daily total of {total:,.2f} on {day.isoformat()} across "
                    f"{len(day_txs)} transactions exceeds limit of {config.daily_limit:,.2f}"
                ),
                evidence={
                    "threshold_type": "daily_aggregate",
                    "date": day.isoformat(),
                    "limit": config.daily_limit,
                    "transaction_ids": [tx.id for tx in day_txs],
                },
                triggered_at=now,
                amount=total,
                currency=day_txs[0].currency,
            )
        )
    return alerts


def check_dormancy(
    transactions: Sequence[Transaction],
    last_activity_at: datetime | None,
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    if not config.dormancy_enabled or last_activity_at is None or not transactions:
        return []
    last = last_activity_at if last_activity_at.tzinfo else last_activity_at.replace(tzinfo=UTC)
    first = transactions[0]
    dormant_days = (first.date - last).days
    if dormant_days < config.dormancy_days:
        return []

    return [
        TransactionAlert(
            category=AlertCategory.DORMANCY,
            severity=Severity.MEDIUM,
            message=(
                f"Account reactivated after {dormant_days} days of inactivity "
                f"(threshold: {config.dormancy_days} days)"
            ),
            evidence={
                "last_activity_at": last.isoformat(),
                "dormant_days": dormant_days,
                "threshold_days": config.dormancy_days,
            },
            triggered_at=now or datetime.now(UTC),
            transaction_id=first.id,
            amount=first.amount,
            currency=first.currency,
        )
    ]


def check_layering(
    transactions: Sequence[Transaction],
    config: MonitoringConfig = default_config.monitoring,
    now: datetime | None = None,
) -> list[TransactionAlert]:
    """Detect pass-through behavior (receive-then-send within time window).

    Regulatory basis: 31 CFR § 1020.320(a)(2). Rapid movement is a classic
    layering typology.
    """
    if not config.layering_enabled:
        return []

    now = now or datetime.now(UTC)
    inbound_types = {t.lower() for t in config.inbound_types}
    outbound_types = {t.lower() for t in config.outbound_types}
    received = [tx for tx in transactions if tx.type.lower() in inbound_types]
    sent = [tx for tx in transactions if tx.type.lower() in outbound_types]
    window = timedelta(hours=config.layering_window_hours)

    alerts: list[TransactionAlert] = []
    for inbound in received:
        if inbound.amount < config.layering_min_amount:
            continue
        min_outbound = inbound.amount * config.layering_transfer_ratio
        outbound = next(
            (
                tx
                for tx in sent
                if timedelta(0) <= tx.date - inbound.date <= window and tx.amount >= min_outbound
            ),
            None,
        )
        if outbound is None:
            continue

        hours = (outbound.date - inbound.date).total_seconds() / 3600
        alerts.append(
            TransactionAlert(
                category=AlertCategory.LAYERING,
                severity=Severity.HIGH,
                message=(
                    f"Received {inbound.amount:,.2f} and sent {outbound.amount:,.2f} within "
                    f"{hours:.1f} hours ({outbound.amount / inbound.amount:.0%} of received amount)"
                ),
                evidence={
                    "transaction_ids": [inbound.id, outbound.id],
                    "inbound_amount": inbound.amount,
                    "outbound_amount": outbound.amount,
                    "hours_between": hours,
                },
                triggered_at=now,
                amount=inbound.amount + outbound.amount,
                currency=inbound.currency,
            )
        )
    return alerts


def check_counterparties(
    transactions: Sequence[Transaction],
    watchlisted: Iterable[str],
    now: datetime | None = None,
) -> list[TransactionAlert]:
    watchlist = set(watchlisted)
    if not watchlist:
        return []
    now = now or datetime.now(UTC)
    return [
        TransactionAlert(
            category=AlertCategory.COUNTERPARTY,
            severity=Severity.HIGH,
            message=f"Transaction {tx.id} with watch-listed counterparty {tx.counterparty_id}",
            evidence={"counterparty_id": tx.counterparty_id},
            triggered_at=now,
            transaction_id=tx.id,
            amount=tx.amount,
            currency=tx.currency,
        )
        for tx in transactions
        if tx.counterparty_id in watchlist
    ]


# ---------------------------------------------------------------------------
# Aggregate monitor
# ---------------------------------------------------------------------------


class TransactionMonitor:
    """Runs every monitoring rule over a party's transaction window."""

    def __init__(
        self,
        config: MonitoringConfig | None = None,
        logger: Any = None,
    ) -> None:
        self.config = config or default_config.monitoring
        self._log = logger or structlog.get_logger()

    def monitor(
        self,
        party_id: str,
        transactions: Iterable[TransactionInput],
        period_start: datetime,
        period_end: datetime,
        *,
        last_activity_at: datetime | None = None,
        watchlisted_counterparties: Iterable[str] = (),
        now: datetime | None = None,
    ) -> TransactionMonitoringResult:
        if not party_id or not party_id.strip():
            raise invalid_input("party_id", "party id is required")
        now = now or datetime.now(UTC)
        period_start = _to_utc_datetime(period_start, now)
        period_end = _to_utc_datetime(period_end, now)
        if period_end < period_start:
            raise invalid_input(
                "period_end",
                "period end precedes period start",
                entity_id=party_id,
                period_start=period_start.isoformat(),
                period_end=period_end.isoformat(),
            )

        txs = normalize_transactions(transactions, now, self.config.default_currency)
        cfg = self.config

        alerts: list[TransactionAlert] = []
        alerts.extend(check_structuring(txs, cfg, now))
        alerts.extend(check_velocity(txs, cfg, now))
        alerts.extend(check_geographic(txs, cfg, now))
        alerts.extend(check_round_amounts(txs, cfg, now))
        alerts.extend(check_large_amounts(txs, cfg, now))
        alerts.extend(check_daily_aggregation(txs, cfg, now))
        alerts.extend(check_dormancy(txs, last_activity_at, cfg, now))
        alerts.extend(check_layering(txs, cfg, now))
        alerts.extend(check_counterparties(txs, watchlisted_counterparties, now))

        patterns = list(dict.fromkeys(PATTERN_BY_CATEGORY[a.category] for a in alerts))
        risk_score = self.calculate_risk_score(alerts, patterns)

        result = TransactionMonitoringResult(
            party_id=party_id,
            is_suspicious=bool(alerts),
            risk_score=risk_score,
            patterns=[p.value for p in patterns],
            reasons=[PATTERN_REASONS[p] for p in patterns],
            alerts=alerts,
            period_start=period_start,
            period_end=period_end,
            transaction_count=len(txs),
            total_volume=sum(tx.amount for tx in txs),
            analyzed_at=now,
        )

        self._log.info(
            "transaction_monitoring_completed",
            party_id=party_id,
            is_suspicious=result.is_suspicious,
            risk_score=risk_score,
            alert_count=len(alerts),
            patterns_detected=result.patterns,
            transaction_count=result.transaction_count,
        )
        return result

    def calculate_risk_score(
        self,
        alerts: Sequence[TransactionAlert],
        patterns: Iterable[str],
    ) -> int:
        """Pattern weights × the multiplier of the most severe alert, clamped to 100."""
        if not alerts:
            return 0
        base = sum(
            self.config.pattern_weights.get(str(p), self.config.other_pattern_weight)
            for p in dict.fromkeys(patterns)
        )
        multiplier = max(
            self.config.severity_multipliers.get(a.severity.value, 1.0) for a in alerts
        )
        return clamp_score(round_half_up(base * multiplier))

    def should_consider_sar(self, result: TransactionMonitoringResult) -> bool:
        return result.should_consider_sar
