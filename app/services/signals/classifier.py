"""
Age & SLA Classifier.

Derives ``age_days`` and a three-tier urgency (ok / at_risk / breached) for
each SignalRecord.

Age precedence:
    1. hours_overdue > 0            → round(hours_overdue / 24)
    2. submitted_at present         → max(0, round((now - submitted_at) / 1 day))
    3. hours_to_due < 0 (past due)  → round(-hours_to_due / 24)
    4. otherwise                    → 0

Urgency precedence: an explicit SLA status always wins over age; age
thresholds only apply when the status carries no SLA signal.  A paused item
is therefore not "breached" just because it is old.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Iterable

from app.services.signals.records import ClassifiedRecord, SignalRecord, Urgency
from app.services.signals.thresholds import SignalConfig
from app.utils.helpers import parse_datetime

_SECONDS_PER_DAY = 86400

BREACH_TOKENS = frozenset({"breach", "breached", "overdue", "r", "red"})
RISK_TOKENS = frozenset({"warn", "warning", "at_risk", "at risk", "a", "amber"})
HEALTHY_TOKENS = frozenset({"ok", "g", "green", "on_track", "within_sla", "paused", "on_hold"})


def round_half_up(value: float) -> int:
    """Round .5 away from zero for positives (matches the SLA views)."""
    return int(math.floor(value + 0.5))


def derive_age_days(record: SignalRecord, now: datetime | None = None) -> int:
    """Days the item has been waiting; never negative.

    Naive ``submitted_at`` / ``now`` values are taken as UTC.
    """
    if record.hours_overdue is not None and record.hours_overdue > 0:
        return max(0, round_half_up(record.hours_overdue / 24))
    submitted_at = parse_datetime(record.submitted_at)
    if submitted_at is not None:
        now = parse_datetime(now) or datetime.now(timezone.utc)
        elapsed = (now - submitted_at).total_seconds() / _SECONDS_PER_DAY
        return max(0, round_half_up(elapsed))
    if record.hours_to_due is not None and record.hours_to_due < 0:
        return max(0, round_half_up(-record.hours_to_due / 24))
    return 0


def status_urgency(raw_status: str) -> Urgency | None:
    """Urgency implied by the status text, or None if it carries no SLA signal."""
    s = (raw_status or "").strip().lower()
    if not s:
        return None
    if s in BREACH_TOKENS or "breach" in s or "overdue" in s:
        return Urgency.BREACHED
    if s in RISK_TOKENS or "warn" in s or "at_risk" in s:
        return Urgency.AT_RISK
    if s in HEALTHY_TOKENS:
        return Urgency.OK
    return None


def derive_urgency(raw_status: str, age_days: int, breach_days: int, risk_days: int) -> Urgency:
    """Pure function of (status, age, thresholds)."""
    from_status = status_urgency(raw_status)
    if from_status is not None:
        return from_status
    if age_days > breach_days:
        return Urgency.BREACHED
    if age_days > risk_days:
        return Urgency.AT_RISK
    return Urgency.OK


def classify(record: SignalRecord, cfg: SignalConfig, *, now: datetime | None = None) -> ClassifiedRecord:
    age = derive_age_days(record, now)
    urgency = derive_urgency(record.raw_status, age, cfg.breach_days, cfg.risk_days)
    return ClassifiedRecord.from_record(record, age, urgency)


def classify_all(
    records: Iterable[SignalRecord],
    cfg: SignalConfig,
    *,
    now: datetime | None = None,
) -> list[ClassifiedRecord]:
    """Classify a batch against a single ``now`` so ages are consistent."""
    now = parse_datetime(now) or datetime.now(timezone.utc)
    return [classify(r, cfg, now=now) for r in records]
