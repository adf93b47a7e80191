"""
Governance signal value types.

Everything here is created per request and never mutated afterwards: the
fold functions build new rows, they do not update existing ones.

Models:
    - SignalRecord: canonical shape of an approval step / RAID item / milestone
    - ClassifiedRecord: SignalRecord + age_days + urgency
    - ProjectSignalRow: one row per project (tier counts, RAG)
    - BottleneckRow: one row per responsible actor
    - PortfolioRollup: org-level fold of project rows (+ week-over-week deltas)
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any

from app.services.signals.thresholds import THRESHOLDS


# ═════════════════════════════════════════════════════════════════════════════
# Enums
# ═════════════════════════════════════════════════════════════════════════════

class SignalKind(str, Enum):
    APPROVAL = "approval"
    RISK = "risk"
    ISSUE = "issue"
    ASSUMPTION = "assumption"
    DEPENDENCY = "dependency"
    CHANGE = "change"
    MILESTONE = "milestone"
    TASK = "task"
    ARTIFACT = "artifact"
    UNKNOWN = "unknown"


class Urgency(str, Enum):
    OK = "ok"
    AT_RISK = "at_risk"
    BREACHED = "breached"


class Rag(str, Enum):
    GREEN = "G"
    AMBER = "A"
    RED = "R"

    @property
    def rank(self) -> int:
        """Worst-first ordering weight: R=2, A=1, G=0."""
        return {"R": 2, "A": 1, "G": 0}[self.value]


UNKNOWN_ACTOR = "Unknown"
UNKNOWN_USER = "Unknown user"
UNRESOLVED_ACTORS = frozenset({UNKNOWN_ACTOR, UNKNOWN_USER})


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# Records
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SignalRecord:
    """Canonical work-item record.

    ``entity_id`` is only unique within ``(kind, entity_id)``.
    ``raw_status`` is used for urgency classification and is never displayed.
    """
    entity_id: str
    project_id: str | None
    kind: SignalKind
    submitted_at: datetime | None
    due_at: datetime | None
    severity: float | None
    actor_label: str
    raw_status: str
    hours_overdue: float | None = None
    hours_to_due: float | None = None
    title: str = ""
    stage: str = ""
    project_code: str = ""
    project_title: str = ""

    @property
    def has_resolved_actor(self) -> bool:
        return bool(self.actor_label) and self.actor_label not in UNRESOLVED_ACTORS

    def to_dict(self) -> dict:
        return {
            "entity_id": self.entity_id,
            "project_id": self.project_id,
            "kind": self.kind.value,
            "title": self.title,
            "stage": self.stage,
            "submitted_at": _iso(self.submitted_at),
            "due_at": _iso(self.due_at),
            "severity": self.severity,
            "actor_label": self.actor_label,
        }


@dataclass(frozen=True)
class ClassifiedRecord(SignalRecord):
    """SignalRecord with derived age and urgency tier."""
    age_days: int = 0
    urgency: Urgency = Urgency.OK

    @classmethod
    def from_record(cls, record: SignalRecord, age_days: int, urgency: Urgency) -> "ClassifiedRecord":
        base = {f.name: getattr(record, f.name) for f in fields(SignalRecord)}
        return cls(**base, age_days=age_days, urgency=urgency)

    def to_dict(self) -> dict:
        d = super().to_dict()
        d["age_days"] = self.age_days
        d["urgency"] = self.urgency.value
        return d


# ═════════════════════════════════════════════════════════════════════════════
# Fold outputs
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class TierCounts:
    ok: int = 0
    at_risk: int = 0
    breached: int = 0

    @property
    def total(self) -> int:
        return self.ok + self.at_risk + self.breached

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "at_risk": self.at_risk,
            "breached": self.breached,
            "total": self.total,
        }


@dataclass(frozen=True)
class ProjectSignalRow:
    """Per-project health row. ``score`` is an external input, ``rag`` is derived."""
    project_id: str
    title: str
    counts: TierCounts
    max_age_days: int
    rag: Rag
    code: str | None = None
    dominant_actor: str | None = None
    dominant_stage: str | None = None
    due_soon: int = 0
    score: float | None = None

    def to_dict(self) -> dict:
        return {
            "project_id": self.project_id,
            "title": self.title,
            "code": self.code,
            "counts": self.counts.to_dict(),
            "max_age_days": self.max_age_days,
            "rag": self.rag.value,
            "dominant_actor": self.dominant_actor,
            "dominant_stage": self.dominant_stage,
            "due_soon": self.due_soon,
            "score": self.score,
        }


@dataclass(frozen=True)
class BottleneckRow:
    actor_label: str
    pending_count: int
    projects_affected: int
    avg_wait_days: float
    max_wait_days: int

    @property
    def heat(self) -> str:
        """Presentation emphasis only; never used for ordering."""
        if self.max_wait_days > THRESHOLDS["heat_high_days"]:
            return "high"
        if self.max_wait_days > THRESHOLDS["heat_medium_days"]:
            return "medium"
        return "low"

    def to_dict(self) -> dict:
        return {
            "actor_label": self.actor_label,
            "pending_count": self.pending_count,
            "projects_affected": self.projects_affected,
            "avg_wait_days": self.avg_wait_days,
            "max_wait_days": self.max_wait_days,
            "heat": self.heat,
        }


@dataclass(frozen=True)
class MetricDelta:
    value: float
    prior: float
    change: float
    direction: str

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "prior": self.prior,
            "change": self.change,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class PortfolioRollup:
    project_count: int
    score_average: float | None
    breached_total: int
    blocked_project_count: int
    at_risk_total: int = 0
    due_soon_total: int = 0
    rag_counts: dict = field(default_factory=dict)
    prior_snapshot: "PortfolioRollup | None" = None
    deltas: dict | None = None
    narrative: tuple = ()

    def metrics(self) -> dict[str, Any]:
        """Flat metric view used for week-over-week comparison."""
        return {
            "project_count": self.project_count,
            "score_average": self.score_average,
            "breached_total": self.breached_total,
            "at_risk_total": self.at_risk_total,
            "blocked_project_count": self.blocked_project_count,
            "due_soon_total": self.due_soon_total,
        }

    def to_dict(self) -> dict:
        d = self.metrics()
        d["rag_counts"] = dict(self.rag_counts)
        d["prior_snapshot"] = self.prior_snapshot.metrics() if self.prior_snapshot else None
        d["deltas"] = (
            {k: v.to_dict() for k, v in self.deltas.items()} if self.deltas is not None else None
        )
        d["narrative"] = list(self.narrative)
        return d
