"""
Portfolio Rollup — folds project rows into one org-level PortfolioRollup.

``score`` is a caller-supplied health value; RAG is derived here from
counts.  The two may disagree and both are surfaced as they are.

When a prior snapshot is supplied, each metric gets a signed delta and a
direction arrow used only for narrative text, e.g.::

    ↑ Breached: 5 (+2 WoW)
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Iterable

from app.services.signals.records import MetricDelta, PortfolioRollup, ProjectSignalRow, Rag

UP, DOWN, FLAT = "↑", "↓", "→"

# metric key → narrative label
NARRATIVE_LABELS: dict[str, str] = {
    "breached_total": "Breached",
    "at_risk_total": "At risk",
    "blocked_project_count": "Blocked projects",
    "due_soon_total": "Due soon",
    "score_average": "Avg score",
    "project_count": "Projects",
}


def direction(change: float) -> str:
    if change > 0:
        return UP
    if change < 0:
        return DOWN
    return FLAT


def _fmt(n: float) -> str:
    return str(int(n)) if float(n).is_integer() else f"{n:.1f}"


def _prior_metrics(prior: Any) -> dict[str, Any]:
    if isinstance(prior, PortfolioRollup):
        return prior.metrics()
    if isinstance(prior, Mapping):
        return dict(prior)
    return {}


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compute_deltas(current: Mapping[str, Any], prior: Mapping[str, Any]) -> dict[str, MetricDelta]:
    """Signed difference per metric present (and numeric) in both snapshots."""
    deltas = {}
    for name in NARRATIVE_LABELS:
        cur = _as_number(current.get(name))
        prev = _as_number(prior.get(name))
        if cur is None or prev is None:
            continue
        change = round(cur - prev, 1)
        deltas[name] = MetricDelta(value=cur, prior=prev, change=change, direction=direction(change))
    return deltas


def narrative_lines(deltas: Mapping[str, MetricDelta]) -> tuple[str, ...]:
    lines = []
    for name, label in NARRATIVE_LABELS.items():
        d = deltas.get(name)
        if d is None:
            continue
        sign = "+" if d.change >= 0 else ""
        lines.append(f"{d.direction} {label}: {_fmt(d.value)} ({sign}{_fmt(d.change)} WoW)")
    return tuple(lines)


def snapshot_from_metrics(metrics: Mapping[str, Any]) -> PortfolioRollup:
    """Rebuild a PortfolioRollup from a stored metrics mapping."""
    def _int(name: str) -> int:
        n = _as_number(metrics.get(name))
        return int(n) if n is not None else 0

    return PortfolioRollup(
        project_count=_int("project_count"),
        score_average=_as_number(metrics.get("score_average")),
        breached_total=_int("breached_total"),
        blocked_project_count=_int("blocked_project_count"),
        at_risk_total=_int("at_risk_total"),
        due_soon_total=_int("due_soon_total"),
    )


def rollup(
    project_rows: Iterable[ProjectSignalRow],
    prior_snapshot: PortfolioRollup | Mapping[str, Any] | None = None,
) -> PortfolioRollup:
    """Fold project rows into org-level aggregates."""
    rows = list(project_rows)
    scores = [r.score for r in rows if r.score is not None]
    score_avg = round(sum(scores) / len(scores), 1) if scores else None

    rag_counts = {rag.value: 0 for rag in Rag}
    for r in rows:
        rag_counts[r.rag.value] += 1

    current = PortfolioRollup(
        project_count=len(rows),
        score_average=score_avg,
        breached_total=sum(r.counts.breached for r in rows),
        blocked_project_count=rag_counts[Rag.RED.value],
        at_risk_total=sum(r.counts.at_risk for r in rows),
        due_soon_total=sum(r.due_soon for r in rows),
        rag_counts=rag_counts,
    )
    if prior_snapshot is None:
        return current

    prior = (
        prior_snapshot if isinstance(prior_snapshot, PortfolioRollup)
        else snapshot_from_metrics(_prior_metrics(prior_snapshot))
    )
    deltas = compute_deltas(current.metrics(), _prior_metrics(prior_snapshot))
    return PortfolioRollup(
        project_count=current.project_count,
        score_average=current.score_average,
        breached_total=current.breached_total,
        blocked_project_count=current.blocked_project_count,
        at_risk_total=current.at_risk_total,
        due_soon_total=current.due_soon_total,
        rag_counts=rag_counts,
        prior_snapshot=prior,
        deltas=deltas,
        narrative=narrative_lines(deltas),
    )
