"""
Project Aggregator — one ProjectSignalRow per project.

RAG is strict precedence, not a weighted score:
    breached > 0 → R, else at_risk > 0 → A, else G
A single breach must dominate regardless of how many items are fine.

Rows are sorted worst-first: RAG rank desc, max_age_days desc, project_id asc.
Records without a project_id are excluded from this view.
"""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from app.services.signals.records import (
    ClassifiedRecord,
    ProjectSignalRow,
    Rag,
    TierCounts,
    Urgency,
)
from app.utils.helpers import parse_datetime


def derive_rag(breached: int, at_risk: int) -> Rag:
    if breached > 0:
        return Rag.RED
    if at_risk > 0:
        return Rag.AMBER
    return Rag.GREEN


def _dominant(counter: Counter) -> str | None:
    """Most frequent value; ties broken by name for determinism."""
    if not counter:
        return None
    return sorted(counter.items(), key=lambda kv: (-kv[1], kv[0]))[0][0]


def _is_due_soon(rec: ClassifiedRecord, now: datetime, horizon: datetime) -> bool:
    """``now`` / ``horizon`` are aware UTC; a naive ``due_at`` is taken as UTC."""
    due_at = parse_datetime(rec.due_at)
    if due_at is None or rec.urgency is Urgency.BREACHED:
        return False
    return now <= due_at <= horizon


def _score(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def sort_rows(rows: Iterable[ProjectSignalRow]) -> list[ProjectSignalRow]:
    return sorted(rows, key=lambda r: (-r.rag.rank, -r.max_age_days, r.project_id))


def aggregate_by_project(
    records: Iterable[ClassifiedRecord],
    *,
    projects: Mapping[str, Mapping[str, Any]] | None = None,
    window_days: int | None = None,
    now: datetime | None = None,
    include_idle: bool = False,
) -> list[ProjectSignalRow]:
    """Fold classified records into per-project rows.

    Args:
        records:     classified records (any order).
        projects:    optional directory ``{project_id: {"title", "code", "score"}}``
                     supplied by the query layer; record fields are used otherwise.
        window_days: count non-breached items due within this many days as ``due_soon``.
        now:         reference time for ``due_soon``.
        include_idle: also emit a Green, zero-count row for directory projects
                     that have no records (portfolio views count every project).
    """
    projects = projects or {}
    now = parse_datetime(now) or datetime.now(timezone.utc)
    horizon = now + timedelta(days=window_days) if window_days is not None else None

    groups: dict[str, list[ClassifiedRecord]] = {}
    for rec in records:
        if not rec.project_id:
            continue
        groups.setdefault(rec.project_id, []).append(rec)

    rows = []
    for pid, recs in groups.items():
        tiers = Counter(r.urgency for r in recs)
        counts = TierCounts(
            ok=tiers[Urgency.OK],
            at_risk=tiers[Urgency.AT_RISK],
            breached=tiers[Urgency.BREACHED],
        )
        actors = Counter(r.actor_label for r in recs if r.has_resolved_actor)
        stages = Counter(r.stage for r in recs if r.stage)
        due_soon = (
            sum(1 for r in recs if _is_due_soon(r, now, horizon)) if horizon is not None else 0
        )

        meta = projects.get(pid) or {}
        title = (
            meta.get("title")
            or next((r.project_title for r in recs if r.project_title), "")
            or "Untitled project"
        )
        code = meta.get("code") or next((r.project_code for r in recs if r.project_code), None)

        rows.append(ProjectSignalRow(
            project_id=pid,
            title=title,
            code=code,
            counts=counts,
            max_age_days=max(r.age_days for r in recs),
            rag=derive_rag(counts.breached, counts.at_risk),
            dominant_actor=_dominant(actors),
            dominant_stage=_dominant(stages),
            due_soon=due_soon,
            score=_score(meta.get("score")),
        ))

    if include_idle:
        for pid, meta in projects.items():
            if pid in groups:
                continue
            rows.append(ProjectSignalRow(
                project_id=pid,
                title=meta.get("title") or "Untitled project",
                code=meta.get("code"),
                counts=TierCounts(),
                max_age_days=0,
                rag=Rag.GREEN,
                score=_score(meta.get("score")),
            ))

    return sort_rows(rows)
