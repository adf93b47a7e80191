"""
Bottleneck Ranker — one BottleneckRow per responsible actor.

Only records with a resolved owner are grouped: an "Unknown" owner cannot
be chased by a named person.  Ranking is pending_count desc, then
max_wait_days desc, then label; the derived ``heat`` tier is display-only
and never feeds back into ordering.
"""

from __future__ import annotations

import logging
from typing import Iterable

from app.services.signals.records import BottleneckRow, ClassifiedRecord

logger = logging.getLogger(__name__)


class _ActorTally:
    __slots__ = ("label", "count", "projects", "wait_sum", "wait_max")

    def __init__(self, label: str):
        self.label = label
        self.count = 0
        self.projects: set[str] = set()
        self.wait_sum = 0
        self.wait_max = 0

    def add(self, rec: ClassifiedRecord) -> None:
        self.count += 1
        if rec.project_id:
            self.projects.add(rec.project_id)
        self.wait_sum += rec.age_days
        self.wait_max = max(self.wait_max, rec.age_days)

    def to_row(self) -> BottleneckRow:
        avg = round(self.wait_sum / self.count, 1) if self.count else 0.0
        return BottleneckRow(
            actor_label=self.label,
            pending_count=self.count,
            projects_affected=len(self.projects),
            avg_wait_days=avg,
            max_wait_days=self.wait_max,
        )


def rank_bottlenecks(
    records: Iterable[ClassifiedRecord],
    *,
    limit: int | None = None,
) -> list[BottleneckRow]:
    """Rank actors worst-first. ``limit`` caps the returned list."""
    tallies: dict[str, _ActorTally] = {}
    skipped = 0
    for rec in records:
        if not rec.has_resolved_actor:
            skipped += 1
            continue
        k = rec.actor_label.strip().casefold()
        if k not in tallies:
            tallies[k] = _ActorTally(rec.actor_label.strip())
        tallies[k].add(rec)

    if skipped:
        logger.debug("rank_bottlenecks(): %d records without a resolved owner skipped", skipped)

    rows = sorted(
        (t.to_row() for t in tallies.values()),
        key=lambda r: (-r.pending_count, -r.max_wait_days, r.actor_label.casefold()),
    )
    if limit is not None:
        rows = rows[: max(0, limit)]
    return rows
