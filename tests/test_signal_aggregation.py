"""
Tests — Project Aggregator & Bottleneck Ranker.

Covers:
    - RAG precedence (one breach dominates)
    - Tier counts, max age, dominant actor / stage, due soon
    - Project directory metadata and idle projects
    - Worst-first ordering with stable tie-breaks
    - Bottleneck grouping (case-folded), unresolved owners skipped, limit
    - Idempotence and order independence of both folds
"""

from datetime import datetime, timedelta
import random

import pytest

from app.services.signals.bottlenecks import rank_bottlenecks
from app.services.signals.project_aggregator import aggregate_by_project, derive_rag
from app.services.signals.records import Rag, Urgency


# ═════════════════════════════════════════════════════════════════════════════
# Project aggregator
# ═════════════════════════════════════════════════════════════════════════════

class TestDeriveRag:
    @pytest.mark.parametrize("breached,at_risk,expected", [
        (0, 0, Rag.GREEN),
        (0, 3, Rag.AMBER),
        (1, 0, Rag.RED),
        (1, 50, Rag.RED),
    ])
    def test_precedence(self, breached, at_risk, expected):
        assert derive_rag(breached, at_risk) is expected


class TestAggregateByProject:
    def test_single_breach_dominates(self, make_classified):
        recs = [make_classified(entity_id=str(i), project_id="p-1") for i in range(20)]
        recs.append(make_classified(entity_id="bad", project_id="p-1", urgency=Urgency.BREACHED))
        (row,) = aggregate_by_project(recs)
        assert row.rag is Rag.RED
        assert row.counts.ok == 20
        assert row.counts.breached == 1
        assert row.counts.total == 21

    def test_counts_and_max_age(self, make_classified):
        recs = [
            make_classified(entity_id="a", age_days=3),
            make_classified(entity_id="b", age_days=9, urgency=Urgency.AT_RISK),
            make_classified(entity_id="c", age_days=1),
        ]
        (row,) = aggregate_by_project(recs)
        assert row.counts.to_dict() == {"ok": 2, "at_risk": 1, "breached": 0, "total": 3}
        assert row.max_age_days == 9
        assert row.rag is Rag.AMBER

    def test_unscoped_records_excluded(self, make_classified):
        recs = [make_classified(project_id=None), make_classified(project_id="p-1")]
        rows = aggregate_by_project(recs)
        assert [r.project_id for r in rows] == ["p-1"]

    def test_dominant_actor_ignores_unknown(self, make_classified):
        recs = [
            make_classified(entity_id="1", actor_label="Unknown user"),
            make_classified(entity_id="2", actor_label="Unknown user"),
            make_classified(entity_id="3", actor_label="Unknown user"),
            make_classified(entity_id="4", actor_label="Bob"),
        ]
        (row,) = aggregate_by_project(recs)
        assert row.dominant_actor == "Bob"

    def test_dominant_tie_broken_by_name(self, make_classified):
        recs = [
            make_classified(entity_id="1", actor_label="Zed", stage="review"),
            make_classified(entity_id="2", actor_label="Amy", stage="sign-off"),
        ]
        (row,) = aggregate_by_project(recs)
        assert row.dominant_actor == "Amy"
        assert row.dominant_stage == "review"

    def test_no_resolved_actor(self, make_classified):
        (row,) = aggregate_by_project([make_classified(actor_label="Unknown")])
        assert row.dominant_actor is None

    def test_directory_metadata(self, make_classified):
        recs = [make_classified(project_title="From record", project_code="R-1")]
        directory = {"p-1": {"title": "Alpha", "code": "A-1", "score": 81}}
        (row,) = aggregate_by_project(recs, projects=directory)
        assert (row.title, row.code, row.score) == ("Alpha", "A-1", 81.0)

    def test_record_metadata_fallback(self, make_classified):
        (row,) = aggregate_by_project([make_classified(project_title="Beta", project_code="B-1")])
        assert (row.title, row.code, row.score) == ("Beta", "B-1", None)

    def test_untitled_fallback(self, make_classified):
        (row,) = aggregate_by_project([make_classified()])
        assert row.title == "Untitled project"

    def test_idle_directory_projects(self, make_classified):
        directory = {"p-1": {"title": "Busy"}, "p-2": {"title": "Quiet", "score": 90}}
        rows = aggregate_by_project([make_classified()], projects=directory, include_idle=True)
        idle = next(r for r in rows if r.project_id == "p-2")
        assert idle.rag is Rag.GREEN
        assert idle.counts.total == 0
        assert idle.score == 90.0
        assert len(aggregate_by_project([make_classified()], projects=directory)) == 1

    def test_due_soon(self, make_classified, now):
        recs = [
            make_classified(entity_id="1", due_at=now + timedelta(days=3)),
            make_classified(entity_id="2", due_at=now + timedelta(days=45)),
            make_classified(entity_id="3", due_at=now + timedelta(days=1), urgency=Urgency.BREACHED),
            make_classified(entity_id="4", due_at=now - timedelta(days=1)),
            make_classified(entity_id="5"),
        ]
        (row,) = aggregate_by_project(recs, window_days=30, now=now)
        assert row.due_soon == 1
        (row,) = aggregate_by_project(recs, now=now)
        assert row.due_soon == 0

    def test_due_soon_naive_due_at(self, make_classified, now):
        recs = [make_classified(due_at=now.replace(tzinfo=None) + timedelta(days=3))]
        (row,) = aggregate_by_project(recs, window_days=30, now=now)
        assert row.due_soon == 1

    def test_due_soon_naive_now(self, make_classified, now):
        recs = [make_classified(due_at=now + timedelta(days=3))]
        (row,) = aggregate_by_project(recs, window_days=30, now=now.replace(tzinfo=None))
        assert row.due_soon == 1

    def test_due_soon_naive_without_now(self, make_classified):
        recs = [make_classified(due_at=datetime.now() + timedelta(days=1))]
        (row,) = aggregate_by_project(recs, window_days=30)
        assert row.due_soon == 1

    def test_sort_worst_first(self, make_classified):
        recs = [
            make_classified(entity_id="1", project_id="p-green", age_days=40),
            make_classified(entity_id="2", project_id="p-amber", age_days=2, urgency=Urgency.AT_RISK),
            make_classified(entity_id="3", project_id="p-red-young", age_days=1, urgency=Urgency.BREACHED),
            make_classified(entity_id="4", project_id="p-red-old", age_days=20, urgency=Urgency.BREACHED),
        ]
        order = [r.project_id for r in aggregate_by_project(recs)]
        assert order == ["p-red-old", "p-red-young", "p-amber", "p-green"]

    def test_tie_broken_by_project_id(self, make_classified):
        recs = [
            make_classified(entity_id="1", project_id="p-b", age_days=5),
            make_classified(entity_id="2", project_id="p-a", age_days=5),
        ]
        assert [r.project_id for r in aggregate_by_project(recs)] == ["p-a", "p-b"]

    def test_idempotent_and_order_independent(self, make_classified):
        recs = [
            make_classified(
                entity_id=str(i), project_id=f"p-{i % 4}", age_days=i % 17,
                actor_label=f"Actor {i % 3}",
                urgency=[Urgency.OK, Urgency.AT_RISK, Urgency.BREACHED][i % 3],
            )
            for i in range(40)
        ]
        first = aggregate_by_project(recs)
        assert aggregate_by_project(recs) == first
        shuffled = recs[:]
        random.Random(7).shuffle(shuffled)
        assert aggregate_by_project(shuffled) == first


# ═════════════════════════════════════════════════════════════════════════════
# Bottleneck ranker
# ═════════════════════════════════════════════════════════════════════════════

class TestRankBottlenecks:
    def test_grouping_and_stats(self, make_classified):
        recs = [
            make_classified(entity_id="1", project_id="p-1", actor_label="Finance", age_days=4),
            make_classified(entity_id="2", project_id="p-2", actor_label="finance", age_days=10),
            make_classified(entity_id="3", project_id="p-2", actor_label="FINANCE ", age_days=1),
        ]
        (row,) = rank_bottlenecks(recs)
        assert row.actor_label == "Finance"
        assert row.pending_count == 3
        assert row.projects_affected == 2
        assert row.avg_wait_days == 5.0
        assert row.max_wait_days == 10

    def test_unresolved_owners_skipped(self, make_classified):
        recs = [
            make_classified(entity_id="1", actor_label="Unknown"),
            make_classified(entity_id="2", actor_label="Unknown user"),
            make_classified(entity_id="3", actor_label="Legal"),
        ]
        assert [r.actor_label for r in rank_bottlenecks(recs)] == ["Legal"]

    def test_sort_order(self, make_classified):
        recs = [
            make_classified(entity_id="1", actor_label="Carol", age_days=30),
            make_classified(entity_id="2", actor_label="Bob", age_days=2),
            make_classified(entity_id="3", actor_label="Bob", age_days=3),
            make_classified(entity_id="4", actor_label="alice", age_days=2),
            make_classified(entity_id="5", actor_label="Alice", age_days=3),
            make_classified(entity_id="6", actor_label="Dan", age_days=30),
        ]
        assert [r.actor_label for r in rank_bottlenecks(recs)] == ["alice", "Bob", "Carol", "Dan"]

    def test_same_count_older_wait_ranks_first(self, make_classified):
        procurement = [
            make_classified(entity_id=f"p{i}", project_id=f"p-{i % 2}",
                            actor_label="Procurement", age_days=age)
            for i, age in enumerate((20, 4, 6, 1, 9))
        ]
        legal = [
            make_classified(entity_id=f"l{i}", project_id="p-9", actor_label="Legal", age_days=age)
            for i, age in enumerate((3, 3, 2, 1, 0))
        ]
        first, second = rank_bottlenecks(legal + procurement)
        assert (first.actor_label, first.pending_count, first.projects_affected, first.max_wait_days) == (
            "Procurement", 5, 2, 20,
        )
        assert (second.actor_label, second.pending_count, second.projects_affected, second.max_wait_days) == (
            "Legal", 5, 1, 3,
        )

    def test_average_rounded_to_one_decimal(self, make_classified):
        recs = [make_classified(entity_id=str(i), age_days=d) for i, d in enumerate((1, 1, 2))]
        assert rank_bottlenecks(recs)[0].avg_wait_days == 1.3

    def test_projects_affected_never_exceeds_pending(self, make_classified):
        recs = [
            make_classified(entity_id=str(i), project_id=None if i % 2 else f"p-{i}", actor_label="Ops")
            for i in range(9)
        ]
        (row,) = rank_bottlenecks(recs)
        assert row.projects_affected <= row.pending_count
        assert row.projects_affected == 5

    def test_limit(self, make_classified):
        recs = [make_classified(entity_id=str(i), actor_label=f"Actor {i:02d}") for i in range(40)]
        assert len(rank_bottlenecks(recs, limit=25)) == 25
        assert rank_bottlenecks(recs, limit=0) == []

    @pytest.mark.parametrize("max_wait,heat", [(15, "high"), (14, "medium"), (8, "medium"), (7, "low")])
    def test_heat_is_display_only(self, make_classified, max_wait, heat):
        (row,) = rank_bottlenecks([make_classified(age_days=max_wait)])
        assert row.heat == heat
        assert row.to_dict()["heat"] == heat

    def test_idempotent_and_order_independent(self, make_classified):
        recs = [
            make_classified(entity_id=str(i), project_id=f"p-{i % 5}",
                            actor_label=f"Actor {i % 6}", age_days=(i * 7) % 23)
            for i in range(60)
        ]
        first = rank_bottlenecks(recs)
        assert rank_bottlenecks(recs) == first
        reversed_recs = list(reversed(recs))
        assert rank_bottlenecks(reversed_recs) == first

    def test_empty(self):
        assert rank_bottlenecks([]) == []
