"""Governance signal service — shared by the cockpit, governance hub and insights.

Read-only: builds the per-request source list (database views plus optional
remote endpoints), runs the all-settled fan-out and feeds every successful
payload through the signal engine:

    normalize → classify_all → {aggregate_by_project, rank_bottlenecks} → rollup

Transaction policy: never flushes or commits.

Surfaces:
- cockpit():            one tile per source, partial failures stay per tile
- governance_hub():     project rows + bottlenecks + rollup
- portfolio_insights(): rollup with week-over-week deltas and narrative
- project_rows() / bottleneck_rows(): single lists for the table views
- project_detail():     one project row + its classified records

All raise SignalStarvationError when every source failed.
"""
from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from flask import current_app
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import NotFoundError
from app.models import db
from app.models.approval import ApprovalStep
from app.models.delivery import (
    OPEN_CHANGE_STATUSES,
    OPEN_MILESTONE_STATUSES,
    ChangeRequest,
    Milestone,
)
from app.models.project import Project
from app.models.raid import CLOSED_RAID_STATUSES, RaidItem
from app.models.snapshot import PortfolioSnapshot
from app.services.signals import (
    FetchSpec,
    LoadResult,
    SignalConfig,
    aggregate_by_project,
    classify_all,
    normalize,
    rank_bottlenecks,
    rollup,
    run_load,
)
from app.services.signals.orchestrator import http_source
from app.services.signals.records import (
    BottleneckRow,
    ClassifiedRecord,
    PortfolioRollup,
    ProjectSignalRow,
    TierCounts,
    Urgency,
)
from app.services.signals.thresholds import INACTIVE_PROJECT_STATUSES, THRESHOLDS

logger = logging.getLogger(__name__)

PRIMARY_SOURCE = "pending_approvals"
DIRECTORY_SOURCE = "portfolio_approvals"

# Sources whose payload is a list of work-item rows
RECORD_SOURCES = ("pending_approvals", "sla_radar", "risk_signals")

# Tiles of the executive cockpit, in display order
COCKPIT_SOURCES = (
    "pending_approvals",
    "who_blocking",
    "sla_radar",
    "risk_signals",
    "portfolio_approvals",
    "bottlenecks",
)

ACTIVE_LIFECYCLES = ("active", "paused")

_ROW_KEYS = ("items", "data", "rows", "records")


# ═════════════════════════════════════════════════════════════════════════════
# Scope
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SignalScope:
    """Which projects a request may see.

    ``mode`` "active" hides closed / archived / cancelled / deleted projects.
    ``allowed_project_ids`` is the member scope resolved upstream; when set,
    rows outside it (unscoped rows included) are dropped before aggregation.
    """
    mode: str = "active"
    organisation_id: str | None = None
    allowed_project_ids: frozenset | None = None

    def _project_filters(self) -> list:
        conds = []
        if self.organisation_id is not None:
            conds.append(Project.organisation_id == self.organisation_id)
        if self.mode == "active":
            conds.append(Project.deleted_at.is_(None))
            conds.append(Project.status.notin_(INACTIVE_PROJECT_STATUSES))
            conds.append(or_(
                Project.lifecycle_status.is_(None),
                Project.lifecycle_status.in_(ACTIVE_LIFECYCLES),
            ))
        if self.allowed_project_ids is not None:
            conds.append(Project.id.in_(self.allowed_project_ids))
        return conds

    def projects(self):
        return Project.query.filter(*self._project_filters())

    def project_ids_select(self):
        return db.select(Project.id).where(*self._project_filters())

    def restrict(self, query, column):
        """Limit a query on a project FK column to the visible projects."""
        in_scope = column.in_(self.project_ids_select())
        if self.allowed_project_ids is None and self.organisation_id is None:
            return query.filter(or_(in_scope, column.is_(None)))
        return query.filter(in_scope)

    def filter_records(self, records: Iterable[ClassifiedRecord]) -> list[ClassifiedRecord]:
        records = list(records)
        if self.allowed_project_ids is None:
            return records
        return [r for r in records if r.project_id in self.allowed_project_ids]


def parse_project_ids(value: str | None) -> frozenset | None:
    """``"a,b , c"`` → frozenset; empty or missing → None (no member scope)."""
    if not value:
        return None
    ids = frozenset(p.strip() for p in str(value).split(",") if p.strip())
    return ids or None


# ═════════════════════════════════════════════════════════════════════════════
# Database views
# ═════════════════════════════════════════════════════════════════════════════

def pending_approval_rows(scope: SignalScope) -> list[dict]:
    q = ApprovalStep.query.filter(ApprovalStep.step_status == "pending")
    q = scope.restrict(q, ApprovalStep.project_id)
    return [s.to_signal_dict() for s in q.order_by(ApprovalStep.created_at, ApprovalStep.id).all()]


def risk_signal_rows(scope: SignalScope) -> list[dict]:
    q = RaidItem.query.filter(RaidItem.status.notin_(CLOSED_RAID_STATUSES))
    q = scope.restrict(q, RaidItem.project_id)
    return [r.to_signal_dict() for r in q.order_by(RaidItem.created_at, RaidItem.id).all()]


def sla_radar_rows(scope: SignalScope, now: datetime | None = None) -> list[dict]:
    """Open milestones and change requests."""
    milestones = scope.restrict(
        Milestone.query.filter(Milestone.status.in_(OPEN_MILESTONE_STATUSES)), Milestone.project_id,
    ).order_by(Milestone.target_date, Milestone.id).all()
    changes = scope.restrict(
        ChangeRequest.query.filter(ChangeRequest.status.in_(OPEN_CHANGE_STATUSES)),
        ChangeRequest.project_id,
    ).order_by(ChangeRequest.created_at, ChangeRequest.id).all()
    return [m.to_signal_dict(now) for m in milestones] + [c.to_signal_dict() for c in changes]


def portfolio_rows(scope: SignalScope) -> list[dict]:
    """Project directory with pending approval counts."""
    pending = dict(
        db.session.query(ApprovalStep.project_id, func.count(ApprovalStep.id))
        .filter(ApprovalStep.step_status == "pending", ApprovalStep.project_id.isnot(None))
        .group_by(ApprovalStep.project_id)
        .all()
    )
    rows = []
    for p in scope.projects().order_by(Project.title, Project.id).all():
        entry = {"id": p.id, **p.to_directory_entry()}
        entry["status"] = p.status
        entry["pending_approvals"] = pending.get(p.id, 0)
        rows.append(entry)
    return rows


def prior_snapshot_for(now: datetime, organisation_id: str | None = None) -> dict | None:
    """Metrics of the latest weekly snapshot taken before the current week."""
    week_start = now.date() - timedelta(days=now.weekday())
    snap = PortfolioSnapshot.latest_before(week_start, organisation_id)
    if snap is None:
        return None
    return snap.metrics_dict or None


# ═════════════════════════════════════════════════════════════════════════════
# Source list
# ═════════════════════════════════════════════════════════════════════════════

def payload_rows(payload: Any) -> list:
    """Rows of a source payload: a bare list or a ``{"items": [...]}`` envelope."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, Mapping):
        for k in _ROW_KEYS:
            if isinstance(payload.get(k), list):
                return payload[k]
    return []


class SharedReads:
    """Per-request database reads, each view read at most once.

    Producers are synchronous SQLAlchemy code; each runs in a worker thread
    under its own app context (and therefore its own scoped session), so
    several views are read in parallel without blocking the event loop.
    Sources that need the same view await one shared task.
    """

    def __init__(self, app):
        self._app = app
        self._tasks: dict[str, asyncio.Future] = {}

    def _run(self, producer):
        with self._app.app_context():
            try:
                return producer()
            except SQLAlchemyError:
                db.session.rollback()
                raise

    async def get(self, view: str, producer) -> list:
        task = self._tasks.get(view)
        if task is None:
            task = asyncio.ensure_future(asyncio.to_thread(self._run, producer))
            self._tasks[view] = task
        # one cancelled waiter must not cancel the read for the others
        return await asyncio.shield(task)


def _db_source(name: str, fetch, *, primary: bool = False) -> FetchSpec:
    return FetchSpec(name=name, fetch=fetch, primary=primary, label=f"Failed to load {name.replace('_', ' ')}")


def _ranked(rows: list[dict], cfg: SignalConfig, now: datetime, limit: int) -> list[dict]:
    classified = classify_all(normalize(rows), cfg, now=now)
    return [b.to_dict() for b in rank_bottlenecks(classified, limit=limit)]


def build_sources(
    cfg: SignalConfig,
    scope: SignalScope,
    *,
    names: Iterable[str],
    now: datetime,
    transport=None,
) -> list[FetchSpec]:
    """FetchSpecs for the requested built-in sources plus configured remote ones."""
    limit = THRESHOLDS["bottleneck_limit"]
    reads = SharedReads(current_app._get_current_object())

    async def pending():
        return await reads.get("approvals", lambda: pending_approval_rows(scope))

    async def risks():
        return await reads.get("raid", lambda: risk_signal_rows(scope))

    async def radar():
        return await reads.get("delivery", lambda: sla_radar_rows(scope, now))

    async def directory():
        return await reads.get("projects", lambda: portfolio_rows(scope))

    async def who_blocking():
        return _ranked(await pending(), cfg, now, limit)

    async def bottlenecks():
        approvals, raid, delivery = await asyncio.gather(pending(), risks(), radar())
        return _ranked(approvals + raid + delivery, cfg, now, limit)

    fetchers = {
        "pending_approvals": pending,
        "who_blocking": who_blocking,
        "sla_radar": radar,
        "risk_signals": risks,
        "portfolio_approvals": directory,
        "bottlenecks": bottlenecks,
    }
    specs = [
        _db_source(name, fetchers[name], primary=(name == PRIMARY_SOURCE))
        for name in names
    ]

    timeout = current_app.config.get("SIGNAL_FETCH_TIMEOUT", 15)
    for name, url in (current_app.config.get("SIGNAL_REMOTE_SOURCES") or {}).items():
        if name in fetchers:
            logger.warning("Remote signal source %s shadows a built-in source; skipped", name)
            continue
        specs.append(http_source(
            name, url, timeout=timeout, params={"scope": cfg.scope_mode}, transport=transport,
        ))
    return specs


def remote_source_names() -> tuple[str, ...]:
    names = current_app.config.get("SIGNAL_REMOTE_SOURCES") or {}
    return tuple(n for n in names if n not in COCKPIT_SOURCES)


# ═════════════════════════════════════════════════════════════════════════════
# Engine
# ═════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class SignalView:
    """Everything one request computed from one load."""
    config: SignalConfig
    load: LoadResult
    records: list[ClassifiedRecord]
    projects: list[ProjectSignalRow]
    bottlenecks: list[BottleneckRow]
    rollup: PortfolioRollup
    generated_at: datetime


def tier_counts(records: Iterable[ClassifiedRecord]) -> TierCounts:
    tiers = Counter(r.urgency for r in records)
    return TierCounts(
        ok=tiers[Urgency.OK],
        at_risk=tiers[Urgency.AT_RISK],
        breached=tiers[Urgency.BREACHED],
    )


def directory_from_rows(rows: Iterable[Any]) -> dict[str, dict]:
    directory = {}
    for row in rows:
        if not isinstance(row, Mapping) or not row.get("id"):
            continue
        directory[str(row["id"])] = {
            "title": row.get("title"),
            "code": row.get("code"),
            "score": row.get("score"),
        }
    return directory


def compute_view(
    result: LoadResult,
    cfg: SignalConfig,
    scope: SignalScope,
    *,
    record_sources: Iterable[str],
    now: datetime,
    prior_snapshot: Mapping | PortfolioRollup | None = None,
    bottleneck_limit: int | None = None,
) -> SignalView:
    raw: list = []
    for name in record_sources:
        raw.extend(payload_rows(result.payload(name)))

    classified = scope.filter_records(classify_all(normalize(raw), cfg, now=now))
    directory = directory_from_rows(payload_rows(result.payload(DIRECTORY_SOURCE)))
    projects = aggregate_by_project(
        classified,
        projects=directory,
        window_days=cfg.window_days,
        now=now,
        include_idle=True,
    )
    bottlenecks = rank_bottlenecks(classified, limit=bottleneck_limit)
    return SignalView(
        config=cfg,
        load=result,
        records=classified,
        projects=projects,
        bottlenecks=bottlenecks,
        rollup=rollup(projects, prior_snapshot),
        generated_at=now,
    )


def _load_view(
    cfg: SignalConfig,
    scope: SignalScope,
    *,
    names: tuple[str, ...],
    now: datetime | None,
    transport=None,
    with_prior: bool = False,
    bottleneck_limit: int | None = None,
) -> SignalView:
    now = now or datetime.now(timezone.utc)
    specs = build_sources(cfg, scope, names=names, now=now, transport=transport)
    result = run_load(specs)
    result.raise_for_starvation()

    prior = prior_snapshot_for(now, scope.organisation_id) if with_prior else None
    record_sources = tuple(n for n in names if n in RECORD_SOURCES) + remote_source_names()
    view = compute_view(
        result, cfg, scope,
        record_sources=record_sources,
        now=now,
        prior_snapshot=prior,
        bottleneck_limit=bottleneck_limit,
    )
    logger.info(
        "Signals computed: %d records, %d projects, %d bottlenecks, %d/%d sources failed",
        len(view.records), len(view.projects), len(view.bottlenecks),
        len(result.errors), len(result.results),
    )
    return view


def _envelope(view: SignalView) -> dict:
    return {
        "generated_at": view.generated_at.isoformat(),
        "config": view.config.to_dict(),
        "partial": bool(view.load.errors),
        "errors": view.load.errors,
        "sources": view.load.to_dict()["sources"],
    }


# ═════════════════════════════════════════════════════════════════════════════
# Surfaces
# ═════════════════════════════════════════════════════════════════════════════

HUB_SOURCES = ("pending_approvals", "sla_radar", "risk_signals", "portfolio_approvals")


def cockpit(cfg: SignalConfig, scope: SignalScope, *, now=None, transport=None) -> dict:
    """Executive cockpit: one tile per source; a failed tile carries its error."""
    view = _load_view(
        cfg, scope, names=COCKPIT_SOURCES, now=now, transport=transport,
        bottleneck_limit=THRESHOLDS["bottleneck_limit"],
    )
    by_source: dict[str, list[ClassifiedRecord]] = {}
    for name in RECORD_SOURCES + remote_source_names():
        rows = payload_rows(view.load.payload(name))
        by_source[name] = scope.filter_records(classify_all(normalize(rows), cfg, now=view.generated_at))

    tiles = {}
    for name, res in view.load.results.items():
        if not res.ok:
            tiles[name] = {"status": "error", "error": res.error}
            continue
        tile: dict = {"status": "ok", "duration_ms": round(res.duration_ms, 1)}
        if name in by_source:
            tile["count"] = len(by_source[name])
            tile["counts"] = tier_counts(by_source[name]).to_dict()
        else:
            items = payload_rows(res.payload)
            tile["count"] = len(items)
            tile["items"] = items
        tiles[name] = tile

    body = _envelope(view)
    body["tiles"] = tiles
    body["rollup"] = view.rollup.to_dict()
    return body


def governance_hub(cfg: SignalConfig, scope: SignalScope, *, now=None, transport=None) -> dict:
    view = _load_view(
        cfg, scope, names=HUB_SOURCES, now=now, transport=transport,
        bottleneck_limit=THRESHOLDS["bottleneck_limit"],
    )
    body = _envelope(view)
    body["projects"] = [r.to_dict() for r in view.projects]
    body["bottlenecks"] = [b.to_dict() for b in view.bottlenecks]
    body["rollup"] = view.rollup.to_dict()
    return body


def portfolio_insights(
    cfg: SignalConfig, scope: SignalScope, *, top: int = 5, now=None, transport=None,
) -> dict:
    """Rollup with week-over-week deltas against the last weekly snapshot."""
    view = _load_view(
        cfg, scope, names=HUB_SOURCES, now=now, transport=transport, with_prior=True,
        bottleneck_limit=THRESHOLDS["bottleneck_limit"],
    )
    body = _envelope(view)
    body["rollup"] = view.rollup.to_dict()
    body["narrative"] = list(view.rollup.narrative)
    body["top_projects"] = [r.to_dict() for r in view.projects[: max(0, top)]]
    body["top_bottlenecks"] = [b.to_dict() for b in view.bottlenecks[: max(0, top)]]
    return body


def project_rows(cfg: SignalConfig, scope: SignalScope, *, now=None, transport=None) -> dict:
    view = _load_view(cfg, scope, names=HUB_SOURCES, now=now, transport=transport)
    body = _envelope(view)
    body["items"] = [r.to_dict() for r in view.projects]
    body["total"] = len(view.projects)
    return body


def bottleneck_rows(
    cfg: SignalConfig, scope: SignalScope, *, limit: int | None = None, now=None, transport=None,
) -> dict:
    limit = THRESHOLDS["bottleneck_limit"] if limit is None else limit
    view = _load_view(
        cfg, scope, names=HUB_SOURCES, now=now, transport=transport, bottleneck_limit=limit,
    )
    body = _envelope(view)
    body["items"] = [b.to_dict() for b in view.bottlenecks]
    body["total"] = len(view.bottlenecks)
    return body


def project_detail(cfg: SignalConfig, scope: SignalScope, project_id: str, *, now=None, transport=None) -> dict:
    """One project's row plus its classified records, oldest first."""
    visible = scope.projects().filter(Project.id == project_id).first()
    if visible is None:
        raise NotFoundError(resource="Project", resource_id=project_id)

    view = _load_view(cfg, scope, names=HUB_SOURCES, now=now, transport=transport)
    row = next((r for r in view.projects if r.project_id == project_id), None)
    records = sorted(
        (r for r in view.records if r.project_id == project_id),
        key=lambda r: (-r.age_days, r.kind.value, r.entity_id),
    )
    body = _envelope(view)
    body["project"] = row.to_dict() if row else None
    body["records"] = [r.to_dict() for r in records]
    return body
