"""
Record Normalizer — maps loosely-typed source rows to SignalRecord.

Source rows come from several views (pending approval steps, RAID items,
milestones, change requests, remote executive endpoints) and each names the
same value differently.  Every canonical field is resolved by an explicit,
ordered tuple of accessor functions; the first non-empty value wins.

``normalize`` never raises: a row that cannot be understood degrades to
``kind=unknown`` / ``actor_label="Unknown"`` so one bad row cannot abort the
aggregation of the rest.

Usage:
    from app.services.signals.normalizer import normalize, resolve_actor_label
    records = normalize(rows)
    label = resolve_actor_label(["3fa85f64-...", "jane@example.com"])
"""

from __future__ import annotations

import logging
import math
import re
from collections.abc import Mapping
from datetime import datetime
from typing import Any, Callable, Iterable, Sequence

from app.services.signals.records import (
    UNKNOWN_ACTOR,
    UNKNOWN_USER,
    SignalKind,
    SignalRecord,
)
from app.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)

Accessor = Callable[[Mapping], Any]


# ═════════════════════════════════════════════════════════════════════════════
# Accessors
# ═════════════════════════════════════════════════════════════════════════════

def key(name: str) -> Accessor:
    """Accessor for a top-level key."""
    def _get(raw: Mapping) -> Any:
        return raw.get(name)
    _get.__name__ = f"key_{name}"
    return _get


def path(*names: str) -> Accessor:
    """Accessor for a nested key, e.g. ``path("project", "id")``."""
    def _get(raw: Mapping) -> Any:
        cur: Any = raw
        for n in names:
            if not isinstance(cur, Mapping):
                return None
            cur = cur.get(n)
        return cur
    _get.__name__ = "path_" + "_".join(names)
    return _get


def _is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, float) and math.isnan(value):
        return True
    return False


def first_match(raw: Mapping, accessors: Sequence[Accessor]) -> Any:
    """Return the first non-empty value produced by ``accessors``, else None."""
    for accessor in accessors:
        try:
            value = accessor(raw)
        except (TypeError, AttributeError):
            continue
        if not _is_empty(value):
            return value
    return None


FIELD_RESOLVERS: dict[str, tuple[Accessor, ...]] = {
    "entity_id": (
        key("id"), key("entity_id"), key("artifact_step_id"), key("step_id"),
        key("artifact_id"), key("item_id"),
    ),
    "project_id": (
        key("project_id"), key("projectId"), key("project_uuid"), key("projectUuid"),
        path("project", "id"), path("projects", "id"),
    ),
    "submitted_at": (
        key("submitted_at"), key("step_pending_since"), key("pending_since"),
        key("created_at"), key("computed_at"), key("updated_at"), key("requested_at"),
    ),
    "due_at": (
        key("due_at"), key("due_date"), key("target_date"), key("sla_due_at"),
    ),
    "raw_status": (
        key("sla_status"), key("sla_state"), key("state"), key("rag"),
        key("status"), key("step_status"),
    ),
    "severity": (
        key("severity"), key("score"), key("risk_score"), key("priority_score"),
        key("priority"),
    ),
    "hours_overdue": (key("hours_overdue"),),
    "hours_to_due": (key("hours_to_due"),),
    "title": (
        key("title"), key("step_title"), key("name"), key("milestone_name"),
        key("artifact_title"),
    ),
    "stage": (key("stage_key"), key("stage"), key("step_title"), key("step_name")),
    "project_code": (key("project_code"), path("project", "code"), path("projects", "project_code")),
    "project_title": (
        key("project_title"), key("project_name"), path("project", "title"),
        path("projects", "name"), path("projects", "title"),
    ),
    "kind": (
        key("kind"), key("type"), key("item_type"), key("raid_type"), key("entity_type"),
    ),
}

# Human-readable labels first, identifiers last.
ACTOR_RESOLVERS: tuple[Accessor, ...] = (
    key("approver_label"), key("actor_label"), key("approver_name"),
    key("approval_group_name"), key("group_name"), key("owner_label"),
    key("owner_name"), key("owner"), key("assignee_name"),
    key("pending_email"), key("approver_email"), key("owner_email"),
    key("assignee_email"), key("approver_ref"),
    key("approver_user_id"), key("pending_user_id"), key("owner_id"), key("assignee_id"),
)


# ═════════════════════════════════════════════════════════════════════════════
# Actor label resolution
# ═════════════════════════════════════════════════════════════════════════════

_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE,
)
MACHINE_TAG_PREFIXES = ("user:", "group:", "role:", "uid:", "auth0|", "urn:")


def looks_like_identifier(value: str) -> bool:
    """True for canonical 36-char hyphenated ids and machine-tagged values."""
    s = value.strip()
    if _UUID_RE.match(s):
        return True
    return s.lower().startswith(MACHINE_TAG_PREFIXES)


def resolve_actor_label(candidates: Iterable[Any]) -> str:
    """Pick the first human-readable label from ``candidates``.

    Labels are shown to executives, so a raw identifier is never returned:
    identifier-like candidates are skipped, and when every candidate is one
    the result is ``"Unknown user"``.  No candidates at all gives ``"Unknown"``.
    """
    saw_identifier = False
    for candidate in candidates:
        if _is_empty(candidate) or isinstance(candidate, (bool, Mapping, list, tuple)):
            continue
        text = str(candidate).strip()
        if looks_like_identifier(text):
            saw_identifier = True
            continue
        return text
    return UNKNOWN_USER if saw_identifier else UNKNOWN_ACTOR


# ═════════════════════════════════════════════════════════════════════════════
# Field coercion
# ═════════════════════════════════════════════════════════════════════════════

_KIND_SYNONYMS: dict[str, SignalKind] = {
    "approval": SignalKind.APPROVAL,
    "approval_step": SignalKind.APPROVAL,
    "artifact_approval": SignalKind.APPROVAL,
    "risk": SignalKind.RISK,
    "issue": SignalKind.ISSUE,
    "assumption": SignalKind.ASSUMPTION,
    "dependency": SignalKind.DEPENDENCY,
    "change": SignalKind.CHANGE,
    "change_request": SignalKind.CHANGE,
    "milestone": SignalKind.MILESTONE,
    "task": SignalKind.TASK,
    "workflow_item": SignalKind.TASK,
    "artifact": SignalKind.ARTIFACT,
}

# Shape markers used when no explicit kind is present.
_APPROVAL_MARKERS = ("artifact_step_id", "step_status", "approver_label", "pending_user_id", "approver_user_id")
_MILESTONE_MARKERS = ("milestone_name", "milestone_id", "baseline_date")

_SEVERITY_WORDS = {"critical": 90.0, "high": 70.0, "medium": 50.0, "low": 25.0}


def _text(value: Any) -> str:
    return "" if _is_empty(value) else str(value).strip()


def _number(value: Any) -> float | None:
    if _is_empty(value) or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def _severity(value: Any) -> float | None:
    if isinstance(value, str) and value.strip().lower() in _SEVERITY_WORDS:
        return _SEVERITY_WORDS[value.strip().lower()]
    n = _number(value)
    if n is None:
        return None
    return max(0.0, min(100.0, n))


def _timestamp(value: Any) -> datetime | None:
    try:
        return parse_datetime(value)
    except (TypeError, ValueError, OverflowError):
        return None


def _kind(raw: Mapping) -> SignalKind:
    explicit = _text(first_match(raw, FIELD_RESOLVERS["kind"])).lower()
    if explicit in _KIND_SYNONYMS:
        return _KIND_SYNONYMS[explicit]
    if any(m in raw for m in _APPROVAL_MARKERS):
        return SignalKind.APPROVAL
    if any(m in raw for m in _MILESTONE_MARKERS):
        return SignalKind.MILESTONE
    return SignalKind.UNKNOWN


def _degraded(index: int) -> SignalRecord:
    return SignalRecord(
        entity_id=f"row-{index}",
        project_id=None,
        kind=SignalKind.UNKNOWN,
        submitted_at=None,
        due_at=None,
        severity=None,
        actor_label=UNKNOWN_ACTOR,
        raw_status="",
    )


# ═════════════════════════════════════════════════════════════════════════════
# Public API
# ═════════════════════════════════════════════════════════════════════════════

def normalize_one(raw: Any, index: int = 0) -> SignalRecord:
    """Normalize a single row. Non-mapping rows degrade to an unknown record."""
    if not isinstance(raw, Mapping):
        return _degraded(index)

    r = FIELD_RESOLVERS
    entity_id = _text(first_match(raw, r["entity_id"])) or f"row-{index}"
    project_id = _text(first_match(raw, r["project_id"])) or None

    return SignalRecord(
        entity_id=entity_id,
        project_id=project_id,
        kind=_kind(raw),
        submitted_at=_timestamp(first_match(raw, r["submitted_at"])),
        due_at=_timestamp(first_match(raw, r["due_at"])),
        severity=_severity(first_match(raw, r["severity"])),
        actor_label=resolve_actor_label(a(raw) for a in ACTOR_RESOLVERS),
        raw_status=_text(first_match(raw, r["raw_status"])).lower(),
        hours_overdue=_number(first_match(raw, r["hours_overdue"])),
        hours_to_due=_number(first_match(raw, r["hours_to_due"])),
        title=_text(first_match(raw, r["title"])),
        stage=_text(first_match(raw, r["stage"])),
        project_code=_text(first_match(raw, r["project_code"])),
        project_title=_text(first_match(raw, r["project_title"])),
    )


def normalize(raw: Iterable[Any] | None) -> list[SignalRecord]:
    """Map arbitrary rows to SignalRecords, preserving input order."""
    if raw is None:
        return []
    if isinstance(raw, (str, bytes, Mapping)):
        logger.warning("normalize() expected a list of rows, got %s", type(raw).__name__)
        return []
    out = []
    unknown = 0
    for i, row in enumerate(raw):
        rec = normalize_one(row, i)
        if rec.kind is SignalKind.UNKNOWN:
            unknown += 1
        out.append(rec)
    if unknown:
        logger.debug("normalize(): %d/%d rows degraded to kind=unknown", unknown, len(out))
    return out
