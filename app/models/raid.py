"""
Governance Signal Platform
RAID log model — risks, assumptions, issues, dependencies.

A single table keyed by ``raid_type``.  Owners are stored as a display
name plus an optional user id; many imported rows only carry the id.
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

RAID_TYPES = {"risk", "assumption", "issue", "dependency"}
RAID_STATUSES = {"open", "in_progress", "mitigating", "blocked", "resolved", "closed"}
CLOSED_RAID_STATUSES = {"resolved", "closed"}
PRIORITY_LEVELS = {"critical", "high", "medium", "low"}


def _uuid():
    return str(uuid.uuid4())


def calculate_risk_score(probability: int, impact: int) -> int:
    """
    Risk score on a 0-100 scale: probability (1-5) × impact (1-5) × 4.
    """
    p = max(1, min(5, int(probability or 1)))
    i = max(1, min(5, int(impact or 1)))
    return p * i * 4


class RaidItem(db.Model):
    """A RAID log entry tracked against a project."""

    __tablename__ = "raid_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    raid_type = db.Column(db.String(20), nullable=False, default="risk", index=True)
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="open", index=True)
    priority = db.Column(db.String(20), nullable=True, default="medium")
    probability = db.Column(db.Integer, nullable=True, comment="1-5 scale")
    impact = db.Column(db.Integer, nullable=True, comment="1-5 scale")
    sla_state = db.Column(db.String(20), nullable=True, comment="Explicit SLA override: ok | warn | breached")

    owner_label = db.Column(db.String(150), nullable=True)
    owner_id = db.Column(db.String(36), nullable=True)

    due_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    @property
    def is_open(self) -> bool:
        return (self.status or "open") not in CLOSED_RAID_STATUSES

    def to_signal_dict(self) -> dict:
        score = None
        if self.probability and self.impact:
            score = calculate_risk_score(self.probability, self.impact)
        return {
            "id": self.id,
            "raid_type": self.raid_type,
            "project_id": self.project_id,
            "title": self.title,
            "status": self.status,
            "sla_state": self.sla_state,
            "priority": self.priority,
            "risk_score": score,
            "owner_label": self.owner_label,
            "owner_id": self.owner_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<RaidItem {self.raid_type}:{self.id[:8]}>"
