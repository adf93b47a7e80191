"""
Governance Signal Platform
Delivery models — milestones and change requests.

Models:
    - Milestone: schedule milestones with baseline / target dates
    - ChangeRequest: change control items awaiting a decision
"""

import uuid
from datetime import datetime, time, timezone

from app.models import db

MILESTONE_STATUSES = {"planned", "in_progress", "completed", "delayed", "cancelled"}
OPEN_MILESTONE_STATUSES = {"planned", "in_progress", "delayed"}
CHANGE_STATUSES = {"draft", "submitted", "in_review", "approved", "rejected", "implemented"}
OPEN_CHANGE_STATUSES = {"submitted", "in_review"}


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


class Milestone(db.Model):
    """Schedule milestone."""

    __tablename__ = "milestones"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    milestone_name = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="planned")
    owner_name = db.Column(db.String(150), nullable=True)
    baseline_date = db.Column(db.Date, nullable=True)
    target_date = db.Column(db.Date, nullable=True)
    critical = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def hours_past_target(self, now: datetime | None = None) -> float | None:
        """Signed hours since the target date (negative while still ahead)."""
        if self.target_date is None:
            return None
        now = now or _utcnow()
        target = datetime.combine(self.target_date, time.min, tzinfo=timezone.utc)
        return (now - target).total_seconds() / 3600

    def to_signal_dict(self, now: datetime | None = None) -> dict:
        """Milestones age from their target date, not from creation."""
        past = self.hours_past_target(now)
        return {
            "id": self.id,
            "milestone_id": self.id,
            "project_id": self.project_id,
            "milestone_name": self.milestone_name,
            "status": self.status,
            "owner_name": self.owner_name,
            "baseline_date": self.baseline_date.isoformat() if self.baseline_date else None,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "severity": 90 if self.critical else None,
            "hours_overdue": past if past is not None and past > 0 else None,
            "hours_to_due": -past if past is not None and past <= 0 else None,
        }

    def __repr__(self):
        return f"<Milestone {self.milestone_name}>"


class ChangeRequest(db.Model):
    """Change control request."""

    __tablename__ = "change_requests"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="submitted")
    delivery_state = db.Column(db.String(20), nullable=True, comment="ok | at_risk | breached")
    requested_by = db.Column(db.String(150), nullable=True)
    decision_owner = db.Column(db.String(150), nullable=True)
    requested_at = db.Column(db.DateTime(timezone=True), nullable=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_signal_dict(self) -> dict:
        return {
            "id": self.id,
            "type": "change_request",
            "project_id": self.project_id,
            "title": self.title,
            "state": self.delivery_state,
            "status": self.status,
            "owner_label": self.decision_owner,
            "requested_at": self.requested_at.isoformat() if self.requested_at else None,
            "due_at": self.due_at.isoformat() if self.due_at else None,
        }

    def __repr__(self):
        return f"<ChangeRequest {self.id[:8]} {self.status}>"
