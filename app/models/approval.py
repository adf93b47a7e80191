"""
Governance Signal Platform
Pending approval steps — the consolidated approval cache.

One row per pending artifact approval step.  The cache is refreshed by the
approvals workflow (outside this service) and carries pre-computed SLA
fields (sla_status, hours_to_due, hours_overdue) next to the raw
timestamps.  Sparse rows (only submitted_at + approver id) are common for
steps created before the cache existed.
"""

import uuid
from datetime import datetime, timezone

from app.models import db

SLA_STATUSES = {"ok", "warn", "overdue", "breached", "unknown"}
STEP_STATUSES = {"pending", "approved", "rejected", "changes_requested", "skipped"}


def _uuid():
    return str(uuid.uuid4())


class ApprovalStep(db.Model):
    """A pending approval step on a project artifact."""

    __tablename__ = "approval_steps"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    project_id = db.Column(
        db.String(36),
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    artifact_id = db.Column(db.String(36), nullable=True, index=True)
    artifact_type = db.Column(db.String(50), nullable=True)
    step_title = db.Column(db.String(200), nullable=True)
    stage_key = db.Column(db.String(50), nullable=True)
    step_status = db.Column(db.String(30), nullable=False, default="pending", index=True)

    approver_label = db.Column(db.String(200), nullable=True)
    approver_user_id = db.Column(db.String(36), nullable=True)
    pending_email = db.Column(db.String(200), nullable=True)

    sla_status = db.Column(db.String(20), nullable=True, comment="ok | warn | overdue | breached")
    hours_to_due = db.Column(db.Float, nullable=True)
    hours_overdue = db.Column(db.Float, nullable=True)

    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    due_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    project = db.relationship("Project", foreign_keys=[project_id])

    def to_signal_dict(self) -> dict:
        """Row shape of the pending-approvals view."""
        return {
            "artifact_step_id": self.id,
            "project_id": self.project_id,
            "project_code": self.project.project_code if self.project else None,
            "project_title": self.project.title if self.project else None,
            "artifact_id": self.artifact_id,
            "artifact_type": self.artifact_type,
            "step_title": self.step_title,
            "stage_key": self.stage_key,
            "step_status": self.step_status,
            "approver_label": self.approver_label,
            "pending_email": self.pending_email,
            "approver_user_id": self.approver_user_id,
            "sla_status": self.sla_status,
            "hours_to_due": self.hours_to_due,
            "hours_overdue": self.hours_overdue,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ApprovalStep {self.id[:8]} {self.step_status}>"
