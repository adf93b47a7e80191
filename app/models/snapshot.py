"""
Governance Signal Platform
Weekly portfolio snapshot — read-only prior for week-over-week deltas.

Rows are written by the weekly reporting job; the signal engine only reads
the most recent snapshot before the current week.
"""

import json
import uuid
from datetime import date, datetime, timezone

from app.models import db


def _uuid():
    return str(uuid.uuid4())


class PortfolioSnapshot(db.Model):
    """Portfolio metrics captured once per week."""

    __tablename__ = "portfolio_snapshots"
    __table_args__ = (
        db.UniqueConstraint("organisation_id", "week_start", name="uq_snapshot_org_week"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organisation_id = db.Column(db.String(36), nullable=True, index=True)
    week_start = db.Column(db.Date, nullable=False, index=True)
    metrics = db.Column(db.Text, nullable=True, comment="JSON blob of rollup metrics")
    created_at = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    @property
    def metrics_dict(self) -> dict:
        if not self.metrics:
            return {}
        try:
            data = json.loads(self.metrics)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @classmethod
    def latest_before(cls, week_start: date, organisation_id: str | None = None):
        q = cls.query.filter(cls.week_start < week_start)
        if organisation_id is not None:
            q = q.filter(cls.organisation_id == organisation_id)
        return q.order_by(cls.week_start.desc()).first()

    def to_dict(self):
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "week_start": self.week_start.isoformat() if self.week_start else None,
            "metrics": self.metrics_dict,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<PortfolioSnapshot {self.week_start}>"
