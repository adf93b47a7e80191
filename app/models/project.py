"""Project domain model — the unit every governance signal rolls up to."""

import uuid
from datetime import datetime, timezone

from app.models import db

PROJECT_STATUSES = {"active", "paused", "closed", "archived", "cancelled", "completed"}


def _uuid():
    return str(uuid.uuid4())


class Project(db.Model):
    """Delivery project.

    ``health_score`` is maintained outside the signal engine (0-100) and is
    carried through untouched; the engine derives its own RAG from counts.
    """

    __tablename__ = "projects"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    organisation_id = db.Column(db.String(36), nullable=True, index=True)
    project_code = db.Column(db.String(50), nullable=True)
    title = db.Column(db.String(200), nullable=False)
    status = db.Column(db.String(30), nullable=False, default="active", index=True)
    lifecycle_status = db.Column(
        db.String(30), nullable=True, default="active",
        comment="active | paused | closed",
    )
    health_score = db.Column(db.Float, nullable=True, comment="External 0-100 health score")
    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self) -> dict:
        """Serialize core project fields for API responses."""
        return {
            "id": self.id,
            "organisation_id": self.organisation_id,
            "project_code": self.project_code,
            "title": self.title,
            "status": self.status,
            "lifecycle_status": self.lifecycle_status,
            "health_score": self.health_score,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def to_directory_entry(self) -> dict:
        """Title/code/score entry for the project aggregator directory."""
        return {
            "title": self.title,
            "code": self.project_code,
            "score": self.health_score,
        }

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.project_code or self.title}>"
