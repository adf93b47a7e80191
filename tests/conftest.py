"""
Shared pytest fixtures for the Governance Signal Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - now: fixed reference time for age arithmetic
    - cfg: default SignalConfig (risk 7 / breach 14 / window 30)
    - make_record / make_classified: engine value builders
"""

from datetime import datetime, timezone

import pytest

from app import create_app
from app.models import db as _db
from app.services.signals.records import ClassifiedRecord, SignalKind, SignalRecord, Urgency
from app.services.signals.thresholds import SignalConfig

NOW = datetime(2026, 3, 18, 12, 0, tzinfo=timezone.utc)   # a Wednesday


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Engine fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def now():
    return NOW


@pytest.fixture()
def cfg():
    return SignalConfig()


def _record(**kw) -> dict:
    base = {
        "entity_id": "e-1",
        "project_id": "p-1",
        "kind": SignalKind.APPROVAL,
        "submitted_at": None,
        "due_at": None,
        "severity": None,
        "actor_label": "Alice",
        "raw_status": "",
    }
    base.update(kw)
    return base


@pytest.fixture()
def make_record():
    """SignalRecord builder with sensible defaults."""
    def _make(**kw) -> SignalRecord:
        return SignalRecord(**_record(**kw))
    return _make


@pytest.fixture()
def make_classified():
    """ClassifiedRecord builder; ``age_days`` / ``urgency`` default to 0 / ok."""
    def _make(age_days=0, urgency=Urgency.OK, **kw) -> ClassifiedRecord:
        return ClassifiedRecord(**_record(**kw), age_days=age_days, urgency=urgency)
    return _make
