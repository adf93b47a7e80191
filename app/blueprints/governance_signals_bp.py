"""
Governance Signal Platform
Governance signals blueprint — cockpit, governance hub and insights endpoints.

Endpoints summary:
    GET /api/v1/signals/cockpit       per-source tiles + rollup
    GET /api/v1/signals/governance    project rows + bottlenecks + rollup
    GET /api/v1/signals/insights      rollup with week-over-week narrative
    GET /api/v1/signals/projects      project rows only
    GET /api/v1/signals/projects/<id> one project row + its classified records
    GET /api/v1/signals/bottlenecks   bottleneck rows (?limit=, default 25)

Common query params:
    riskDays, breachDays   age thresholds (1-90)
    days                   "due soon" horizon (1-365)
    scope                  active | all
    organisationId         restrict to one organisation
    projectIds             comma-separated member scope

Partial source failures return 200 with per-source errors; total starvation
returns 503 with code SIGNAL_STARVATION.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from app import limiter
from app.core.exceptions import NotFoundError, SignalStarvationError, ValidationError
from app.services import governance_signal_service as gss
from app.services.signals import SignalConfig
from app.services.signals.thresholds import THRESHOLDS
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

governance_signals_bp = Blueprint("governance_signals", __name__, url_prefix="/api/v1/signals")

_refresh_limit = limiter.shared_limit(
    lambda: current_app.config.get("SIGNAL_RATE_LIMIT", "60/minute"), scope="signals_refresh",
)

MAX_BOTTLENECK_LIMIT = 100
MAX_TOP = 50


# ── Helpers ──────────────────────────────────────────────────────────────────

def _config() -> SignalConfig:
    return SignalConfig.from_app_config(current_app.config).with_overrides(request.args)


def _scope(cfg: SignalConfig) -> gss.SignalScope:
    return gss.SignalScope(
        mode=cfg.scope_mode,
        organisation_id=request.args.get("organisationId") or None,
        allowed_project_ids=gss.parse_project_ids(request.args.get("projectIds")),
    )


def _int_arg(name: str, default: int, lo: int, hi: int):
    """Parse a bounded integer query param. Returns (value, error_response)."""
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default, None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")
    return max(lo, min(hi, value)), None


# ── Error handlers ───────────────────────────────────────────────────────────

@governance_signals_bp.errorhandler(SignalStarvationError)
def _handle_starvation(error: SignalStarvationError):
    logger.error("Signal starvation on %s: %s", request.path, error.errors)
    return api_error(E.SIGNAL_STARVATION, str(error), details={"sources": error.errors})


@governance_signals_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.VALIDATION_RULE, str(error), details=error.details)


@governance_signals_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


# ═══════════════════════════════════════════════════════════════════════════
#  SURFACES
# ═══════════════════════════════════════════════════════════════════════════

@governance_signals_bp.route("/cockpit", methods=["GET"])
@_refresh_limit
def cockpit():
    """Executive cockpit: every tile loads on its own."""
    cfg = _config()
    return jsonify(gss.cockpit(cfg, _scope(cfg)))


@governance_signals_bp.route("/governance", methods=["GET"])
@_refresh_limit
def governance_hub():
    cfg = _config()
    return jsonify(gss.governance_hub(cfg, _scope(cfg)))


@governance_signals_bp.route("/insights", methods=["GET"])
@_refresh_limit
def insights():
    """Portfolio insights with week-over-week deltas (?top=, default 5)."""
    top, err = _int_arg("top", 5, 0, MAX_TOP)
    if err:
        return err
    cfg = _config()
    return jsonify(gss.portfolio_insights(cfg, _scope(cfg), top=top))


# ═══════════════════════════════════════════════════════════════════════════
#  TABLES
# ═══════════════════════════════════════════════════════════════════════════

@governance_signals_bp.route("/projects", methods=["GET"])
@_refresh_limit
def list_projects():
    cfg = _config()
    return jsonify(gss.project_rows(cfg, _scope(cfg)))


@governance_signals_bp.route("/projects/<project_id>", methods=["GET"])
@_refresh_limit
def get_project(project_id):
    cfg = _config()
    return jsonify(gss.project_detail(cfg, _scope(cfg), project_id))


@governance_signals_bp.route("/bottlenecks", methods=["GET"])
@_refresh_limit
def list_bottlenecks():
    limit, err = _int_arg("limit", THRESHOLDS["bottleneck_limit"], 1, MAX_BOTTLENECK_LIMIT)
    if err:
        return err
    cfg = _config()
    return jsonify(gss.bottleneck_rows(cfg, _scope(cfg), limit=limit))
