"""
Signal thresholds and per-request configuration.

Central SLA thresholds, managed from a single location, plus the
``SignalConfig`` value handed to the classifier and aggregators.

Usage:
    from app.services.signals.thresholds import SignalConfig
    cfg = SignalConfig.from_app_config(current_app.config)
    cfg = cfg.with_overrides(request.args)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Mapping

from app.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


THRESHOLDS: dict[str, Any] = {
    # Age thresholds for items with no explicit SLA status
    "risk_days": 7,                # older than 7 days -> at_risk
    "breach_days": 14,             # older than 14 days -> breached

    # "Due soon" horizon for rollups
    "window_days": 30,

    # Bottleneck heat (display only)
    "heat_high_days": 14,
    "heat_medium_days": 7,

    # Accepted ranges for request overrides
    "min_days": 1,
    "max_days": 90,
    "max_window_days": 365,

    # Executive surfaces show at most this many bottlenecks
    "bottleneck_limit": 25,
}

SCOPE_MODES = ("active", "all")

# Project statuses excluded in "active" scope
INACTIVE_PROJECT_STATUSES = frozenset({"closed", "archived", "cancelled", "completed"})


def _int_or(value: Any, fallback: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return fallback


def _clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


@dataclass(frozen=True)
class SignalConfig:
    """Recognised engine options.

    Attributes:
        risk_days:   age (days) above which a status-less item is at_risk.
        breach_days: age (days) above which a status-less item is breached.
        scope_mode:  "active" excludes closed/archived projects, "all" keeps them.
        window_days: horizon for "due soon" items in rollups.
    """
    risk_days: int = THRESHOLDS["risk_days"]
    breach_days: int = THRESHOLDS["breach_days"]
    scope_mode: str = "active"
    window_days: int = THRESHOLDS["window_days"]

    def __post_init__(self):
        if self.scope_mode not in SCOPE_MODES:
            raise ValidationError(
                f"Invalid scope mode: {self.scope_mode}",
                details={"scope": f"must be one of {', '.join(SCOPE_MODES)}"},
            )
        if self.risk_days < 0 or self.breach_days < 0 or self.window_days < 0:
            raise ValidationError("Thresholds must be non-negative")
        if self.breach_days < self.risk_days:
            raise ValidationError(
                "breach_days must be greater than or equal to risk_days",
                details={"risk_days": self.risk_days, "breach_days": self.breach_days},
            )

    @classmethod
    def from_app_config(cls, config: Mapping[str, Any]) -> "SignalConfig":
        """Build from Flask ``app.config`` (SIGNAL_* keys)."""
        return cls(
            risk_days=_int_or(config.get("SIGNAL_RISK_DAYS"), THRESHOLDS["risk_days"]),
            breach_days=_int_or(config.get("SIGNAL_BREACH_DAYS"), THRESHOLDS["breach_days"]),
            scope_mode=str(config.get("SIGNAL_SCOPE_MODE") or "active").strip().lower(),
            window_days=_int_or(config.get("SIGNAL_WINDOW_DAYS"), THRESHOLDS["window_days"]),
        )

    def with_overrides(self, args: Mapping[str, Any]) -> "SignalConfig":
        """Apply query-string overrides (riskDays, breachDays, scope, days).

        Unparseable numbers fall back to the current value; parsed numbers are
        clamped into the accepted range. Unknown scope values fall back to
        "active".
        """
        lo, hi = THRESHOLDS["min_days"], THRESHOLDS["max_days"]
        changes: dict[str, Any] = {}
        if args.get("riskDays") is not None:
            changes["risk_days"] = _clamp(_int_or(args.get("riskDays"), self.risk_days), lo, hi)
        if args.get("breachDays") is not None:
            changes["breach_days"] = _clamp(_int_or(args.get("breachDays"), self.breach_days), lo, hi)
        if args.get("days") is not None:
            changes["window_days"] = _clamp(
                _int_or(args.get("days"), self.window_days), lo, THRESHOLDS["max_window_days"],
            )
        if args.get("scope") is not None:
            scope = str(args.get("scope")).strip().lower()
            changes["scope_mode"] = "all" if scope == "all" else "active"
        if not changes:
            return self
        logger.debug("Signal config overrides: %s", changes)
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "risk_days": self.risk_days,
            "breach_days": self.breach_days,
            "scope_mode": self.scope_mode,
            "window_days": self.window_days,
        }
