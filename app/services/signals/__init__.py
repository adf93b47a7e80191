"""
Governance Signal Aggregation & Risk-Scoring Engine.

One shared engine for the executive cockpit, governance hub and portfolio
insights surfaces:

    normalize → classify → {aggregate_by_project, rank_bottlenecks} → rollup

wrapped per request by the fetch orchestrator (``load``).
"""

from app.services.signals.bottlenecks import rank_bottlenecks
from app.services.signals.classifier import classify, classify_all
from app.services.signals.normalizer import normalize, resolve_actor_label
from app.services.signals.orchestrator import FetchSpec, LoadResult, load, run_load
from app.services.signals.project_aggregator import aggregate_by_project
from app.services.signals.rollup import rollup
from app.services.signals.thresholds import SignalConfig

__all__ = [
    "FetchSpec",
    "LoadResult",
    "SignalConfig",
    "aggregate_by_project",
    "classify",
    "classify_all",
    "load",
    "normalize",
    "rank_bottlenecks",
    "resolve_actor_label",
    "rollup",
    "run_load",
]
