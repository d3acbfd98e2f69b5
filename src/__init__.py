"""asset-timeline: versioned-state engine for image and asset generation."""

from src.history import Iteration, IterationHistory, IterationResult
from src.metrics import MetricsCollector, MetricsSink
from src.resolver import resolve_reference
from src.session import Session, SessionStore
from src.wireframe import Wireframe, WireframeComponent

__all__ = [
    # Store
    "SessionStore",
    "Session",
    # History
    "Iteration",
    "IterationHistory",
    "IterationResult",
    "resolve_reference",
    # Wireframes
    "Wireframe",
    "WireframeComponent",
    # Metrics
    "MetricsSink",
    "MetricsCollector",
]
