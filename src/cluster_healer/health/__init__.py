"""Read-only health checks."""

from .classifiers import classify_cni, classify_pod, classify_pods, find_stuck_pods
from .evaluator import HealthEvaluator

__all__ = [
    "HealthEvaluator",
    "classify_cni",
    "classify_pod",
    "classify_pods",
    "find_stuck_pods",
]
