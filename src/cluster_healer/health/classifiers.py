"""Pure pod and network-plugin classification functions.

Pods fall into exactly one category, checked in order: terminating, error,
stuck, healthy. Stuck detection runs two independent heuristics (readiness
and container status) whose results are unioned.
"""

from typing import Dict, Iterable, List, Sequence

from cluster_healer.models import CniState, PodCategory, PodRecord
from cluster_healer.models.cluster import ERROR_PHASES, LOST_CONTAINER_REASONS


def is_terminating(pod: PodRecord) -> bool:
    return pod.terminating


def is_error(pod: PodRecord) -> bool:
    return pod.phase in ERROR_PHASES


def is_stuck_by_container_status(pod: PodRecord) -> bool:
    """Container state lost/unknown to the control plane, or pod phase Unknown."""
    if pod.phase == "Unknown":
        return True
    return any(reason in LOST_CONTAINER_REASONS for reason in pod.container_reasons)


def is_stuck_by_readiness(pod: PodRecord) -> bool:
    """Ready condition anything other than exactly "True"."""
    return pod.ready != "True"


def classify_pod(pod: PodRecord, readiness_counts: bool = False) -> PodCategory:
    """Classify a pod into one disjoint category.

    Args:
        pod: Pod to classify
        readiness_counts: Treat not-Ready as stuck (used for control-plane pods)
    """
    if is_terminating(pod):
        return PodCategory.TERMINATING
    if is_error(pod):
        return PodCategory.ERROR
    if is_stuck_by_container_status(pod):
        return PodCategory.STUCK
    if readiness_counts and is_stuck_by_readiness(pod):
        return PodCategory.STUCK
    return PodCategory.HEALTHY


def classify_pods(
    pods: Iterable[PodRecord], readiness_counts: bool = False
) -> Dict[PodCategory, List[PodRecord]]:
    buckets: Dict[PodCategory, List[PodRecord]] = {c: [] for c in PodCategory}
    for pod in pods:
        buckets[classify_pod(pod, readiness_counts)].append(pod)
    return buckets


def find_stuck_pods(pods: Sequence[PodRecord]) -> List[PodRecord]:
    """Union of both stuck heuristics, de-duplicated, terminating/error excluded."""
    candidates = [p for p in pods if not is_terminating(p) and not is_error(p)]
    by_readiness = {p.key: p for p in candidates if is_stuck_by_readiness(p)}
    by_status = {p.key: p for p in candidates if is_stuck_by_container_status(p)}
    merged = {**by_readiness, **by_status}
    return [merged[key] for key in sorted(merged)]


def matches_any(name: str, patterns: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(p.lower() in lowered for p in patterns)


def classify_cni(pods: Sequence[PodRecord], patterns: Sequence[str]) -> CniState:
    """Absent when no plugin pod exists, degraded when any is not Running/Succeeded."""
    plugin_pods = [p for p in pods if matches_any(p.name, patterns)]
    if not plugin_pods:
        return CniState.ABSENT
    if any(p.phase not in ("Running", "Succeeded") for p in plugin_pods):
        return CniState.DEGRADED
    return CniState.HEALTHY
