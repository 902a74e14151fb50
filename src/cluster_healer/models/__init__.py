"""Data models for cluster-healer."""

from .cluster import (
    ContainerInfo,
    DaemonSetRecord,
    DiskUsage,
    Node,
    NodeCondition,
    PodCategory,
    PodRecord,
    ServiceStatus,
)
from .health import (
    CniState,
    ComponentHealth,
    ControlPlaneContainers,
    HealthReport,
    LeaderStatus,
    NodeDiagnostics,
)
from .remediation import (
    ActionOutcome,
    ActionRecord,
    ControllerState,
    Recipe,
    RecipeResult,
    RetryPolicy,
    RunOutcome,
    RunResult,
    Symptom,
)

__all__ = [
    "ActionOutcome",
    "ActionRecord",
    "CniState",
    "ComponentHealth",
    "ContainerInfo",
    "ControlPlaneContainers",
    "ControllerState",
    "DaemonSetRecord",
    "DiskUsage",
    "HealthReport",
    "LeaderStatus",
    "Node",
    "NodeCondition",
    "NodeDiagnostics",
    "PodCategory",
    "PodRecord",
    "Recipe",
    "RecipeResult",
    "RetryPolicy",
    "RunOutcome",
    "RunResult",
    "ServiceStatus",
    "Symptom",
]
