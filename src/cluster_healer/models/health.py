"""Health report models produced by the evaluator."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .cluster import DiskUsage, Node, NodeCondition, PodRecord, ServiceStatus


class CniState(str, Enum):
    """Network plugin state."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"  # present but not all pods running
    ABSENT = "absent"  # critical
    UNKNOWN = "unknown"


class ComponentHealth(str, Enum):
    """Leadership and readiness of a singleton control-plane component."""

    HEALTHY = "healthy"  # leader + ready
    DEGRADED = "degraded"  # leader but pod not ready
    FAILED = "failed"  # no leader
    UNKNOWN = "unknown"


class LeaderStatus(BaseModel):
    """Leader-election view of scheduler or controller-manager."""

    model_config = ConfigDict(frozen=True)

    component: str
    holder: Optional[str] = None
    pod_ready: Optional[str] = None
    health: ComponentHealth = ComponentHealth.UNKNOWN

    @classmethod
    def evaluate(cls, component: str, holder: Optional[str], pod_ready: Optional[str]) -> "LeaderStatus":
        if not holder:
            health = ComponentHealth.FAILED
        elif pod_ready == "True":
            health = ComponentHealth.HEALTHY
        else:
            health = ComponentHealth.DEGRADED
        return cls(component=component, holder=holder or None, pod_ready=pod_ready, health=health)


class ControlPlaneContainers(BaseModel):
    """Liveness of the static control-plane containers. None means unknown."""

    model_config = ConfigDict(frozen=True)

    apiserver: Optional[bool] = None
    controller_manager: Optional[bool] = None
    scheduler: Optional[bool] = None

    @property
    def critical_running(self) -> Optional[bool]:
        """Only the API server is treated as critical."""
        return self.apiserver


class HealthReport(BaseModel):
    """Immutable snapshot of cluster health for one evaluation pass.

    Fields set to ``None`` could not be determined; the reason is listed in
    ``probe_errors``.
    """

    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=datetime.now)
    api_server_reachable: bool = True
    nodes: List[Node] = Field(default_factory=list)
    not_ready_nodes: Optional[List[str]] = None
    cordoned_nodes: Optional[List[str]] = None
    terminating_pods: Optional[List[PodRecord]] = None
    error_pods: Optional[List[PodRecord]] = None
    stuck_pods: Optional[List[PodRecord]] = None
    cni: CniState = CniState.UNKNOWN
    cni_pods: List[PodRecord] = Field(default_factory=list)
    kube_proxy_running: Optional[int] = None
    kube_proxy_expected: Optional[int] = None
    containers: ControlPlaneContainers = Field(default_factory=ControlPlaneContainers)
    scheduler: LeaderStatus = Field(default_factory=lambda: LeaderStatus(component="kube-scheduler"))
    controller_manager: LeaderStatus = Field(
        default_factory=lambda: LeaderStatus(component="kube-controller-manager")
    )
    services: Optional[List[ServiceStatus]] = None
    kubelet_service: str = Field(default="kubelet", description="Service name kubelet health is read from")
    oom_detected: Optional[bool] = None
    probe_errors: List[str] = Field(default_factory=list)

    @property
    def unreachable_nodes(self) -> List[str]:
        return [n.name for n in self.nodes if n.reachable is False]

    @property
    def unhealthy_services(self) -> List[ServiceStatus]:
        return [s for s in (self.services or []) if not s.healthy]

    @property
    def kubelet_healthy(self) -> Optional[bool]:
        if self.services is None:
            return None
        kubelet = [s for s in self.services if s.service == self.kubelet_service]
        if not kubelet:
            return False
        return all(s.healthy for s in kubelet)

    @property
    def kube_proxy_healthy(self) -> Optional[bool]:
        if self.kube_proxy_running is None or self.kube_proxy_expected is None:
            return None
        return self.kube_proxy_running > 0 and self.kube_proxy_running >= self.kube_proxy_expected

    @property
    def components_healthy(self) -> Optional[bool]:
        states = (self.scheduler.health, self.controller_manager.health)
        if ComponentHealth.UNKNOWN in states:
            return None
        return all(s == ComponentHealth.HEALTHY for s in states)

    def symptoms(self) -> List[str]:
        """Human-readable list of everything currently wrong."""
        found = []
        if not self.api_server_reachable:
            found.append("API server unreachable")
        if self.not_ready_nodes:
            found.append(f"NotReady nodes: {', '.join(self.not_ready_nodes)}")
        if self.unreachable_nodes:
            found.append(f"Node Control API unreachable: {', '.join(self.unreachable_nodes)}")
        if self.stuck_pods:
            found.append(f"Stuck control-plane pods: {', '.join(p.name for p in self.stuck_pods)}")
        if self.containers.apiserver is False:
            found.append("kube-apiserver container not running")
        for status in (self.scheduler, self.controller_manager):
            if status.health in (ComponentHealth.DEGRADED, ComponentHealth.FAILED):
                found.append(f"{status.component} {status.health.value}")
        if self.kubelet_healthy is False:
            found.append("kubelet unhealthy on control plane")
        if self.cni in (CniState.ABSENT, CniState.DEGRADED):
            found.append(f"CNI {self.cni.value}")
        if self.kube_proxy_healthy is False:
            found.append(f"kube-proxy {self.kube_proxy_running}/{self.kube_proxy_expected} running")
        if self.cordoned_nodes:
            found.append(f"Cordoned nodes: {', '.join(self.cordoned_nodes)}")
        if self.terminating_pods:
            found.append(f"{len(self.terminating_pods)} terminating pods")
        if self.error_pods:
            found.append(f"{len(self.error_pods)} error pods")
        return found

    def blocking_symptoms(self) -> List[str]:
        """Symptoms that prevent the cluster from being considered converged.

        Stray error/terminating pods and cordons are cleaned up best-effort and
        do not block convergence.
        """
        found = []
        if not self.api_server_reachable:
            found.append("API server unreachable")
        if self.not_ready_nodes is None:
            found.append("node readiness unknown")
        elif self.not_ready_nodes:
            found.append(f"NotReady nodes: {', '.join(self.not_ready_nodes)}")
        if self.stuck_pods:
            found.append("stuck control-plane pods")
        if self.containers.apiserver is False:
            found.append("kube-apiserver container not running")
        if self.components_healthy is False:
            found.append("scheduler/controller-manager unhealthy")
        if self.kubelet_healthy is False:
            found.append("kubelet unhealthy")
        if self.cni in (CniState.ABSENT, CniState.DEGRADED):
            found.append(f"CNI {self.cni.value}")
        if self.kube_proxy_healthy is False:
            found.append("kube-proxy under-replicated")
        return found

    @property
    def is_healthy(self) -> bool:
        return not self.blocking_symptoms()


class NodeDiagnostics(BaseModel):
    """Deep diagnostics gathered for a node that never became Ready."""

    node: str
    address: Optional[str] = None
    conditions: List[NodeCondition] = Field(default_factory=list)
    allocatable: dict = Field(default_factory=dict)
    services: List[ServiceStatus] = Field(default_factory=list)
    disk_usage: List[DiskUsage] = Field(default_factory=list)
    kubelet_logs: List[str] = Field(default_factory=list)
    runtime_logs: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
