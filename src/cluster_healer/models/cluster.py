"""Typed records for cluster and node state.

The API clients own all decoding, so everything above them works with these
records and never with raw API objects or command output.
"""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Container state reasons meaning the runtime lost track of the container
LOST_CONTAINER_REASONS = frozenset(
    {"ContainerStatusUnknown", "Unknown", "NodeLost"}
)

ERROR_PHASES = frozenset({"Failed", "Error"})


class NodeCondition(BaseModel):
    """A single node condition as reported by the Cluster API."""

    model_config = ConfigDict(frozen=True)

    type: str
    status: str = "Unknown"
    reason: Optional[str] = None
    message: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.type} = {self.status} ({self.reason or '-'}): {self.message or ''}"


class Node(BaseModel):
    """A cluster node."""

    model_config = ConfigDict(frozen=True)

    name: str
    address: Optional[str] = Field(default=None, description="InternalIP address")
    ready_status: str = Field(default="Unknown", description="Status of the Ready condition")
    ready_reason: Optional[str] = None
    ready_message: Optional[str] = None
    unschedulable: bool = False
    labels: Dict[str, str] = Field(default_factory=dict)
    conditions: List[NodeCondition] = Field(default_factory=list)
    allocatable: Dict[str, str] = Field(default_factory=dict)
    reachable: Optional[bool] = Field(
        default=None, description="Node Control API liveness, None when not probed"
    )

    @property
    def ready(self) -> bool:
        return self.ready_status == "True"

    @property
    def is_control_plane(self) -> bool:
        return (
            "node-role.kubernetes.io/control-plane" in self.labels
            or "node-role.kubernetes.io/master" in self.labels
        )

    @classmethod
    def from_api(cls, obj) -> "Node":
        """Build a Node from a kubernetes ``V1Node``."""
        status = obj.status
        spec = obj.spec
        address = None
        for addr in (status.addresses or []) if status else []:
            if addr.type == "InternalIP":
                address = addr.address
                break

        conditions = [
            NodeCondition(
                type=c.type,
                status=c.status or "Unknown",
                reason=c.reason,
                message=c.message,
            )
            for c in ((status.conditions or []) if status else [])
        ]
        ready = next((c for c in conditions if c.type == "Ready"), None)

        return cls(
            name=obj.metadata.name,
            address=address,
            ready_status=ready.status if ready else "Unknown",
            ready_reason=ready.reason if ready else None,
            ready_message=ready.message if ready else None,
            unschedulable=bool(spec.unschedulable) if spec else False,
            labels=dict(obj.metadata.labels or {}),
            conditions=conditions,
            allocatable={k: str(v) for k, v in ((status.allocatable or {}) if status else {}).items()},
        )


class ServiceStatus(BaseModel):
    """Snapshot of one Talos service on one node."""

    model_config = ConfigDict(frozen=True)

    node: str
    service: str
    state: str
    health: str = "?"

    @property
    def running(self) -> bool:
        return self.state == "Running"

    @property
    def healthy(self) -> bool:
        """Running and either reporting OK or not reporting health at all."""
        return self.running and self.health in ("OK", "?")

    def __str__(self) -> str:
        return f"{self.service}: {self.state} (health: {self.health})"


class ContainerInfo(BaseModel):
    """A container as listed by the Node Control API."""

    model_config = ConfigDict(frozen=True)

    node: str
    namespace: str
    id: str
    image: str = ""
    pid: Optional[int] = None
    status: str = ""

    @property
    def running(self) -> bool:
        return "RUNNING" in self.status.upper()

    def matches(self, name: str) -> bool:
        return name in self.id or name in self.image


class DiskUsage(BaseModel):
    """One mounted filesystem on a node."""

    model_config = ConfigDict(frozen=True)

    filesystem: str
    size_gb: Optional[float] = None
    used_gb: Optional[float] = None
    available_gb: Optional[float] = None
    percent_used: Optional[float] = None
    mounted_on: str = ""

    def __str__(self) -> str:
        pct = f"{self.percent_used:.1f}%" if self.percent_used is not None else "?"
        return f"{self.mounted_on or self.filesystem}: {pct} used"


class PodRecord(BaseModel):
    """A pod as seen by the Cluster API."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    node: Optional[str] = None
    phase: str = "Unknown"
    terminating: bool = Field(default=False, description="deletionTimestamp is set")
    ready: Optional[str] = Field(default=None, description="Status of the Ready condition")
    container_reasons: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    owner_kinds: List[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def daemonset_managed(self) -> bool:
        return "DaemonSet" in self.owner_kinds

    @classmethod
    def from_api(cls, obj) -> "PodRecord":
        """Build a PodRecord from a kubernetes ``V1Pod``."""
        meta = obj.metadata
        status = obj.status
        reasons: List[str] = []
        ready = None

        if status is not None:
            for cs in (status.container_statuses or []):
                state = cs.state
                if state is None:
                    continue
                for detail in (state.waiting, state.terminated):
                    if detail is not None and detail.reason:
                        reasons.append(detail.reason)
            for cond in (status.conditions or []):
                if cond.type == "Ready":
                    ready = cond.status
            # Pod-level reason such as NodeLost
            if getattr(status, "reason", None):
                reasons.append(status.reason)

        return cls(
            namespace=meta.namespace,
            name=meta.name,
            node=obj.spec.node_name if obj.spec else None,
            phase=(status.phase if status and status.phase else "Unknown"),
            terminating=meta.deletion_timestamp is not None,
            ready=ready,
            container_reasons=reasons,
            labels=dict(meta.labels or {}),
            owner_kinds=[ref.kind for ref in (meta.owner_references or [])],
        )

    def __str__(self) -> str:
        return f"{self.key} (phase: {self.phase}, ready: {self.ready})"


class DaemonSetRecord(BaseModel):
    """A daemonset with its scheduling counters."""

    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    desired: int = 0
    ready: int = 0

    @classmethod
    def from_api(cls, obj) -> "DaemonSetRecord":
        status = obj.status
        return cls(
            namespace=obj.metadata.namespace,
            name=obj.metadata.name,
            desired=(status.desired_number_scheduled or 0) if status else 0,
            ready=(status.number_ready or 0) if status else 0,
        )


class PodCategory(str, Enum):
    """Disjoint pod classification buckets."""

    TERMINATING = "terminating"
    ERROR = "error"
    STUCK = "stuck"
    HEALTHY = "healthy"
