"""Pytest fixtures and in-memory fakes for both API clients."""

from typing import Callable, Dict, List, Optional, Set, Tuple

import pytest

from cluster_healer.config import Settings
from cluster_healer.context import RunContext
from cluster_healer.errors import ActionError, ProbeError
from cluster_healer.health import HealthEvaluator
from cluster_healer.models import (
    ContainerInfo,
    DaemonSetRecord,
    DiskUsage,
    Node,
    NodeCondition,
    PodRecord,
    ServiceStatus,
)
from cluster_healer.remediation import RemediationEngine
from cluster_healer.utils import Waiter

CP_NODE = "talos-cp"
CP_IP = "10.10.0.30"
WORKERS = {"talos-w1": "10.10.0.31", "talos-w2": "10.10.0.32"}


class FakeClock:
    """Monotonic clock whose sleep just advances time."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_node(name: str, address: str, ready: bool = True, control_plane: bool = False, **kwargs) -> Node:
    labels = {"kubernetes.io/hostname": name}
    if control_plane:
        labels["node-role.kubernetes.io/control-plane"] = ""
    status = "True" if ready else "False"
    reason = "KubeletReady" if ready else "KubeletNotReady"
    return Node(
        name=name,
        address=address,
        ready_status=status,
        ready_reason=reason,
        ready_message=None if ready else "container runtime is down",
        labels={**labels, **kwargs.pop("labels", {})},
        conditions=[NodeCondition(type="Ready", status=status, reason=reason)],
        allocatable={"cpu": "4", "memory": "8Gi"},
        **kwargs,
    )


def make_pod(
    name: str,
    namespace: str = "default",
    node: Optional[str] = None,
    phase: str = "Running",
    ready: Optional[str] = "True",
    **kwargs,
) -> PodRecord:
    return PodRecord(name=name, namespace=namespace, node=node, phase=phase, ready=ready, **kwargs)


def control_plane_pod(component: str, **kwargs) -> PodRecord:
    return make_pod(
        f"{component}-{CP_NODE}",
        namespace="kube-system",
        node=CP_NODE,
        labels={"tier": "control-plane", "component": component},
        **kwargs,
    )


def _matches_labels(pod: PodRecord, selector: Optional[str]) -> bool:
    if not selector:
        return True
    for term in selector.split(","):
        key, _, value = term.partition("=")
        if pod.labels.get(key) != value:
            return False
    return True


class FakeClusterClient:
    """In-memory Cluster API. Mutations are appended to ``mutations``."""

    def __init__(self):
        self.reachable = True
        self.nodes: Dict[str, Node] = {}
        self.pods: List[PodRecord] = []
        self.daemonsets: List[DaemonSetRecord] = []
        self.leases: Dict[str, Optional[str]] = {}
        self.recreate: Set[str] = set()
        self.mutations: List[Tuple[str, str]] = []
        self.fail_reads: Set[str] = set()
        self.on_rollout: Dict[str, Callable[[], None]] = {}

    def _read(self, what: str) -> None:
        if not self.reachable or what in self.fail_reads:
            raise ProbeError(f"{what} failed: connection refused")

    def _write(self, what: str, target: str) -> None:
        if not self.reachable:
            raise ActionError(f"{what} {target} failed: connection refused")
        self.mutations.append((what, target))

    def set_ready(self, name: str, ready: bool) -> None:
        node = self.nodes[name]
        self.nodes[name] = make_node(
            name, node.address, ready=ready, control_plane=node.is_control_plane,
            unschedulable=node.unschedulable,
        )

    def ping(self) -> bool:
        return self.reachable

    def list_nodes(self) -> List[Node]:
        self._read("list nodes")
        return list(self.nodes.values())

    def get_node(self, name: str) -> Node:
        self._read("get node")
        if name not in self.nodes:
            raise ProbeError(f"get node {name} failed: 404 Not Found")
        return self.nodes[name]

    def cordon(self, name: str) -> None:
        self._write("cordon", name)
        self.nodes[name] = self.nodes[name].model_copy(update={"unschedulable": True})

    def uncordon(self, name: str) -> None:
        self._write("uncordon", name)
        self.nodes[name] = self.nodes[name].model_copy(update={"unschedulable": False})

    def list_pods(self, namespace=None, label_selector=None, field_selector=None) -> List[PodRecord]:
        self._read("list pods")
        node = field_selector.split("=", 1)[1] if field_selector else None
        return [
            p for p in self.pods
            if (namespace is None or p.namespace == namespace)
            and _matches_labels(p, label_selector)
            and (node is None or p.node == node)
        ]

    def _remove(self, name: str, namespace: str) -> bool:
        for pod in self.pods:
            if pod.name == name and pod.namespace == namespace:
                self.pods.remove(pod)
                if name in self.recreate:
                    self.pods.append(
                        pod.model_copy(
                            update={"phase": "Running", "ready": "True", "container_reasons": [], "terminating": False}
                        )
                    )
                return True
        return False

    def delete_pod(self, name, namespace, grace_period=0, force=True) -> bool:
        self._write("delete_pod", f"{namespace}/{name}")
        return self._remove(name, namespace)

    def remove_pod_finalizers(self, name, namespace) -> bool:
        self._write("remove_finalizers", f"{namespace}/{name}")
        return any(p.name == name and p.namespace == namespace for p in self.pods)

    def evict_pod(self, name, namespace, grace_period=30) -> bool:
        self._write("evict", f"{namespace}/{name}")
        return self._remove(name, namespace)

    def list_daemonsets(self, namespace=None) -> List[DaemonSetRecord]:
        self._read("list daemonsets")
        return [d for d in self.daemonsets if namespace is None or d.namespace == namespace]

    def get_daemonset(self, name, namespace) -> Optional[DaemonSetRecord]:
        self._read("get daemonset")
        return next((d for d in self.daemonsets if d.name == name and d.namespace == namespace), None)

    def rollout_restart_daemonset(self, name, namespace) -> None:
        self._write("rollout_restart", f"{namespace}/{name}")
        hook = self.on_rollout.get(name)
        if hook:
            hook()

    def get_lease_holder(self, name, namespace) -> Optional[str]:
        self._read("get lease")
        return self.leases.get(name)

    def apply_manifest(self, source: str) -> None:
        self._write("apply", source)


class FakeNodeControlClient:
    """In-memory Node Control API keyed by node address."""

    def __init__(self):
        self.alive: Dict[str, bool] = {}
        self.services: Dict[str, Dict[str, Tuple[str, str]]] = {}
        self.containers: Dict[str, List[ContainerInfo]] = {}
        self.kernel_log: Dict[str, List[str]] = {}
        self.mutations: List[Tuple[str, str, str]] = []
        self.fail: Set[Tuple[str, str, str]] = set()
        self.hooks: Dict[Tuple[str, str, str], Callable[[], None]] = {}
        self.calls: Dict[Tuple[str, str, str], int] = {}

    def _read(self, node: str) -> None:
        if not self.is_alive(node):
            raise ProbeError(f"talosctl on {node} timed out", timed_out=True)

    def _action(self, node: str, action: str, service: str = "") -> None:
        key = (node, action, service)
        self.calls[key] = self.calls.get(key, 0) + 1
        self.mutations.append(key)
        if key in self.fail:
            raise ActionError(f"talosctl {action} {service} on {node} failed")
        hook = self.hooks.get(key)
        if hook:
            hook()

    def is_alive(self, node: str) -> bool:
        return self.alive.get(node, True)

    def list_services(self, node: str) -> List[ServiceStatus]:
        self._read(node)
        return [
            ServiceStatus(node=node, service=name, state=state, health=health)
            for name, (state, health) in self.services.get(node, {}).items()
        ]

    def service_status(self, node: str, service: str) -> Optional[ServiceStatus]:
        return next((s for s in self.list_services(node) if s.service == service), None)

    def _set(self, node: str, service: str, state: str, health: str) -> None:
        self.services.setdefault(node, {})[service] = (state, health)

    def start_service(self, node: str, service: str) -> None:
        self._action(node, "start", service)
        self._set(node, service, "Running", "OK")

    def stop_service(self, node: str, service: str) -> None:
        self._action(node, "stop", service)
        self._set(node, service, "Finished", "?")

    def restart_service(self, node: str, service: str) -> None:
        self._action(node, "restart", service)
        self._set(node, service, "Running", "OK")

    def reboot(self, node: str) -> None:
        self._action(node, "reboot")

    def shutdown(self, node: str, force: bool = False) -> None:
        self._action(node, "shutdown")

    def logs(self, node: str, service: str, tail: int = 10) -> List[str]:
        self._read(node)
        return [f"{service} log line {i}" for i in range(3)][-tail:]

    def disk_usage(self, node: str) -> List[DiskUsage]:
        self._read(node)
        return [DiskUsage(filesystem="/dev/sda6", percent_used=42.0, mounted_on="/var")]

    def dmesg(self, node: str) -> List[str]:
        self._read(node)
        return self.kernel_log.get(node, [])

    def has_oom_events(self, node: str) -> bool:
        return any("out of memory" in line.lower() for line in self.dmesg(node))

    def list_containers(self, node: str, kubernetes_only: bool = True) -> List[ContainerInfo]:
        self._read(node)
        return self.containers.get(node, [])


def _running_container(component: str) -> ContainerInfo:
    return ContainerInfo(
        node=CP_IP,
        namespace="k8s.io",
        id=f"kube-system/{component}-{CP_NODE}:{component}",
        image=f"registry.k8s.io/{component}:v1.29.0",
        pid=1000,
        status="CONTAINER_RUNNING",
    )


@pytest.fixture
def fake_cluster() -> FakeClusterClient:
    """Three healthy nodes with control plane, kube-proxy and flannel."""
    cluster = FakeClusterClient()
    cluster.nodes[CP_NODE] = make_node(CP_NODE, CP_IP, control_plane=True)
    for name, address in WORKERS.items():
        cluster.nodes[name] = make_node(name, address)

    for component in ("kube-apiserver", "kube-controller-manager", "kube-scheduler"):
        cluster.pods.append(control_plane_pod(component))
    for i, node in enumerate([CP_NODE, *WORKERS]):
        cluster.pods.append(
            make_pod(
                f"kube-proxy-{i}", namespace="kube-system", node=node,
                labels={"k8s-app": "kube-proxy"}, owner_kinds=["DaemonSet"],
            )
        )
        cluster.pods.append(
            make_pod(
                f"kube-flannel-ds-{i}", namespace="kube-flannel", node=node,
                labels={"app": "flannel"}, owner_kinds=["DaemonSet"],
            )
        )
    cluster.pods.append(make_pod("web-1", node="talos-w1", owner_kinds=["ReplicaSet"]))

    cluster.daemonsets = [
        DaemonSetRecord(namespace="kube-system", name="kube-proxy", desired=3, ready=3),
        DaemonSetRecord(namespace="kube-flannel", name="kube-flannel-ds", desired=3, ready=3),
    ]
    cluster.leases = {
        "kube-scheduler": f"{CP_NODE}_1234",
        "kube-controller-manager": f"{CP_NODE}_5678",
    }
    return cluster


@pytest.fixture
def fake_node_control() -> FakeNodeControlClient:
    node_control = FakeNodeControlClient()
    for address in [CP_IP, *WORKERS.values()]:
        node_control.services[address] = {
            "apid": ("Running", "OK"),
            "containerd": ("Running", "OK"),
            "kubelet": ("Running", "OK"),
        }
    node_control.containers[CP_IP] = [
        _running_container(c) for c in ("kube-apiserver", "kube-controller-manager", "kube-scheduler")
    ]
    return node_control


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings pointing at throwaway credential files."""
    talosconfig = tmp_path / "talosconfig"
    talosconfig.write_text("context: test\n")
    return Settings(
        control_plane_ip=CP_IP,
        talosconfig=talosconfig,
        kubeconfig=None,
        auto_fix=True,
        report_dir=tmp_path / "logs",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ctx(test_settings, clock) -> RunContext:
    return RunContext(
        settings=test_settings,
        waiter=Waiter(clock=clock, sleep=clock.sleep),
        auto_fix=True,
        run_id="20250101_000000",
    )


@pytest.fixture
def evaluator(fake_cluster, fake_node_control) -> HealthEvaluator:
    return HealthEvaluator(fake_cluster, fake_node_control)


@pytest.fixture
def engine(fake_cluster, fake_node_control, evaluator) -> RemediationEngine:
    return RemediationEngine(fake_cluster, fake_node_control, evaluator)
