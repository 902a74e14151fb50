"""Read-only health evaluation.

``HealthEvaluator.evaluate`` never mutates the cluster. Each check is
independent: a failed read degrades that field of the report to unknown and
the run continues. Only a completely unreachable endpoint raises.
"""

import logging
from typing import Callable, List, Optional, Tuple, TypeVar

from cluster_healer.clients import ClusterClient, NodeControlClient
from cluster_healer.context import RunContext
from cluster_healer.errors import ConnectivityError, ProbeError
from cluster_healer.health.classifiers import (
    classify_cni,
    classify_pods,
    find_stuck_pods,
    matches_any,
)
from cluster_healer.models import (
    CniState,
    ControlPlaneContainers,
    HealthReport,
    LeaderStatus,
    Node,
    PodCategory,
    PodRecord,
    ServiceStatus,
)

T = TypeVar("T")

# Leader-election lease name and pod label value per component
LEADER_COMPONENTS = {
    "scheduler": "kube-scheduler",
    "controller_manager": "kube-controller-manager",
}

# Container name substrings on the control-plane node
CONTROL_PLANE_CONTAINERS = {
    "apiserver": "kube-apiserver",
    "controller_manager": "kube-controller-manager",
    "scheduler": "kube-scheduler",
}


def holder_pod(pods: List[PodRecord], holder: Optional[str]) -> Optional[PodRecord]:
    """Pod of the current lease holder.

    Holder identities look like ``<hostname>_<uuid>``; the hostname is matched
    against the pod's node. A lone replica is assumed to be the holder.
    """
    if holder:
        identity = holder.split("_", 1)[0]
        match = next((p for p in pods if identity in (p.node, p.name)), None)
        if match is not None:
            return match
    return pods[0] if len(pods) == 1 else None


class HealthEvaluator:
    """Classifies the cluster into a HealthReport."""

    def __init__(self, cluster: ClusterClient, node_control: NodeControlClient):
        self.cluster = cluster
        self.node_control = node_control
        self.logger = logging.getLogger(__name__)

    def _probe(self, ctx: RunContext, errors: List[str], description: str, func: Callable[[], T]) -> Optional[T]:
        try:
            return func()
        except ProbeError as e:
            message = f"{description}: {e}"
            errors.append(message)
            ctx.record_error(f"Probe failed, marking unknown - {message}", e)
            return None

    def ensure_reachable(self, ctx: RunContext) -> None:
        """Raise ConnectivityError when either control surface is unreachable."""
        if not self.node_control.is_alive(ctx.control_plane_ip):
            raise ConnectivityError(
                f"Node Control API on control plane {ctx.control_plane_ip} is unreachable"
            )
        if not self.cluster.ping():
            raise ConnectivityError("Cluster API server is not responding")

    def evaluate(self, ctx: RunContext) -> HealthReport:
        """Run every check and build an immutable report."""
        self.logger.info("Evaluating cluster health...")
        self.ensure_reachable(ctx)

        errors: List[str] = []
        settings = ctx.settings

        nodes = self._probe(ctx, errors, "node list", self.cluster.list_nodes)
        not_ready = cordoned = None
        if nodes is not None:
            self.resolve_control_plane(ctx, nodes)
            nodes = [self.with_reachability(ctx, n) for n in nodes]
            not_ready = [n.name for n in nodes if not n.ready]
            cordoned = [n.name for n in nodes if n.unschedulable]
            for node in nodes:
                if node.ready:
                    self.logger.debug(f"{node.name} is Ready")
                else:
                    self.logger.error(f"NotReady: {node.name} - {node.ready_message or node.ready_reason}")

        all_pods = self._probe(ctx, errors, "pod list", self.cluster.list_pods)
        terminating = error_pods = None
        cni = CniState.UNKNOWN
        cni_pods: List[PodRecord] = []
        if all_pods is not None:
            buckets = classify_pods(all_pods)
            terminating = buckets[PodCategory.TERMINATING]
            error_pods = buckets[PodCategory.ERROR]
            cni = classify_cni(all_pods, settings.cni_patterns)
            cni_pods = [p for p in all_pods if matches_any(p.name, settings.cni_patterns)]

        stuck = self._probe(ctx, errors, "stuck pod check", lambda: self.find_stuck_pods(ctx))

        proxy = self._probe(ctx, errors, "kube-proxy check", lambda: self.kube_proxy_counts(ctx))
        proxy_running, proxy_expected = proxy if proxy is not None else (None, None)

        containers = self._probe(
            ctx, errors, "control-plane containers", lambda: self.check_containers(ctx)
        ) or ControlPlaneContainers()

        leaders = {}
        for field_name, component in LEADER_COMPONENTS.items():
            status = self._probe(
                ctx, errors, f"{component} leadership", lambda c=component: self.check_leader(ctx, c)
            )
            leaders[field_name] = status or LeaderStatus(component=component)

        services = self._probe(
            ctx, errors, "control-plane services",
            lambda: self.node_control.list_services(ctx.control_plane_ip),
        )
        oom = self._probe(
            ctx, errors, "kernel log OOM scan",
            lambda: self.node_control.has_oom_events(ctx.control_plane_ip),
        )

        report = HealthReport(
            api_server_reachable=True,
            nodes=nodes or [],
            not_ready_nodes=not_ready,
            cordoned_nodes=cordoned,
            terminating_pods=terminating,
            error_pods=error_pods,
            stuck_pods=stuck,
            cni=cni,
            cni_pods=cni_pods,
            kube_proxy_running=proxy_running,
            kube_proxy_expected=proxy_expected,
            containers=containers,
            scheduler=leaders["scheduler"],
            controller_manager=leaders["controller_manager"],
            services=services,
            kubelet_service=settings.kubelet_service,
            oom_detected=oom,
            probe_errors=errors,
        )
        self._log_report(report)
        return report

    def _log_report(self, report: HealthReport) -> None:
        if report.oom_detected:
            self.logger.error(
                "OOM issues detected on the control plane - consider more memory (4GB+ recommended)"
            )
        for service in report.unhealthy_services:
            self.logger.warning(f"Service {service.service} is unhealthy (State: {service.state}, Health: {service.health})")
        symptoms = report.symptoms()
        if symptoms:
            for symptom in symptoms:
                self.logger.warning(f"Symptom: {symptom}")
        else:
            self.logger.info("No symptoms found")

    # Individual checks, reused by remediation recipes for re-verification.
    # These raise ProbeError instead of degrading to unknown.

    def resolve_control_plane(self, ctx: RunContext, nodes: List[Node]) -> Optional[str]:
        """Record which node is the control plane (matched by address, then role)."""
        match = next((n for n in nodes if n.address == ctx.control_plane_ip), None)
        if match is None:
            match = next((n for n in nodes if n.is_control_plane), None)
        if match is not None:
            ctx.control_plane_node = match.name
        return ctx.control_plane_node

    def with_reachability(self, ctx: RunContext, node: Node) -> Node:
        """Copy of ``node`` with its Node Control API liveness filled in."""
        address = node.address
        if not address and node.name == ctx.control_plane_node:
            address = ctx.control_plane_ip
        if not address:
            return node
        reachable = self.node_control.is_alive(address)
        if not reachable:
            self.logger.error(f"Node Control API on {node.name} ({address}) is not answering")
        return node.model_copy(update={"reachable": reachable})

    def not_ready_nodes(self, ctx: RunContext) -> List[str]:
        return [n.name for n in self.cluster.list_nodes() if not n.ready]

    def node_ready(self, name: str) -> bool:
        return self.cluster.get_node(name).ready

    def find_stuck_pods(self, ctx: RunContext) -> List[PodRecord]:
        pods = self.cluster.list_pods(
            namespace=ctx.settings.control_plane_namespace,
            label_selector=ctx.settings.control_plane_selector,
        )
        stuck = find_stuck_pods(pods)
        if stuck:
            for pod in stuck:
                self.logger.warning(f"Stuck pod: {pod}")
        return stuck

    def check_cni(self, ctx: RunContext) -> CniState:
        state = classify_cni(self.cluster.list_pods(), ctx.settings.cni_patterns)
        self.logger.info(f"CNI state: {state.value}")
        return state

    def kube_proxy_counts(self, ctx: RunContext) -> Tuple[int, int]:
        """(running, expected) kube-proxy replicas."""
        settings = ctx.settings
        pods = self.cluster.list_pods(
            namespace=settings.control_plane_namespace,
            label_selector=settings.kube_proxy_selector,
        )
        running = sum(1 for p in pods if p.phase == "Running" and not p.terminating)
        expected = len(pods)
        daemonset = self.cluster.get_daemonset(
            settings.kube_proxy_daemonset, settings.control_plane_namespace
        )
        if daemonset is not None:
            expected = max(expected, daemonset.desired)
        self.logger.info(f"kube-proxy: {running}/{expected} running")
        return running, expected

    def check_containers(self, ctx: RunContext) -> ControlPlaneContainers:
        containers = self.node_control.list_containers(ctx.control_plane_ip, kubernetes_only=True)
        state = {
            field_name: any(c.matches(substring) and c.running for c in containers)
            for field_name, substring in CONTROL_PLANE_CONTAINERS.items()
        }
        result = ControlPlaneContainers(**state)
        self.logger.info(
            f"Critical containers status - API: {result.apiserver}, "
            f"Controller: {result.controller_manager}, Scheduler: {result.scheduler}"
        )
        return result

    def check_leader(self, ctx: RunContext, component: str) -> LeaderStatus:
        namespace = ctx.settings.control_plane_namespace
        holder = self.cluster.get_lease_holder(component, namespace)
        pods = self.cluster.list_pods(namespace=namespace, label_selector=f"component={component}")
        pod = holder_pod(pods, holder)
        pod_ready = pod.ready if pod else None
        status = LeaderStatus.evaluate(component, holder, pod_ready)
        self.logger.info(f"{component}: {status.health.value} (leader: {holder or 'none'}, ready: {pod_ready})")
        return status

    def kubelet_healthy(self, ctx: RunContext, node_ip: str) -> bool:
        status: Optional[ServiceStatus] = self.node_control.service_status(
            node_ip, ctx.settings.kubelet_service
        )
        return status is not None and status.healthy

    def service_running(self, ctx: RunContext, node_ip: str, service: str) -> bool:
        status = self.node_control.service_status(node_ip, service)
        return status is not None and status.running
