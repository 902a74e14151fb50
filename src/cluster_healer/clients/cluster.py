"""
Cluster API client.

Thin typed wrapper over the Kubernetes API. Reads raise ``ProbeError``,
mutations raise ``ActionError``; "not found" on a delete is a success so
that cleanup recipes stay idempotent.
"""

import logging
import subprocess
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional

import urllib3
from kubernetes import client, config
from kubernetes.client.rest import ApiException

from cluster_healer.errors import ActionError, ProbeError
from cluster_healer.models import DaemonSetRecord, Node, PodRecord

logger = logging.getLogger(__name__)

RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"


class ClusterClient:
    """Typed access to nodes, pods, daemonsets and leases."""

    def __init__(
        self,
        kubeconfig: Optional[str] = None,
        context: Optional[str] = None,
        timeout: int = 30,
        kubectl_path: str = "kubectl",
        api_client: Optional[client.ApiClient] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        """
        Initialize the Cluster API client.

        Args:
            kubeconfig: Path to kubeconfig (None tries in-cluster config first)
            context: Kubeconfig context to use
            timeout: Per-request timeout in seconds
            kubectl_path: kubectl binary, used only for manifest apply
            api_client: Pre-built ApiClient (skips config loading)
            runner: subprocess.run compatible callable
        """
        self.kubeconfig = kubeconfig
        self.context = context
        self.timeout = timeout
        self.kubectl_path = kubectl_path
        self._runner = runner

        if api_client is None:
            api_client = self._load_api_client()

        self.core_v1 = client.CoreV1Api(api_client)
        self.apps_v1 = client.AppsV1Api(api_client)
        self.coordination_v1 = client.CoordinationV1Api(api_client)
        self.version_api = client.VersionApi(api_client)

    def _load_api_client(self) -> client.ApiClient:
        if self.kubeconfig is None:
            try:
                config.load_incluster_config()
                logger.info("Loaded in-cluster Kubernetes configuration")
                return client.ApiClient()
            except config.ConfigException:
                pass

        try:
            api_client = config.new_client_from_config(
                config_file=self.kubeconfig, context=self.context
            )
            logger.info("Loaded Kubernetes configuration from kubeconfig")
            return api_client
        except Exception as e:
            logger.error(f"Failed to load Kubernetes config: {e}")
            raise

    def _call(self, description: str, func, *args, error_cls=ProbeError, **kwargs) -> Any:
        """Invoke an API method with the request timeout, translating errors."""
        try:
            return func(*args, _request_timeout=self.timeout, **kwargs)
        except ApiException as e:
            raise error_cls(f"{description} failed: {e.status} {e.reason}") from e
        except urllib3.exceptions.TimeoutError as e:
            raise error_cls(f"{description} timed out after {self.timeout}s", timed_out=True) from e
        except (urllib3.exceptions.HTTPError, OSError) as e:
            raise error_cls(f"{description} failed: {e}") from e

    # Connectivity

    def ping(self) -> bool:
        """True when the API server answers a version request."""
        try:
            self._call("get version", self.version_api.get_code)
            return True
        except ProbeError as e:
            logger.debug(f"API server ping failed: {e}")
            return False

    # Nodes

    def list_nodes(self) -> List[Node]:
        result = self._call("list nodes", self.core_v1.list_node)
        return [Node.from_api(item) for item in result.items]

    def get_node(self, name: str) -> Node:
        return Node.from_api(self._call(f"get node {name}", self.core_v1.read_node, name))

    def cordon(self, name: str) -> None:
        self._call(
            f"cordon {name}",
            self.core_v1.patch_node,
            name,
            {"spec": {"unschedulable": True}},
            error_cls=ActionError,
        )

    def uncordon(self, name: str) -> None:
        self._call(
            f"uncordon {name}",
            self.core_v1.patch_node,
            name,
            {"spec": {"unschedulable": False}},
            error_cls=ActionError,
        )

    # Pods

    def list_pods(
        self,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> List[PodRecord]:
        """List pods in one namespace, or all namespaces when namespace is None."""
        kwargs = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector

        if namespace:
            result = self._call(
                f"list pods in {namespace}",
                self.core_v1.list_namespaced_pod,
                namespace,
                **kwargs,
            )
        else:
            result = self._call(
                "list pods", self.core_v1.list_pod_for_all_namespaces, **kwargs
            )
        return [PodRecord.from_api(item) for item in result.items]

    def delete_pod(
        self, name: str, namespace: str, grace_period: int = 0, force: bool = True
    ) -> bool:
        """Delete a pod.

        Returns:
            True if deleted, False if it was already gone
        """
        body = client.V1DeleteOptions(
            grace_period_seconds=0 if force else grace_period,
            propagation_policy="Background",
        )
        try:
            self._call(
                f"delete pod {namespace}/{name}",
                self.core_v1.delete_namespaced_pod,
                name,
                namespace,
                body=body,
                error_cls=ActionError,
            )
            return True
        except ActionError as e:
            if isinstance(e.__cause__, ApiException) and e.__cause__.status == 404:
                return False
            raise

    def remove_pod_finalizers(self, name: str, namespace: str) -> bool:
        """Clear finalizers so a force-deleted pod can go away."""
        try:
            self._call(
                f"patch finalizers of {namespace}/{name}",
                self.core_v1.patch_namespaced_pod,
                name,
                namespace,
                {"metadata": {"finalizers": None}},
                error_cls=ActionError,
            )
            return True
        except ActionError as e:
            if isinstance(e.__cause__, ApiException) and e.__cause__.status == 404:
                return False
            raise

    def evict_pod(self, name: str, namespace: str, grace_period: int = 30) -> bool:
        """Evict a pod through the eviction API (respects disruption budgets)."""
        eviction = client.V1Eviction(
            metadata=client.V1ObjectMeta(name=name, namespace=namespace),
            delete_options=client.V1DeleteOptions(grace_period_seconds=grace_period),
        )
        try:
            self._call(
                f"evict {namespace}/{name}",
                self.core_v1.create_namespaced_pod_eviction,
                name,
                namespace,
                eviction,
                error_cls=ActionError,
            )
            return True
        except ActionError as e:
            if isinstance(e.__cause__, ApiException) and e.__cause__.status == 404:
                return False
            raise

    # Daemonsets

    def list_daemonsets(self, namespace: Optional[str] = None) -> List[DaemonSetRecord]:
        if namespace:
            result = self._call(
                f"list daemonsets in {namespace}",
                self.apps_v1.list_namespaced_daemon_set,
                namespace,
            )
        else:
            result = self._call(
                "list daemonsets", self.apps_v1.list_daemon_set_for_all_namespaces
            )
        return [DaemonSetRecord.from_api(item) for item in result.items]

    def get_daemonset(self, name: str, namespace: str) -> Optional[DaemonSetRecord]:
        try:
            obj = self._call(
                f"get daemonset {namespace}/{name}",
                self.apps_v1.read_namespaced_daemon_set,
                name,
                namespace,
            )
        except ProbeError as e:
            if isinstance(e.__cause__, ApiException) and e.__cause__.status == 404:
                return None
            raise
        return DaemonSetRecord.from_api(obj)

    def rollout_restart_daemonset(self, name: str, namespace: str) -> None:
        """Same patch ``kubectl rollout restart`` applies."""
        patch = {
            "spec": {
                "template": {
                    "metadata": {
                        "annotations": {
                            RESTARTED_AT_ANNOTATION: datetime.now(timezone.utc).isoformat()
                        }
                    }
                }
            }
        }
        self._call(
            f"rollout restart daemonset {namespace}/{name}",
            self.apps_v1.patch_namespaced_daemon_set,
            name,
            namespace,
            patch,
            error_cls=ActionError,
        )

    # Leases

    def get_lease_holder(self, name: str, namespace: str) -> Optional[str]:
        """Current leader identity of a leader-election lease, None if unheld."""
        try:
            lease = self._call(
                f"get lease {namespace}/{name}",
                self.coordination_v1.read_namespaced_lease,
                name,
                namespace,
            )
        except ProbeError as e:
            if isinstance(e.__cause__, ApiException) and e.__cause__.status == 404:
                return None
            raise
        holder = lease.spec.holder_identity if lease.spec else None
        return holder or None

    # Manifests

    def apply_manifest(self, source: str) -> None:
        """Apply a manifest file or URL with kubectl."""
        cmd = [self.kubectl_path, "apply", "-f", source]
        if self.kubeconfig:
            cmd.extend(["--kubeconfig", self.kubeconfig])
        if self.context:
            cmd.extend(["--context", self.context])

        try:
            result = self._runner(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise ActionError(f"kubectl apply -f {source} timed out", timed_out=True) from e
        except OSError as e:
            raise ActionError(f"Cannot run kubectl: {e}") from e

        if result.returncode != 0:
            raise ActionError(f"kubectl apply -f {source} failed: {(result.stderr or '').strip()}")
