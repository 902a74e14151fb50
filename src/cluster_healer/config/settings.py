"""Pydantic settings for cluster-healer configuration."""

import logging
from pathlib import Path
from typing import List, Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

from cluster_healer.models import RetryPolicy

DEFAULT_CNI_MANIFEST = (
    "https://raw.githubusercontent.com/flannel-io/flannel/master/Documentation/kube-flannel.yml"
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file."""

    # Endpoints and credentials
    control_plane_ip: str = Field(
        default="10.10.0.30", description="Address of the control-plane node"
    )
    talosconfig: Path = Field(
        default=Path("~/talosconfig"), description="Path to the Talos client config"
    )
    kubeconfig: Optional[str] = Field(
        default=None,
        description="Path to kubeconfig file (resolved at runtime)",
    )
    kube_context: Optional[str] = Field(default=None, description="Kubeconfig context name")

    # Behaviour
    auto_fix: bool = Field(default=True, description="Apply remediations (false = report only)")
    call_timeout_seconds: int = Field(
        default=30, ge=1, description="Timeout for every Cluster/Node Control API call"
    )
    max_retries: int = Field(default=3, ge=1, description="Attempts per retried step")
    retry_delay_seconds: int = Field(default=10, ge=0, description="Delay between attempts")

    # Waits
    convergence_timeout_seconds: int = Field(
        default=300, ge=1, description="Ceiling for the final wait on node readiness"
    )
    convergence_interval_seconds: int = Field(default=10, ge=1)
    scheduler_wait_seconds: int = Field(
        default=30, ge=1, description="Wait for control-plane pods to be recreated"
    )
    settle_seconds: int = Field(
        default=15, ge=1, description="Wait for a service or node to settle after an action"
    )
    node_ready_timeout_seconds: int = Field(
        default=60, ge=1, description="Wait for a node to report Ready after service restarts"
    )
    reboot_timeout_seconds: int = Field(
        default=120, ge=1, description="How long a rebooted node may take to answer again"
    )
    reboot_poll_seconds: int = Field(default=10, ge=1)
    reboot_settle_seconds: int = Field(
        default=60, ge=1, description="How long to wait for a rebooting node to go down"
    )
    fatal_reboot_cycles: int = Field(
        default=1, ge=0, description="Control-plane reboots attempted before giving up"
    )

    # Drain before reboot
    drain_before_reboot: bool = Field(default=True)
    drain_grace_period_seconds: int = Field(default=30, ge=0)
    drain_timeout_seconds: int = Field(default=60, ge=1)

    # Cluster layout
    control_plane_namespace: str = Field(default="kube-system")
    control_plane_selector: str = Field(default="tier=control-plane")
    kube_proxy_selector: str = Field(default="k8s-app=kube-proxy")
    kube_proxy_daemonset: str = Field(default="kube-proxy")
    cni_patterns: List[str] = Field(
        default_factory=lambda: ["calico", "flannel", "weave", "cilium"],
        description="Substrings identifying network-plugin pods and daemonsets",
    )
    cni_rescue_manifest: Optional[str] = Field(
        default=DEFAULT_CNI_MANIFEST,
        description="Manifest applied when no network plugin exists (empty disables)",
    )
    cordon_exempt_label: str = Field(
        default="cluster-healer/intentional-cordon",
        description="Nodes carrying this label are never uncordoned",
    )

    # Node Control API
    runtime_service: str = Field(default="containerd")
    kubelet_service: str = Field(default="kubelet")
    talosctl_path: str = Field(default="talosctl")
    kubectl_path: str = Field(default="kubectl")
    log_tail_lines: int = Field(default=10, ge=1)

    # Output
    log_level: str = Field(default="INFO", description="Logging level")
    report_dir: Path = Field(default=Path("logs"), description="Directory for run reports")

    model_config = ConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Retry policies derived from the flat settings

    @property
    def step_policy(self) -> RetryPolicy:
        return RetryPolicy(max_attempts=self.max_retries, delay_seconds=self.retry_delay_seconds)

    @property
    def convergence_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(
            self.convergence_interval_seconds, self.convergence_timeout_seconds
        )

    @property
    def settle_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(min(5, self.settle_seconds), self.settle_seconds)

    @property
    def pod_recreate_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(min(5, self.scheduler_wait_seconds), self.scheduler_wait_seconds)

    @property
    def node_ready_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(min(5, self.node_ready_timeout_seconds), self.node_ready_timeout_seconds)

    @property
    def reboot_down_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(self.reboot_poll_seconds, self.reboot_settle_seconds)

    @property
    def reboot_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(self.reboot_poll_seconds, self.reboot_timeout_seconds)

    @property
    def drain_policy(self) -> RetryPolicy:
        return RetryPolicy.polling(min(5, self.drain_timeout_seconds), self.drain_timeout_seconds)

    def validate_paths(self) -> None:
        """Validate credential paths and resolve kubeconfig intelligently.

        - If running in-cluster (ServiceAccount tokens detected), use in-cluster auth
        - If KUBECONFIG is set and exists, use it
        - Otherwise fall back to ~/.kube/config
        """
        self.talosconfig = self.talosconfig.expanduser()
        if not self.talosconfig.exists():
            raise FileNotFoundError(f"Talos config not found at {self.talosconfig}")

        in_cluster_ca = Path("/var/run/secrets/kubernetes.io/serviceaccount/ca.crt")
        in_cluster_token = Path("/var/run/secrets/kubernetes.io/serviceaccount/token")

        if in_cluster_ca.exists() and in_cluster_token.exists():
            self.kubeconfig = None
            logging.getLogger(__name__).info(
                "Running in-cluster: using Kubernetes ServiceAccount authentication"
            )
            return

        kubeconfig_path = None

        if self.kubeconfig:
            candidate = Path(self.kubeconfig).expanduser()
            if candidate.exists():
                kubeconfig_path = candidate

        if not kubeconfig_path:
            home_kubeconfig = Path.home() / ".kube" / "config"
            if home_kubeconfig.exists():
                kubeconfig_path = home_kubeconfig

        if not kubeconfig_path:
            configured = self.kubeconfig or "not set"
            home_path = Path.home() / ".kube" / "config"
            raise FileNotFoundError(
                f"Kubeconfig not found. Tried: {configured}, {home_path}"
            )

        self.kubeconfig = str(kubeconfig_path)

    def validate_all(self) -> None:
        """Run all validations."""
        if not self.control_plane_ip:
            raise ValueError("CONTROL_PLANE_IP environment variable is required")
        self.validate_paths()
