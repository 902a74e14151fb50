"""
Remediation recipes.

Each recipe re-checks its symptom first and returns a no-op result when
there is nothing to do, so every recipe is safe to invoke repeatedly. Steps
are retried through the run's ``Waiter`` and every mutating call is logged
as an ``ActionRecord`` before and after it runs.
"""

import logging
from typing import Callable, List, Optional, Set, TypeVar

from cluster_healer.clients import ClusterClient, NodeControlClient
from cluster_healer.context import RunContext
from cluster_healer.errors import ActionError, ProbeError
from cluster_healer.health import HealthEvaluator
from cluster_healer.health.classifiers import (
    find_stuck_pods,
    is_error,
    is_terminating,
    matches_any,
)
from cluster_healer.models import (
    ActionOutcome,
    CniState,
    ComponentHealth,
    Node,
    NodeDiagnostics,
    PodRecord,
    Recipe,
    RecipeResult,
    RetryPolicy,
)

T = TypeVar("T")

# Single-shot step: fall through to the recipe's own fallback on failure
ONCE = RetryPolicy(max_attempts=1, delay_seconds=0)

# Always inspected alongside the configured runtime and kubelet services
DIAGNOSTIC_EXTRA_SERVICES = ("apid",)


class RemediationEngine:
    """Applies remediation recipes against the cluster."""

    def __init__(
        self,
        cluster: ClusterClient,
        node_control: NodeControlClient,
        evaluator: HealthEvaluator,
    ):
        self.cluster = cluster
        self.node_control = node_control
        self.evaluator = evaluator
        self.logger = logging.getLogger(__name__)

    # Helpers

    def _act(
        self,
        ctx: RunContext,
        name: str,
        target: str,
        intent: str,
        func: Callable[[], object],
        policy: Optional[RetryPolicy] = None,
    ) -> bool:
        """Run one mutating step under a retry policy and log it.

        Returns:
            True if the step eventually succeeded
        """
        record = ctx.begin_action(name, target, intent)
        attempts = 0

        def attempt():
            nonlocal attempts
            attempts += 1
            return func()

        try:
            ctx.waiter.retry(attempt, policy or ctx.settings.step_policy, description=intent)
        except ActionError as e:
            ctx.finish_action(record, ActionOutcome.FAILED, str(e), attempts)
            ctx.record_error(f"{intent} failed: {e}", e)
            return False

        ctx.finish_action(record, ActionOutcome.SUCCESS, attempts=attempts)
        return True

    def _check(self, ctx: RunContext, description: str, func: Callable[[], T]) -> Optional[T]:
        """Cheap re-check before acting. None when the read failed."""
        try:
            return func()
        except ProbeError as e:
            ctx.record_error(f"Re-check '{description}' failed: {e}", e)
            return None

    def _disabled(self, ctx: RunContext, result: RecipeResult) -> Optional[RecipeResult]:
        if ctx.auto_fix:
            return None
        self.logger.warning(f"Auto-fix disabled, not running {result.recipe.value} on {result.target}")
        result.success = False
        result.detail = "auto-fix disabled"
        return ctx.record_recipe(result)

    def _noop(self, ctx: RunContext, result: RecipeResult, detail: str) -> RecipeResult:
        self.logger.info(f"{result.recipe.value}({result.target}): {detail}, nothing to do")
        result.noop = True
        result.detail = detail
        return ctx.record_recipe(result)

    def _fail(self, ctx: RunContext, result: RecipeResult, detail: str) -> RecipeResult:
        self.logger.error(f"{result.recipe.value}({result.target}) failed: {detail}")
        result.success = False
        result.detail = detail
        return ctx.record_recipe(result)

    def _node_address(self, ctx: RunContext, name: str) -> Optional[str]:
        if name == ctx.control_plane_node:
            return ctx.control_plane_ip
        node = self._check(ctx, f"address of {name}", lambda: self.cluster.get_node(name))
        return node.address if node else None

    def _delete_pods(self, ctx: RunContext, pods: List[PodRecord], strip_finalizers: bool = False) -> int:
        deleted = 0
        for pod in pods:
            if self._act(
                ctx,
                "delete-pod",
                pod.key,
                f"Force deleting pod {pod.name} in namespace {pod.namespace}",
                lambda p=pod: self.cluster.delete_pod(p.name, p.namespace, grace_period=0, force=True),
                policy=ONCE,
            ):
                deleted += 1
            if strip_finalizers:
                try:
                    self.cluster.remove_pod_finalizers(pod.name, pod.namespace)
                except ActionError as e:
                    self.logger.debug(f"Could not clear finalizers on {pod.key}: {e}")
        return deleted

    # Node recovery

    def recover_notready_node(self, ctx: RunContext, node_name: str) -> RecipeResult:
        """Delete terminating pods, bounce the runtime and kubelet, reboot if still NotReady."""
        settings = ctx.settings
        result = RecipeResult(recipe=Recipe.RECOVER_NOT_READY_NODE, target=node_name)

        node = self._check(ctx, f"node {node_name}", lambda: self.cluster.get_node(node_name))
        if node is None:
            return self._fail(ctx, result, "cannot read node state")
        if node.ready:
            return self._noop(ctx, result, "node is Ready")

        self.logger.error(f"Recovering NotReady node {node_name}: {node.ready_message or node.ready_reason}")
        if self._disabled(ctx, result):
            return result

        address = node.address or self._node_address(ctx, node_name)
        if not address:
            return self._fail(ctx, result, "cannot determine node address")

        # 1. terminating pods pinned to the node
        cleanup = self.cleanup_terminating_pods(ctx, node=node_name)
        result.steps.append(f"terminating pods: {cleanup.detail or 'none'}")

        # services cannot be restarted on a node whose Node Control API is down
        if not self.node_control.is_alive(address):
            self.logger.error(f"Node Control API on {node_name} ({address}) unreachable, skipping service restarts")
            result.steps.append("node control unreachable")
            return self._escalate_reboot(ctx, result, node_name, address)

        # 2. container runtime
        runtime = settings.runtime_service
        self._act(
            ctx, "stop-service", node_name, f"Stopping {runtime} on {node_name}",
            lambda: self.node_control.stop_service(address, runtime), policy=ONCE,
        )
        ctx.waiter.wait_for(
            lambda: not self.evaluator.service_running(ctx, address, runtime),
            settings.settle_policy,
            f"{runtime} to stop on {node_name}",
        )
        started = self._act(
            ctx, "start-service", node_name, f"Starting {runtime} on {node_name}",
            lambda: self.node_control.start_service(address, runtime),
        )
        if not started:
            result.steps.append(f"{runtime} failed to start")
            return self._escalate_reboot(ctx, result, node_name, address)

        ctx.waiter.wait_for(
            lambda: self.evaluator.service_running(ctx, address, runtime),
            settings.settle_policy,
            f"{runtime} running on {node_name}",
        )
        result.steps.append(f"{runtime} restarted")

        # 3. kubelet
        kubelet = settings.kubelet_service
        if self._act(
            ctx, "restart-service", node_name, f"Restarting {kubelet} on {node_name}",
            lambda: self.node_control.restart_service(address, kubelet),
        ):
            result.steps.append(f"{kubelet} restarted")

        # 4. verify
        if ctx.waiter.wait_for(
            lambda: self.evaluator.node_ready(node_name),
            settings.node_ready_policy,
            f"{node_name} to become Ready",
        ):
            self.logger.info(f"{node_name} recovered")
            result.detail = "node Ready after service restarts"
            return ctx.record_recipe(result)

        self.logger.error(f"{node_name} still NotReady after service restarts")
        return self._escalate_reboot(ctx, result, node_name, address)

    def _escalate_reboot(
        self, ctx: RunContext, result: RecipeResult, node_name: str, address: str
    ) -> RecipeResult:
        result.escalated_to = Recipe.REBOOT_NODE
        reboot = self.reboot_node(ctx, node_name, address)
        result.success = reboot.success
        result.detail = f"escalated to reboot: {reboot.detail or ('ok' if reboot.success else 'failed')}"
        return ctx.record_recipe(result)

    def reboot_node(self, ctx: RunContext, node_name: str, address: Optional[str] = None) -> RecipeResult:
        """Drain (optional), reboot with forced-shutdown fallback, wait for liveness."""
        settings = ctx.settings
        result = RecipeResult(recipe=Recipe.REBOOT_NODE, target=node_name)

        try:
            if self.evaluator.node_ready(node_name):
                return self._noop(ctx, result, "node is Ready")
        except ProbeError as e:
            self.logger.warning(f"Cannot read {node_name} readiness, rebooting anyway: {e}")

        if self._disabled(ctx, result):
            return result

        address = address or self._node_address(ctx, node_name)
        if not address:
            return self._fail(ctx, result, "cannot determine node address")

        cordoned = False
        if settings.drain_before_reboot:
            drained = self.drain_node(ctx, node_name)
            result.steps.append("drained" if drained else "drain incomplete")
            cordoned = drained
            if not drained:
                # a partial drain can still leave the node cordoned
                node = self._check(ctx, f"node {node_name}", lambda: self.cluster.get_node(node_name))
                cordoned = node is not None and node.unschedulable

        issued = self._act(
            ctx, "reboot", node_name, f"Rebooting {node_name} ({address})",
            lambda: self.node_control.reboot(address), policy=ONCE,
        )
        if not issued:
            issued = self._act(
                ctx, "shutdown", node_name, f"Forcing shutdown of {node_name} ({address})",
                lambda: self.node_control.shutdown(address, force=True), policy=ONCE,
            )
        if not issued:
            return self._fail(ctx, result, "neither reboot nor forced shutdown could be issued")
        result.steps.append("reboot issued")

        ctx.waiter.wait_for(
            lambda: not self.node_control.is_alive(address),
            settings.reboot_down_policy,
            f"{node_name} to go down",
        )
        if not ctx.waiter.wait_for(
            lambda: self.node_control.is_alive(address),
            settings.reboot_policy,
            f"{node_name} to come back online",
        ):
            return self._fail(
                ctx, result,
                f"{node_name} did not come back online within {settings.reboot_timeout_seconds}s",
            )
        self.logger.info(f"{node_name} is back online")
        result.steps.append("node back online")

        if cordoned:
            self._act(
                ctx, "uncordon", node_name, f"Uncordoning {node_name} after reboot",
                lambda: self.cluster.uncordon(node_name),
            )
        result.detail = "node rebooted and answering"
        return ctx.record_recipe(result)

    def drain_node(self, ctx: RunContext, node_name: str) -> bool:
        """Best-effort drain: cordon then evict everything not owned by a DaemonSet."""
        settings = ctx.settings
        if not self._act(
            ctx, "cordon", node_name, f"Cordoning {node_name}",
            lambda: self.cluster.cordon(node_name), policy=ONCE,
        ):
            return False

        def evictable() -> List[PodRecord]:
            pods = self.cluster.list_pods(field_selector=f"spec.nodeName={node_name}")
            return [p for p in pods if not p.daemonset_managed and not p.terminating]

        pods = self._check(ctx, f"pods on {node_name}", evictable)
        if pods is None:
            return False

        record = ctx.begin_action("drain", node_name, f"Draining {len(pods)} pod(s) from {node_name}")
        failed = []
        for pod in pods:
            try:
                self.cluster.evict_pod(pod.name, pod.namespace, settings.drain_grace_period_seconds)
            except ActionError as e:
                self.logger.warning(f"Could not evict {pod.key}: {e}")
                failed.append(pod.key)

        emptied = ctx.waiter.wait_for(
            lambda: not evictable(), settings.drain_policy, f"{node_name} to drain"
        )
        if emptied and not failed:
            ctx.finish_action(record, ActionOutcome.SUCCESS)
            return True

        detail = f"{len(failed)} eviction(s) failed" if failed else "pods remained after drain timeout"
        ctx.finish_action(record, ActionOutcome.FAILED, detail)
        self.logger.warning(f"Drain of {node_name} had issues, continuing with reboot")
        return False

    # Control plane

    def _control_plane_recovered(self, ctx: RunContext, deleted: Set[str]) -> bool:
        """No stuck pods remain, and every deleted pod name is present again.

        Static control-plane pods come back under the same name.
        """
        pods = self.cluster.list_pods(
            namespace=ctx.settings.control_plane_namespace,
            label_selector=ctx.settings.control_plane_selector,
        )
        if find_stuck_pods(pods):
            return False
        present = {p.name for p in pods}
        return deleted <= present

    def _leaders_healthy(self, ctx: RunContext) -> bool:
        return all(
            self.evaluator.check_leader(ctx, component).health == ComponentHealth.HEALTHY
            for component in ("kube-scheduler", "kube-controller-manager")
        )

    def fix_stuck_control_plane(self, ctx: RunContext) -> RecipeResult:
        """Delete stuck control-plane pods; reset runtime and kubelet if that is not enough."""
        settings = ctx.settings
        result = RecipeResult(recipe=Recipe.FIX_STUCK_CONTROL_PLANE, target=ctx.control_plane_ip)

        stuck = self._check(ctx, "stuck control-plane pods", lambda: self.evaluator.find_stuck_pods(ctx))
        if stuck is None:
            return self._fail(ctx, result, "cannot list control-plane pods")
        if not stuck:
            return self._noop(ctx, result, "no stuck control-plane pods")
        if self._disabled(ctx, result):
            return result

        names = {p.name for p in stuck}
        self.logger.warning(f"Fixing {len(stuck)} stuck control-plane pod(s): {', '.join(sorted(names))}")

        # 1. force delete and wait for recreation
        deleted = self._delete_pods(ctx, stuck, strip_finalizers=True)
        result.steps.append(f"deleted {deleted}/{len(stuck)} stuck pod(s)")

        recovered = ctx.waiter.wait_for(
            lambda: self._control_plane_recovered(ctx, names),
            settings.pod_recreate_policy,
            "control-plane pods to be recreated",
        )

        # 2. heavier reset
        if not recovered:
            self.logger.warning("Pods still stuck after deletion, resetting container runtime")
            result.steps.append("runtime reset")
            self.reset_container_runtime(ctx, ctx.control_plane_ip)
            recovered = ctx.waiter.wait_for(
                lambda: self._control_plane_recovered(ctx, names),
                settings.pod_recreate_policy,
                "control-plane pods after runtime reset",
            )

        # 3. give up
        if not recovered:
            return self._fail(ctx, result, "control-plane pods still stuck after runtime reset")

        if ctx.waiter.wait_for(
            lambda: self._leaders_healthy(ctx),
            settings.settle_policy,
            "scheduler and controller-manager to become healthy",
        ):
            result.detail = "stuck pods recreated and healthy"
        else:
            result.detail = "stuck pods recreated, leadership not yet healthy"
            self.logger.warning(result.detail)
        return ctx.record_recipe(result)

    def reset_container_runtime(self, ctx: RunContext, address: str) -> bool:
        """Stop kubelet, restart the container runtime, start kubelet."""
        settings = ctx.settings
        kubelet = settings.kubelet_service
        runtime = settings.runtime_service

        self._act(
            ctx, "stop-service", address, f"Stopping {kubelet} on {address}",
            lambda: self.node_control.stop_service(address, kubelet), policy=ONCE,
        )
        ctx.waiter.wait_for(
            lambda: not self.evaluator.service_running(ctx, address, kubelet),
            settings.settle_policy,
            f"{kubelet} to stop",
        )
        ok = self._act(
            ctx, "restart-service", address, f"Restarting {runtime} on {address}",
            lambda: self.node_control.restart_service(address, runtime),
        )
        ctx.waiter.wait_for(
            lambda: self.evaluator.service_running(ctx, address, runtime),
            settings.settle_policy,
            f"{runtime} running",
        )
        ok = self._act(
            ctx, "start-service", address, f"Starting {kubelet} on {address}",
            lambda: self.node_control.start_service(address, kubelet),
        ) and ok
        ctx.waiter.wait_for(
            lambda: self.evaluator.kubelet_healthy(ctx, address),
            settings.settle_policy,
            f"{kubelet} healthy",
        )
        return ok

    def _control_plane_responding(self, ctx: RunContext) -> bool:
        if not self.cluster.ping():
            return False
        return bool(self.evaluator.check_containers(ctx).apiserver)

    def recover_control_plane(self, ctx: RunContext) -> RecipeResult:
        """Restart kubelet on the control plane until the API server answers again."""
        settings = ctx.settings
        address = ctx.control_plane_ip
        result = RecipeResult(recipe=Recipe.RECOVER_CONTROL_PLANE, target=address)

        kubelet_ok = self._check(ctx, "control-plane kubelet", lambda: self.evaluator.kubelet_healthy(ctx, address))
        responding = self._check(ctx, "control-plane API", lambda: self._control_plane_responding(ctx))
        if kubelet_ok and responding:
            return self._noop(ctx, result, "API server and kubelet healthy")
        if self._disabled(ctx, result):
            return result

        kubelet = settings.kubelet_service
        self.logger.warning(f"Recovering control plane on {address}")

        def attempt():
            self.node_control.restart_service(address, kubelet)
            ctx.waiter.wait_for(
                lambda: self.evaluator.kubelet_healthy(ctx, address),
                settings.settle_policy,
                f"{kubelet} healthy on control plane",
            )
            if not ctx.waiter.wait_for(
                lambda: self._control_plane_responding(ctx),
                settings.pod_recreate_policy,
                "API server to respond",
            ):
                raise ActionError("API server still not responding after kubelet restart")

        if not self._act(
            ctx, "restart-service", address,
            f"Restarting {kubelet} on control plane {address}", attempt,
        ):
            return self._fail(ctx, result, f"control plane not recovered after {settings.max_retries} attempt(s)")

        self.logger.info("Control plane recovered")
        result.steps.append(f"{kubelet} restarted")
        result.detail = "API server responding"
        return ctx.record_recipe(result)

    # Orthogonal fixes

    def fix_cni(self, ctx: RunContext) -> RecipeResult:
        """Apply the rescue manifest when no plugin exists, restart plugin daemonsets when degraded."""
        settings = ctx.settings
        result = RecipeResult(recipe=Recipe.FIX_CNI)

        state = self._check(ctx, "CNI state", lambda: self.evaluator.check_cni(ctx))
        if state is None:
            return self._fail(ctx, result, "cannot determine CNI state")
        if state == CniState.HEALTHY:
            return self._noop(ctx, result, "CNI healthy")
        if self._disabled(ctx, result):
            return result

        if state == CniState.ABSENT:
            manifest = settings.cni_rescue_manifest
            if not manifest:
                return self._fail(ctx, result, "no network plugin found and no rescue manifest configured")
            self.logger.error("No network plugin found, applying rescue manifest")
            if not self._act(
                ctx, "apply-manifest", "cluster", f"Applying network plugin manifest {manifest}",
                lambda: self.cluster.apply_manifest(manifest), policy=ONCE,
            ):
                return self._fail(ctx, result, "rescue manifest could not be applied")
            result.steps.append("rescue manifest applied")
            present = ctx.waiter.wait_for(
                lambda: self.evaluator.check_cni(ctx) != CniState.ABSENT,
                settings.settle_policy,
                "network plugin pods to appear",
            )
            result.detail = "network plugin installed" if present else "manifest applied, pods not yet visible"
            return ctx.record_recipe(result)

        self.logger.warning("Network plugin degraded, restarting its daemonsets")
        self.cleanup_terminating_pods(ctx)

        daemonsets = self._check(ctx, "daemonsets", self.cluster.list_daemonsets)
        if daemonsets is None:
            return self._fail(ctx, result, "cannot list daemonsets")
        plugin_sets = [d for d in daemonsets if matches_any(d.name, settings.cni_patterns)]
        if not plugin_sets:
            return self._fail(ctx, result, "no network plugin daemonset found")

        restarted = 0
        for ds in plugin_sets:
            if self._act(
                ctx, "rollout-restart", f"{ds.namespace}/{ds.name}",
                f"Restarting daemonset {ds.name} in namespace {ds.namespace}",
                lambda d=ds: self.cluster.rollout_restart_daemonset(d.name, d.namespace),
            ):
                restarted += 1
        result.steps.append(f"restarted {restarted}/{len(plugin_sets)} daemonset(s)")
        if restarted == 0:
            return self._fail(ctx, result, "no network plugin daemonset could be restarted")

        healthy = ctx.waiter.wait_for(
            lambda: self.evaluator.check_cni(ctx) == CniState.HEALTHY,
            settings.settle_policy,
            "network plugin to become healthy",
        )
        result.detail = "network plugin healthy" if healthy else "restart issued, plugin still settling"
        return ctx.record_recipe(result)

    def fix_kube_proxy(self, ctx: RunContext) -> RecipeResult:
        settings = ctx.settings
        result = RecipeResult(recipe=Recipe.FIX_KUBE_PROXY)

        counts = self._check(ctx, "kube-proxy", lambda: self.evaluator.kube_proxy_counts(ctx))
        if counts is None:
            return self._fail(ctx, result, "cannot count kube-proxy pods")
        running, expected = counts
        if running > 0 and running >= expected:
            return self._noop(ctx, result, f"kube-proxy {running}/{expected} running")
        if self._disabled(ctx, result):
            return result

        name = settings.kube_proxy_daemonset
        namespace = settings.control_plane_namespace
        if not self._act(
            ctx, "rollout-restart", f"{namespace}/{name}",
            f"Restarting kube-proxy ({running}/{expected} running)",
            lambda: self.cluster.rollout_restart_daemonset(name, namespace),
        ):
            return self._fail(ctx, result, "kube-proxy restart failed")

        def recovered() -> bool:
            now_running, now_expected = self.evaluator.kube_proxy_counts(ctx)
            return now_running > 0 and now_running >= now_expected

        healthy = ctx.waiter.wait_for(recovered, settings.settle_policy, "kube-proxy pods running")
        result.detail = "kube-proxy healthy" if healthy else "restart issued, pods still starting"
        return ctx.record_recipe(result)

    def uncordon_all(self, ctx: RunContext) -> RecipeResult:
        """Uncordon every cordoned node except those marked as intentionally cordoned."""
        exempt_label = ctx.settings.cordon_exempt_label
        result = RecipeResult(recipe=Recipe.UNCORDON_ALL)

        nodes = self._check(ctx, "node list", self.cluster.list_nodes)
        if nodes is None:
            return self._fail(ctx, result, "cannot list nodes")

        cordoned: List[Node] = []
        for node in nodes:
            if not node.unschedulable:
                continue
            if exempt_label and exempt_label in node.labels:
                self.logger.info(f"{node.name} is intentionally cordoned, leaving it")
                continue
            cordoned.append(node)

        if not cordoned:
            return self._noop(ctx, result, "no cordoned nodes")
        if self._disabled(ctx, result):
            return result

        failed = []
        for node in cordoned:
            if not self._act(
                ctx, "uncordon", node.name, f"Uncordoning {node.name}",
                lambda n=node.name: self.cluster.uncordon(n),
            ):
                failed.append(node.name)

        result.steps.append(f"uncordoned {len(cordoned) - len(failed)}/{len(cordoned)} node(s)")
        if failed:
            return self._fail(ctx, result, f"could not uncordon {', '.join(failed)}")
        return ctx.record_recipe(result)

    def cleanup_error_pods(self, ctx: RunContext) -> RecipeResult:
        result = RecipeResult(recipe=Recipe.CLEANUP_ERROR_PODS)
        pods = self._check(ctx, "pod list", self.cluster.list_pods)
        if pods is None:
            return self._fail(ctx, result, "cannot list pods")

        error_pods = [p for p in pods if is_error(p) and not is_terminating(p)]
        if not error_pods:
            return self._noop(ctx, result, "no error pods")
        if self._disabled(ctx, result):
            return result

        deleted = self._delete_pods(ctx, error_pods)
        result.detail = f"deleted {deleted}/{len(error_pods)} error pod(s)"
        return ctx.record_recipe(result)

    def cleanup_terminating_pods(self, ctx: RunContext, node: Optional[str] = None) -> RecipeResult:
        """Force delete terminating pods cluster-wide, or only those on ``node``."""
        result = RecipeResult(recipe=Recipe.CLEANUP_TERMINATING_PODS, target=node or "cluster")
        field_selector = f"spec.nodeName={node}" if node else None

        def terminating() -> List[PodRecord]:
            return [p for p in self.cluster.list_pods(field_selector=field_selector) if p.terminating]

        pods = self._check(ctx, "terminating pods", terminating)
        if pods is None:
            return self._fail(ctx, result, "cannot list pods")
        if not pods:
            return self._noop(ctx, result, "no terminating pods")
        if self._disabled(ctx, result):
            return result

        deleted = self._delete_pods(ctx, pods, strip_finalizers=True)
        result.detail = f"deleted {deleted}/{len(pods)} terminating pod(s)"
        if node:
            ctx.waiter.wait_for(
                lambda: not terminating(), ctx.settings.settle_policy, f"terminating pods on {node} to clear"
            )
        return ctx.record_recipe(result)

    # Diagnostics

    def collect_diagnostics(self, ctx: RunContext, node_name: str) -> NodeDiagnostics:
        """Gather conditions, services, disk usage and recent logs for a NotReady node."""
        settings = ctx.settings
        diagnostics = NodeDiagnostics(node=node_name)
        self.logger.info(f"Deep diagnostics for {node_name}")

        def gather(description: str, func: Callable[[], T]) -> Optional[T]:
            try:
                return func()
            except ProbeError as e:
                diagnostics.errors.append(f"{description}: {e}")
                ctx.count_timeout(e)
                self.logger.warning(f"Diagnostics for {node_name}: {description} unavailable: {e}")
                return None

        node = gather("node object", lambda: self.cluster.get_node(node_name))
        if node is not None:
            diagnostics.address = node.address
            diagnostics.conditions = list(node.conditions)
            diagnostics.allocatable = dict(node.allocatable)
            for condition in node.conditions:
                self.logger.info(f"  {condition}")
        address = diagnostics.address or (ctx.control_plane_ip if node_name == ctx.control_plane_node else None)
        if not address:
            diagnostics.errors.append("node address unknown, skipping Node Control diagnostics")
            return diagnostics
        diagnostics.address = address

        services = gather("services", lambda: self.node_control.list_services(address)) or []
        wanted = {settings.runtime_service, settings.kubelet_service, *DIAGNOSTIC_EXTRA_SERVICES}
        diagnostics.services = [s for s in services if s.service in wanted]
        for service in diagnostics.services:
            self.logger.info(f"  {service}")

        diagnostics.disk_usage = gather("disk usage", lambda: self.node_control.disk_usage(address)) or []
        for usage in diagnostics.disk_usage:
            self.logger.info(f"  {usage}")

        tail = settings.log_tail_lines
        diagnostics.kubelet_logs = gather(
            "kubelet logs", lambda: self.node_control.logs(address, settings.kubelet_service, tail)
        ) or []
        diagnostics.runtime_logs = gather(
            "runtime logs", lambda: self.node_control.logs(address, settings.runtime_service, tail)
        ) or []
        return diagnostics
