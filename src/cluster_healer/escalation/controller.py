"""Escalation controller: the top-level decision procedure for one run."""

import logging
from datetime import datetime
from typing import List, Optional, Tuple

from cluster_healer.context import RunContext
from cluster_healer.errors import ConnectivityError, ProbeError, WaitTimeoutError
from cluster_healer.health import HealthEvaluator
from cluster_healer.models import (
    ControllerState,
    HealthReport,
    NodeDiagnostics,
    RetryPolicy,
    RunOutcome,
    RunResult,
    Symptom,
)
from cluster_healer.remediation import RemediationEngine

# Symptoms handled by restarting control-plane services
CONTROL_PLANE_SYMPTOMS = {
    Symptom.API_UNREACHABLE,
    Symptom.CRITICAL_CONTAINERS,
    Symptom.KUBELET_UNHEALTHY,
}


def select_priority(report: HealthReport) -> Optional[Symptom]:
    """Pick the highest-priority symptom present in a report.

    Order: stuck control-plane pods, API server unreachable, critical
    containers down, scheduler/controller-manager unhealthy, kubelet
    unhealthy. Unknown fields never count as a symptom.
    """
    if report.stuck_pods:
        return Symptom.STUCK_PODS
    if not report.api_server_reachable:
        return Symptom.API_UNREACHABLE
    if report.containers.critical_running is False:
        return Symptom.CRITICAL_CONTAINERS
    if report.components_healthy is False:
        return Symptom.COMPONENTS_UNHEALTHY
    if report.kubelet_healthy is False:
        return Symptom.KUBELET_UNHEALTHY
    return None


class EscalationController:
    """Runs probe, evaluate, remediate and verify strictly in sequence."""

    def __init__(self, evaluator: HealthEvaluator, engine: RemediationEngine):
        """Initialize escalation controller.

        Args:
            evaluator: Read-only health checks
            engine: Remediation recipes
        """
        self.evaluator = evaluator
        self.engine = engine
        self.cluster = evaluator.cluster
        self.node_control = evaluator.node_control
        self.logger = logging.getLogger(__name__)

    def run(self, ctx: RunContext) -> RunResult:
        """Execute one full run and return everything it produced.

        Only a ``ConnectivityError`` ends the run early, as Fatal. Every other
        failure is absorbed and shows up as a Degraded outcome.
        """
        started_at = datetime.now()
        initial: Optional[HealthReport] = None
        final: Optional[HealthReport] = None
        primary: Optional[Symptom] = None
        diagnostics: List[NodeDiagnostics] = []
        fatal_reason: Optional[str] = None

        try:
            ctx.transition(ControllerState.PROBING)
            self.probe(ctx)

            ctx.transition(ControllerState.EVALUATING)
            initial = self.evaluator.evaluate(ctx)
            primary = select_priority(initial)
            if primary:
                self.logger.warning(f"Primary symptom: {primary.value}")

            if ctx.auto_fix:
                ctx.transition(ControllerState.REMEDIATING)
                self.remediate(ctx, initial, primary)
            elif initial.symptoms():
                self.logger.warning("Auto-fix disabled, reporting only")

            ctx.transition(ControllerState.VERIFYING)
            converged, final, diagnostics = self.verify(ctx, initial)

            if converged and final is not None and final.is_healthy:
                outcome = RunOutcome.CONVERGED
                ctx.transition(ControllerState.CONVERGED)
            else:
                outcome = RunOutcome.DEGRADED
                ctx.transition(ControllerState.DEGRADED)
        except ConnectivityError as e:
            self.logger.error(f"Fatal: {e}")
            fatal_reason = str(e)
            outcome = RunOutcome.FATAL
            ctx.transition(ControllerState.FATAL)

        return RunResult(
            run_id=ctx.run_id,
            outcome=outcome,
            report=final or initial,
            initial_report=initial,
            primary_symptom=primary,
            states=list(ctx.states),
            actions=list(ctx.actions),
            recipes=list(ctx.recipes),
            diagnostics=diagnostics,
            errors=list(ctx.errors),
            timeouts=ctx.timeouts,
            fatal_reason=fatal_reason,
            started_at=started_at,
            finished_at=datetime.now(),
        )

    # Probing

    def probe(self, ctx: RunContext) -> None:
        """Initial connectivity probe.

        Raises:
            ConnectivityError: Control plane unreachable and not recoverable
        """
        address = ctx.control_plane_ip
        self.logger.info(f"Checking control plane {address}...")
        if not self.node_control.is_alive(address):
            raise ConnectivityError(f"Cannot reach Node Control API on control plane {address}")

        if self.cluster.ping():
            self.logger.info("API server is responding")
            return

        ctx.record_error("API server is not responding")
        if not ctx.auto_fix:
            raise ConnectivityError("API server is not responding and auto-fix is disabled")
        self.restore_control_plane(ctx)

    def restore_control_plane(self, ctx: RunContext) -> None:
        """Service restarts first, then a bounded number of reboot cycles.

        Raises:
            ConnectivityError: API server still unreachable after the last cycle
        """
        settings = ctx.settings
        address = ctx.control_plane_ip

        result = self.engine.recover_control_plane(ctx)
        if result.success and self.cluster.ping():
            return

        target = ctx.control_plane_node or address
        for cycle in range(1, settings.fatal_reboot_cycles + 1):
            self.logger.warning(
                f"Control plane still down, reboot cycle {cycle}/{settings.fatal_reboot_cycles}"
            )
            self.engine.reboot_node(ctx, target, address)
            if ctx.waiter.wait_for(self.cluster.ping, settings.reboot_policy, "API server after reboot"):
                self.logger.info("API server is back after reboot")
                return

        raise ConnectivityError(
            f"Control plane {address} unreachable after {settings.fatal_reboot_cycles} reboot cycle(s)"
        )

    # Remediation

    def remediate(self, ctx: RunContext, report: HealthReport, primary: Optional[Symptom]) -> None:
        """Apply the primary fix, then every orthogonal fix."""
        if primary == Symptom.STUCK_PODS:
            result = self.engine.fix_stuck_control_plane(ctx)
            if not result.success:
                self.logger.warning("Stuck pod fix failed, trying control-plane recovery")
                self.engine.recover_control_plane(ctx)
        elif primary in CONTROL_PLANE_SYMPTOMS:
            result = self.engine.recover_control_plane(ctx)
            if result.success:
                # recovery can leave pods stuck behind
                self.engine.fix_stuck_control_plane(ctx)
            else:
                self.engine.reset_container_runtime(ctx, ctx.control_plane_ip)
                if not self.cluster.ping():
                    self.restore_control_plane(ctx)
        elif primary == Symptom.COMPONENTS_UNHEALTHY:
            result = self.engine.fix_stuck_control_plane(ctx)
            if result.noop:
                self.logger.warning(
                    "Scheduler/controller-manager unhealthy without stuck pods, "
                    "leadership is re-checked after convergence"
                )

        self.engine.uncordon_all(ctx)
        self.engine.cleanup_terminating_pods(ctx)
        for node in self._not_ready_nodes(ctx, report):
            self.engine.recover_notready_node(ctx, node)
        self.engine.fix_cni(ctx)
        self.engine.fix_kube_proxy(ctx)

    def _not_ready_nodes(self, ctx: RunContext, report: Optional[HealthReport]) -> List[str]:
        try:
            return self.evaluator.not_ready_nodes(ctx)
        except ProbeError as e:
            ctx.record_error(f"Cannot list nodes, using last report: {e}", e)
            return list((report.not_ready_nodes if report else None) or [])

    # Verification

    def verify(
        self, ctx: RunContext, report: HealthReport
    ) -> Tuple[bool, Optional[HealthReport], List[NodeDiagnostics]]:
        """Bounded convergence wait, deep diagnostics on timeout, final evaluation."""
        if ctx.auto_fix:
            policy = ctx.settings.convergence_policy
            self.logger.info(
                f"Waiting up to {ctx.settings.convergence_timeout_seconds}s for all nodes to be Ready..."
            )
        else:
            policy = RetryPolicy(max_attempts=1, delay_seconds=0)

        converged = True
        try:
            ctx.waiter.wait_until(
                lambda: not self.evaluator.not_ready_nodes(ctx), policy, "all nodes Ready"
            )
        except WaitTimeoutError as e:
            converged = False
            ctx.record_error(str(e), e)

        diagnostics: List[NodeDiagnostics] = []
        if converged:
            self.logger.info("All nodes are Ready")
        else:
            stragglers = self._not_ready_nodes(ctx, report)
            self.logger.error(f"Nodes still NotReady: {', '.join(stragglers) or 'unknown'}")
            for node in stragglers:
                diagnostics.append(self.engine.collect_diagnostics(ctx, node))

        if ctx.auto_fix:
            self.engine.cleanup_error_pods(ctx)

        try:
            final = self.evaluator.evaluate(ctx)
        except ConnectivityError as e:
            ctx.record_error(f"Final evaluation failed: {e}")
            return False, None, diagnostics
        return converged, final, diagnostics
