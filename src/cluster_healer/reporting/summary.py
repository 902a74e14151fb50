"""Final run summary: text for the log, JSON for the report directory."""

import json
import logging
from pathlib import Path
from typing import List, Optional

from cluster_healer.models import ActionOutcome, HealthReport, RunOutcome, RunResult

RULE = "=" * 60


class SummaryReporter:
    """Renders a RunResult. Read-only, makes no decisions."""

    def __init__(self, report_dir: Optional[Path] = None):
        """Initialize reporter.

        Args:
            report_dir: Where JSON run reports go (None disables saving)
        """
        self.report_dir = report_dir
        self.logger = logging.getLogger(__name__)

    def render(self, result: RunResult) -> str:
        lines: List[str] = [RULE, "CLUSTER HEALTH SUMMARY", RULE]
        lines.append(f"Run: {result.run_id}")
        lines.append(f"Outcome: {result.outcome.value.upper()}")
        if result.fatal_reason:
            lines.append(f"Fatal: {result.fatal_reason}")
        if result.primary_symptom:
            lines.append(f"Primary symptom: {result.primary_symptom.value}")
        if result.states:
            lines.append(f"States: {' -> '.join(s.value for s in result.states)}")

        lines.append("")
        lines.extend(self._render_report(result.report))

        lines.append("")
        if result.recipes:
            lines.append("Remediations:")
            for recipe in result.recipes:
                detail = f" - {recipe.detail}" if recipe.detail else ""
                lines.append(f"  {recipe}{detail}")
        if result.actions:
            failed = sum(1 for a in result.actions if a.outcome == ActionOutcome.FAILED)
            lines.append(f"Actions ({len(result.actions)} taken, {failed} failed):")
            for action in result.actions:
                lines.append(f"  {action}")
        else:
            lines.append("No remediation actions taken")

        for diag in result.diagnostics:
            lines.append("")
            lines.append(f"Diagnostics for {diag.node} ({diag.address or 'unknown address'}):")
            for condition in diag.conditions:
                lines.append(f"  {condition}")
            for service in diag.services:
                lines.append(f"  {service}")
            for usage in diag.disk_usage:
                lines.append(f"  {usage}")
            if diag.kubelet_logs:
                lines.append("  Recent kubelet logs:")
                lines.extend(f"    {line}" for line in diag.kubelet_logs)
            if diag.runtime_logs:
                lines.append("  Recent runtime logs:")
                lines.extend(f"    {line}" for line in diag.runtime_logs)
            for error in diag.errors:
                lines.append(f"  ! {error}")

        if result.errors:
            lines.append("")
            lines.append(f"Errors ({len(result.errors)}):")
            lines.extend(f"  - {error}" for error in result.errors)
        if result.timeouts:
            lines.append(f"Timeouts: {result.timeouts}")

        lines.append(RULE)
        return "\n".join(lines)

    def _render_report(self, report: Optional[HealthReport]) -> List[str]:
        if report is None:
            return ["No health report available"]

        lines = [f"Nodes ({len(report.nodes)}):"]
        for node in report.nodes:
            state = "Ready" if node.ready else f"NotReady ({node.ready_reason or node.ready_status})"
            cordon = ", cordoned" if node.unschedulable else ""
            unreachable = ", unreachable" if node.reachable is False else ""
            lines.append(f"  {node.name} {node.address or '-'}: {state}{cordon}{unreachable}")

        lines.append(f"CNI: {report.cni.value}")
        if report.kube_proxy_running is not None:
            lines.append(f"kube-proxy: {report.kube_proxy_running}/{report.kube_proxy_expected} running")
        for status in (report.scheduler, report.controller_manager):
            lines.append(f"{status.component}: {status.health.value} (leader: {status.holder or 'none'})")

        symptoms = report.symptoms()
        if symptoms:
            lines.append("Remaining symptoms:")
            lines.extend(f"  - {s}" for s in symptoms)
        else:
            lines.append("No remaining symptoms")
        return lines

    def log(self, result: RunResult) -> str:
        """Write the summary to the log at a level matching the outcome."""
        text = self.render(result)
        level = logging.INFO if result.outcome == RunOutcome.CONVERGED else logging.ERROR
        for line in text.splitlines():
            self.logger.log(level, line)
        return text

    def save(self, result: RunResult) -> Optional[Path]:
        """Save the run result as JSON.

        Returns:
            Path to saved report file, None when saving is disabled or failed
        """
        if self.report_dir is None:
            return None

        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            report_path = self.report_dir / f"run_{result.run_id}.json"
            with open(report_path, "w") as f:
                json.dump(result.model_dump(mode="json"), f, indent=2, default=str)
        except OSError as e:
            self.logger.error(f"Failed to save run report: {e}")
            return None

        self.logger.info(f"Run report saved to {report_path}")
        return report_path

    def report(self, result: RunResult) -> Optional[Path]:
        self.log(result)
        return self.save(result)
