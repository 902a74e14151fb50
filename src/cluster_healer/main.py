"""Main entry point for cluster-healer."""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from cluster_healer.clients import ClusterClient, NodeControlClient
from cluster_healer.config import Settings
from cluster_healer.context import RunContext
from cluster_healer.escalation import EscalationController
from cluster_healer.health import HealthEvaluator
from cluster_healer.models import RunOutcome, RunResult
from cluster_healer.remediation import RemediationEngine
from cluster_healer.reporting import SummaryReporter


def setup_logging(log_level: str = "INFO", log_dir: Optional[Path] = None) -> logging.Logger:
    """Set up logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_dir: Directory for the log file (None logs to stdout only)

    Returns:
        Configured logger instance
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # File handler
    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / "cluster-healer.log")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # The kubernetes client logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    return logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Health check and auto-remediation for a Talos Kubernetes cluster"
    )
    parser.add_argument(
        "--no-auto-fix",
        action="store_true",
        help="Only report problems, never change the cluster",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        help="Logging level (overrides LOG_LEVEL)",
    )
    parser.add_argument(
        "--report-dir",
        type=Path,
        help="Directory for logs and JSON run reports (overrides REPORT_DIR)",
    )
    parser.add_argument(
        "--no-report",
        action="store_true",
        help="Do not write a JSON run report",
    )
    return parser.parse_args(argv)


def build_controller(settings: Settings) -> EscalationController:
    """Wire clients, evaluator and engine from settings."""
    cluster = ClusterClient(
        kubeconfig=settings.kubeconfig,
        context=settings.kube_context,
        timeout=settings.call_timeout_seconds,
        kubectl_path=settings.kubectl_path,
    )
    node_control = NodeControlClient(
        talosconfig=settings.talosconfig,
        endpoint=settings.control_plane_ip,
        talosctl_path=settings.talosctl_path,
        timeout=settings.call_timeout_seconds,
    )
    evaluator = HealthEvaluator(cluster, node_control)
    engine = RemediationEngine(cluster, node_control, evaluator)
    return EscalationController(evaluator, engine)


def partial_result(ctx: RunContext, reason: str) -> RunResult:
    """Fatal result carrying whatever an aborted run had logged so far."""
    return RunResult(
        run_id=ctx.run_id,
        outcome=RunOutcome.FATAL,
        states=list(ctx.states),
        actions=list(ctx.actions),
        recipes=list(ctx.recipes),
        errors=list(ctx.errors),
        timeouts=ctx.timeouts,
        fatal_reason=reason,
    )


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point. Exits 0 when the cluster converged, 1 otherwise."""
    args = parse_args(argv)

    # Load settings
    try:
        settings = Settings()
        if args.no_auto_fix:
            settings.auto_fix = False
        if args.log_level:
            settings.log_level = args.log_level.upper()
        if args.report_dir:
            settings.report_dir = args.report_dir
        settings.validate_all()
    except Exception as e:
        print(f"Configuration error: {e}")
        sys.exit(1)

    logger = setup_logging(settings.log_level, settings.report_dir)
    logger.info("Cluster healer starting...")
    logger.info(f"Control plane: {settings.control_plane_ip}, auto-fix: {settings.auto_fix}")

    ctx = RunContext.from_settings(settings)
    reporter = SummaryReporter(None if args.no_report else settings.report_dir)
    try:
        controller = build_controller(settings)
        result = controller.run(ctx)
    except KeyboardInterrupt:
        logger.warning("Interrupted, reporting partial state")
        result = partial_result(ctx, "interrupted")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        result = partial_result(ctx, str(e))

    reporter.report(result)

    sys.exit(result.exit_code)


if __name__ == "__main__":
    main()
