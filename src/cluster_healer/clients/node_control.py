"""
Node Control API client.

Thin typed wrapper over ``talosctl``. Every call is issued with a bounded
timeout and every table the CLI prints is decoded here, so callers only see
``ServiceStatus``, ``ContainerInfo`` and ``DiskUsage`` records.
"""

import logging
import re
import subprocess
from pathlib import Path
from typing import Callable, List, Optional

from cluster_healer.errors import ActionError, ProbeError
from cluster_healer.models import ContainerInfo, DiskUsage, ServiceStatus

logger = logging.getLogger(__name__)

# Tree glyphs talosctl prints in front of container rows
_TREE_PREFIX = re.compile(r"^[\s└─├│]+")

OOM_PATTERN = re.compile(r"out of memory|\boom", re.IGNORECASE)


def _float_or_none(value: str) -> Optional[float]:
    try:
        return float(value.rstrip("%"))
    except ValueError:
        return None


def parse_services(output: str, node: str) -> List[ServiceStatus]:
    """Parse ``talosctl services`` output."""
    services = []
    for line in output.splitlines():
        if not line.strip() or line.startswith("NODE"):
            continue
        parts = line.split()
        if len(parts) < 3:
            continue
        services.append(
            ServiceStatus(
                node=parts[0] or node,
                service=parts[1],
                state=parts[2],
                health=parts[3] if len(parts) > 3 else "?",
            )
        )
    return services


def parse_containers(output: str, node: str) -> List[ContainerInfo]:
    """Parse ``talosctl containers`` output."""
    containers = []
    for line in output.splitlines():
        if not line.strip() or line.startswith("NODE"):
            continue
        parts = line.split()
        if len(parts) < 4:
            continue
        parts = [parts[0], parts[1]] + [p for p in parts[2:] if not _TREE_PREFIX.fullmatch(p)]
        pid = None
        if len(parts) >= 6 and parts[-2].isdigit():
            pid = int(parts[-2])
        containers.append(
            ContainerInfo(
                node=parts[0] or node,
                namespace=parts[1],
                id=_TREE_PREFIX.sub("", parts[2]),
                image=parts[3] if len(parts) >= 5 else "",
                pid=pid,
                status=parts[-1],
            )
        )
    return containers


def parse_disk_usage(output: str) -> List[DiskUsage]:
    """Parse ``talosctl df`` output."""
    usage = []
    for line in output.splitlines():
        if not line.strip() or line.startswith("NODE"):
            continue
        parts = line.split()
        if len(parts) < 7:
            continue
        usage.append(
            DiskUsage(
                filesystem=parts[1],
                size_gb=_float_or_none(parts[2]),
                used_gb=_float_or_none(parts[3]),
                available_gb=_float_or_none(parts[4]),
                percent_used=_float_or_none(parts[5]),
                mounted_on=parts[6],
            )
        )
    return usage


class NodeControlClient:
    """Typed access to Talos machine management for individual nodes."""

    def __init__(
        self,
        talosconfig: Optional[Path] = None,
        endpoint: Optional[str] = None,
        talosctl_path: str = "talosctl",
        timeout: int = 30,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ):
        """
        Initialize the Node Control client.

        Args:
            talosconfig: Path to talosconfig (None uses talosctl's default)
            endpoint: Talos API endpoint, normally the control-plane address
            talosctl_path: talosctl binary
            timeout: Per-call timeout in seconds
            runner: subprocess.run compatible callable
        """
        self.talosconfig = talosconfig
        self.endpoint = endpoint
        self.talosctl_path = talosctl_path
        self.timeout = timeout
        self._runner = runner

    def _command(self, node: str, args: List[str]) -> List[str]:
        cmd = [self.talosctl_path]
        if self.talosconfig:
            cmd.extend(["--talosconfig", str(self.talosconfig)])
        if self.endpoint:
            cmd.extend(["-e", self.endpoint])
        cmd.extend(["-n", node])
        cmd.extend(args)
        return cmd

    def _run(self, node: str, args: List[str], error_cls=ProbeError) -> str:
        cmd = self._command(node, args)
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            result = self._runner(cmd, capture_output=True, text=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as e:
            raise error_cls(
                f"talosctl {' '.join(args)} on {node} timed out after {self.timeout}s",
                timed_out=True,
            ) from e
        except OSError as e:
            raise error_cls(f"Cannot run talosctl: {e}") from e

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise error_cls(f"talosctl {' '.join(args)} on {node} failed: {stderr or result.returncode}")
        return result.stdout or ""

    # Liveness

    def is_alive(self, node: str) -> bool:
        """Liveness probe: True when the node's Talos API answers."""
        try:
            self._run(node, ["version", "--short"])
            return True
        except ProbeError as e:
            logger.debug(f"Liveness probe for {node} failed: {e}")
            return False

    # Services

    def list_services(self, node: str) -> List[ServiceStatus]:
        return parse_services(self._run(node, ["services"]), node)

    def service_status(self, node: str, service: str) -> Optional[ServiceStatus]:
        for status in self.list_services(node):
            if status.service == service:
                return status
        return None

    def start_service(self, node: str, service: str) -> None:
        self._run(node, ["service", service, "start"], error_cls=ActionError)

    def stop_service(self, node: str, service: str) -> None:
        self._run(node, ["service", service, "stop"], error_cls=ActionError)

    def restart_service(self, node: str, service: str) -> None:
        self._run(node, ["service", service, "restart"], error_cls=ActionError)

    # Power

    def reboot(self, node: str) -> None:
        try:
            self._run(node, ["reboot"], error_cls=ActionError)
        except ActionError as e:
            # talosctl may block until the node drops its connection
            if not e.timed_out:
                raise
            logger.info(f"Reboot of {node} issued (command did not return before timeout)")

    def shutdown(self, node: str, force: bool = False) -> None:
        args = ["shutdown"]
        if force:
            args.append("--force")
        self._run(node, args, error_cls=ActionError)

    # Diagnostics

    def logs(self, node: str, service: str, tail: int = 10) -> List[str]:
        output = self._run(node, ["logs", service, "--tail", str(tail)])
        return output.splitlines()[-tail:]

    def disk_usage(self, node: str) -> List[DiskUsage]:
        return parse_disk_usage(self._run(node, ["df"]))

    def dmesg(self, node: str) -> List[str]:
        return self._run(node, ["dmesg"]).splitlines()

    def has_oom_events(self, node: str) -> bool:
        return any(OOM_PATTERN.search(line) for line in self.dmesg(node))

    def list_containers(self, node: str, kubernetes_only: bool = True) -> List[ContainerInfo]:
        args = ["containers"]
        if kubernetes_only:
            args.append("-k")
        return parse_containers(self._run(node, args), node)
