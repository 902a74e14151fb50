"""Models describing remediation actions and run outcomes."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .health import HealthReport, NodeDiagnostics


class RetryPolicy(BaseModel):
    """Bounds for one blocking wait or one retried step.

    ``max_attempts`` caps the number of tries, ``delay_seconds`` is the pause
    between tries and ``deadline_seconds`` (optional) caps total elapsed time.
    """

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(default=3, ge=1)
    delay_seconds: float = Field(default=10.0, ge=0)
    deadline_seconds: Optional[float] = Field(default=None, gt=0)

    @classmethod
    def polling(cls, interval: float, ceiling: float) -> "RetryPolicy":
        """Poll every ``interval`` seconds until ``ceiling`` seconds elapsed."""
        attempts = max(1, int(ceiling // interval) + 1) if interval > 0 else 1
        return cls(max_attempts=attempts, delay_seconds=interval, deadline_seconds=ceiling)


class ActionOutcome(str, Enum):
    """Result of one executed action."""

    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


class ActionRecord(BaseModel):
    """One mutating action against the cluster, logged before and after."""

    name: str
    target: str
    intent: str
    outcome: ActionOutcome = ActionOutcome.SUCCESS
    detail: Optional[str] = None
    attempts: int = 1
    timestamp: datetime = Field(default_factory=datetime.now)

    def __str__(self) -> str:
        suffix = f" - {self.detail}" if self.detail else ""
        return f"[{self.outcome.value.upper()}] {self.name} {self.target}{suffix}"


class Recipe(str, Enum):
    """Named remediation recipes."""

    RECOVER_NOT_READY_NODE = "recover-notready-node"
    REBOOT_NODE = "reboot-node"
    FIX_STUCK_CONTROL_PLANE = "fix-stuck-control-plane"
    RECOVER_CONTROL_PLANE = "recover-control-plane"
    FIX_CNI = "fix-cni"
    FIX_KUBE_PROXY = "fix-kube-proxy"
    UNCORDON_ALL = "uncordon-all"
    CLEANUP_ERROR_PODS = "cleanup-error-pods"
    CLEANUP_TERMINATING_PODS = "cleanup-terminating-pods"


class RecipeResult(BaseModel):
    """Outcome of one recipe invocation."""

    recipe: Recipe
    target: str = "cluster"
    success: bool = True
    noop: bool = Field(default=False, description="Nothing needed doing")
    steps: List[str] = Field(default_factory=list)
    escalated_to: Optional[Recipe] = None
    detail: Optional[str] = None

    def __str__(self) -> str:
        status = "no-op" if self.noop else ("ok" if self.success else "failed")
        return f"{self.recipe.value}({self.target}): {status}"


class ControllerState(str, Enum):
    """States of the escalation controller over a single run."""

    PROBING = "probing"
    EVALUATING = "evaluating"
    REMEDIATING = "remediating"
    VERIFYING = "verifying"
    CONVERGED = "converged"
    DEGRADED = "degraded"
    FATAL = "fatal"


class RunOutcome(str, Enum):
    """Final outcome of a run."""

    CONVERGED = "converged"
    DEGRADED = "degraded"
    FATAL = "fatal"

    @property
    def exit_code(self) -> int:
        return 0 if self is RunOutcome.CONVERGED else 1


class Symptom(str, Enum):
    """Priority-ordered symptoms that select the primary remediation."""

    STUCK_PODS = "stuck-control-plane-pods"
    API_UNREACHABLE = "api-server-unreachable"
    CRITICAL_CONTAINERS = "critical-containers-down"
    COMPONENTS_UNHEALTHY = "scheduler-controller-unhealthy"
    KUBELET_UNHEALTHY = "kubelet-unhealthy"


class RunResult(BaseModel):
    """Everything a run produced, consumed by the summary reporter."""

    run_id: str
    outcome: RunOutcome
    report: Optional[HealthReport] = None
    initial_report: Optional[HealthReport] = None
    primary_symptom: Optional[Symptom] = None
    states: List[ControllerState] = Field(default_factory=list)
    actions: List[ActionRecord] = Field(default_factory=list)
    recipes: List[RecipeResult] = Field(default_factory=list)
    diagnostics: List[NodeDiagnostics] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    timeouts: int = Field(default=0, description="Calls and waits that timed out")
    fatal_reason: Optional[str] = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None

    @property
    def exit_code(self) -> int:
        return self.outcome.exit_code
