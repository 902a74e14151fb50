"""Per-run context threaded through every component call."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from cluster_healer.config import Settings
from cluster_healer.models import (
    ActionOutcome,
    ActionRecord,
    ControllerState,
    RecipeResult,
)
from cluster_healer.utils import Waiter

logger = logging.getLogger(__name__)


@dataclass
class RunContext:
    """State owned by a single run.

    Holds the switches and policies components need plus the logs they write
    into. Nothing here outlives the run.
    """

    settings: Settings
    waiter: Waiter = field(default_factory=Waiter)
    auto_fix: bool = True
    run_id: str = field(default_factory=lambda: datetime.now().strftime("%Y%m%d_%H%M%S"))
    control_plane_node: Optional[str] = None
    actions: List[ActionRecord] = field(default_factory=list)
    recipes: List[RecipeResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    states: List[ControllerState] = field(default_factory=list)
    timeouts: int = 0

    @classmethod
    def from_settings(cls, settings: Settings, waiter: Optional[Waiter] = None) -> "RunContext":
        return cls(
            settings=settings,
            waiter=waiter or Waiter(),
            auto_fix=settings.auto_fix,
        )

    @property
    def control_plane_ip(self) -> str:
        return self.settings.control_plane_ip

    def transition(self, state: ControllerState) -> None:
        previous = self.states[-1].value if self.states else "start"
        logger.info(f"State: {previous} -> {state.value}")
        self.states.append(state)

    def record_error(self, message: str, error: Optional[Exception] = None) -> None:
        """Fold a soft error into the run's error log, counting it if it was a timeout."""
        logger.warning(message)
        self.errors.append(message)
        if error is not None:
            self.count_timeout(error)

    def count_timeout(self, error: Exception) -> bool:
        """Count ``error`` when it, or anything it was raised from, timed out."""
        current: Optional[BaseException] = error
        while current is not None:
            if isinstance(current, TimeoutError) or getattr(current, "timed_out", False):
                self.timeouts += 1
                return True
            current = current.__cause__
        return False

    def begin_action(self, name: str, target: str, intent: str) -> ActionRecord:
        logger.info(f"[FIX] {intent}")
        return ActionRecord(name=name, target=target, intent=intent)

    def finish_action(
        self,
        record: ActionRecord,
        outcome: ActionOutcome,
        detail: Optional[str] = None,
        attempts: int = 1,
    ) -> ActionRecord:
        record.outcome = outcome
        record.detail = detail
        record.attempts = attempts
        if outcome == ActionOutcome.SUCCESS:
            logger.info(f"[FIX] {record.intent}: done")
        else:
            logger.warning(f"[FIX] {record.intent}: {outcome.value}{' - ' + detail if detail else ''}")
        self.actions.append(record)
        return record

    def record_recipe(self, result: RecipeResult) -> RecipeResult:
        if not result.noop:
            self.recipes.append(result)
        return result
