"""Top-level run state machine."""

from .controller import EscalationController, select_priority

__all__ = ["EscalationController", "select_priority"]
