"""Run summary rendering and persistence."""

from .summary import SummaryReporter

__all__ = ["SummaryReporter"]
