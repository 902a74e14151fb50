"""Utility modules for cluster-healer."""

from .waiter import Waiter

__all__ = ["Waiter"]
