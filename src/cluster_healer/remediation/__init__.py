"""Remediation recipes applied by the escalation controller."""

from .engine import RemediationEngine

__all__ = ["RemediationEngine"]
