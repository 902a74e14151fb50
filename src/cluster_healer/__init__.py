"""Health check and escalating auto-remediation for Talos Kubernetes clusters."""

__version__ = "0.1.0"
