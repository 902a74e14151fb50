"""Error taxonomy for cluster-healer.

Only ``ConnectivityError`` is fatal to a run. Everything else is absorbed at
the component boundary and folded into the health report or action log.
"""


class HealerError(Exception):
    """Base class for all cluster-healer errors."""


class ConnectivityError(HealerError):
    """The control-plane endpoint cannot be reached at all."""


class ProbeError(HealerError):
    """A single read against the cluster or a node failed."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class ActionError(HealerError):
    """A remediation step failed."""

    def __init__(self, message: str, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class WaitTimeoutError(HealerError, TimeoutError):
    """A bounded wait ran out of attempts or time."""

    def __init__(self, description: str, elapsed: float, attempts: int):
        super().__init__(
            f"Timed out waiting for {description} after {elapsed:.0f}s ({attempts} attempts)"
        )
        self.description = description
        self.elapsed = elapsed
        self.attempts = attempts
