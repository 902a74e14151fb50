"""Bounded polling and retry primitives.

Every blocking wait in the healer goes through ``Waiter`` and is governed by
exactly one ``RetryPolicy``. Clock and sleep are injectable so tests run
without real delays.
"""

import logging
import time
from typing import Callable, Optional, TypeVar

from cluster_healer.errors import ActionError, HealerError, WaitTimeoutError
from cluster_healer.models import RetryPolicy

T = TypeVar("T")


class Waiter:
    """Polls predicates and retries steps under a RetryPolicy."""

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize waiter.

        Args:
            clock: Monotonic clock returning seconds
            sleep: Function pausing for the given number of seconds
        """
        self.clock = clock
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

    def _pause(self, policy: RetryPolicy, started: float) -> bool:
        """Sleep before the next attempt. Returns False when the deadline is spent."""
        pause = policy.delay_seconds
        if policy.deadline_seconds is not None:
            remaining = policy.deadline_seconds - (self.clock() - started)
            if remaining <= 0:
                return False
            pause = min(pause, remaining)
        if pause > 0:
            self.sleep(pause)
        return True

    def wait_for(
        self,
        predicate: Callable[[], bool],
        policy: RetryPolicy,
        description: str = "condition",
    ) -> bool:
        """Poll ``predicate`` until it is true or the policy is exhausted.

        A predicate raising a ``HealerError`` counts as false for that poll.

        Returns:
            True if the condition was met, False on timeout
        """
        started = self.clock()
        attempt = 0

        while True:
            attempt += 1
            try:
                if predicate():
                    self.logger.debug(f"{description}: met after {attempt} check(s)")
                    return True
            except HealerError as e:
                self.logger.debug(f"{description}: check {attempt} failed: {e}")

            if attempt >= policy.max_attempts:
                break
            if not self._pause(policy, started):
                break
            self.logger.debug(
                f"Waiting for {description}... ({self.clock() - started:.0f}s elapsed)"
            )

        self.logger.warning(
            f"Timed out waiting for {description} "
            f"({self.clock() - started:.0f}s, {attempt} checks)"
        )
        return False

    def wait_until(
        self,
        predicate: Callable[[], bool],
        policy: RetryPolicy,
        description: str = "condition",
    ) -> None:
        """Like ``wait_for`` but raises ``WaitTimeoutError`` on timeout."""
        started = self.clock()
        if not self.wait_for(predicate, policy, description):
            raise WaitTimeoutError(description, self.clock() - started, policy.max_attempts)

    def retry(
        self,
        func: Callable[[], T],
        policy: RetryPolicy,
        description: str = "step",
    ) -> T:
        """Call ``func`` until it succeeds, at most ``policy.max_attempts`` times.

        Raises:
            ActionError: After the final failed attempt
        """
        started = self.clock()
        attempt = 0
        last_error: Optional[Exception] = None

        while True:
            attempt += 1
            try:
                return func()
            except HealerError as e:
                last_error = e
                self.logger.warning(
                    f"{description} failed (attempt {attempt}/{policy.max_attempts}): {e}"
                )

            if attempt >= policy.max_attempts:
                break
            if not self._pause(policy, started):
                break

        raise ActionError(
            f"{description} failed after {attempt} attempt(s): {last_error}"
        ) from last_error
