"""
Resubmission policy for failed rebalancing tasks.

A failed task holds its broker; the lifecycle controller resubmits once the
backoff for the current attempt count has elapsed.
"""

from typing import Optional

from logoperator.cluster.spec import RebalanceTaskDefaults


class RetryPolicy:
    """
    Exponential backoff between task submissions.

    Formula: min(cooldown * multiplier^(attempts-1), max_backoff)
    """

    def __init__(self, defaults: Optional[RebalanceTaskDefaults] = None):
        self.defaults = defaults or RebalanceTaskDefaults()

    def _calculate_backoff(self, attempts: int) -> int:
        """
        Calculate the wait after the given number of failed submissions.

        Args:
            attempts: Submissions made so far (1 after the first failure)

        Returns:
            Backoff delay in milliseconds
        """
        exponent = max(0, attempts - 1)
        backoff = self.defaults.retry_cooldown_ms * (self.defaults.backoff_multiplier ** exponent)
        return int(min(backoff, self.defaults.max_backoff_ms))

    def exhausted(self, attempts: int) -> bool:
        """True when no further submission is allowed."""
        if self.defaults.max_attempts is None:
            return False
        return attempts >= self.defaults.max_attempts

    def next_attempt_at(self, last_failure_at: int, attempts: int) -> int:
        return last_failure_at + self._calculate_backoff(attempts)

    def should_resubmit(self, last_failure_at: int, attempts: int, now_ms: int) -> bool:
        """
        Check whether a failed task may be submitted again.

        Args:
            last_failure_at: Timestamp (ms) of the last failure
            attempts: Submissions made so far
            now_ms: Current time (ms)

        Returns:
            True if the attempt budget allows it and the backoff has elapsed
        """
        if self.exhausted(attempts):
            return False
        return now_ms >= self.next_attempt_at(last_failure_at, attempts)
