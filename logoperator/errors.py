"""
Error taxonomy for the operator.

Retryable errors end a reconciliation pass with a requeue; non-retryable
errors are terminal for the pass and are surfaced on cluster status.
"""

from typing import List, Optional


class OperatorError(Exception):
    """Base class for operator errors."""
    pass


class RetryableError(OperatorError):
    """Exception that should trigger a requeue."""
    pass


class NonRetryableError(OperatorError):
    """Exception that should not be retried until the input changes."""
    pass


class ValidationError(NonRetryableError):
    """Cluster spec violates an invariant."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


class TransientError(RetryableError):
    """State store or scheduler temporarily unavailable."""
    pass


class ConflictError(TransientError):
    """Optimistic-concurrency update lost against a newer version."""

    def __init__(self, key: str, expected: int, actual: Optional[int]):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"conflict updating {key}: expected version {expected}, found {actual}"
        )


class NotFoundError(OperatorError):
    """Requested object does not exist."""
    pass


class AlreadyExistsError(OperatorError):
    """Object being created already exists."""
    pass


class RebalanceServiceUnavailable(TransientError):
    """Rebalancing service could not be reached or answered with a server error."""
    pass


class RebalanceRequestRejected(NonRetryableError):
    """Rebalancing service refused a request (4xx or malformed answer)."""
    pass
