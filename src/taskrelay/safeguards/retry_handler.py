"""Retry handler with exponential backoff."""


class RetryHandler:
    """
    Decides whether a failed attempt is retried and how long to wait first.

    Logic:
    - Attempts are numbered from 1; ``max_attempts`` includes the first run
    - Backoff before attempt n+1: initial * multiplier^(n-1), capped at max_backoff
      (2s, 4s, 8s with the defaults)
    - After ``max_attempts`` the task is terminally failed
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_backoff: float = 2.0,
        multiplier: float = 2.0,
        max_backoff: float = 60.0,
    ):
        self.max_attempts = max_attempts
        self.initial_backoff = initial_backoff
        self.multiplier = multiplier
        self.max_backoff = max_backoff

    def calculate_backoff(self, attempt: int) -> float:
        """
        Seconds to wait after failed ``attempt`` before the next one.

        Formula: initial * multiplier^(attempt-1), capped at max_backoff
        """
        backoff = self.initial_backoff * (self.multiplier ** (max(attempt, 1) - 1))
        return min(backoff, self.max_backoff)

    def should_retry(self, attempt: int) -> bool:
        """True if failed ``attempt`` still leaves budget for another one."""
        return attempt < self.max_attempts
