"""
Retry Policy

Bounded retries with linear backoff around any zero-argument callable.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """
    Re-run a failing operation up to ``max_attempts`` more times.

    ``max_attempts=0`` fails on the first error. Before retry number N the
    policy waits ``base_delay * N`` seconds. The last error is re-raised
    once the budget is spent.
    """

    max_attempts: int = 0
    base_delay: float = 1.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 0:
            raise ValueError("max_attempts must be >= 0")

    def backoff(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.base_delay * attempt

    def run(self, operation: Callable[[], T], description: str = "operation") -> T:
        total = self.max_attempts + 1
        for attempt in range(1, total + 1):
            try:
                return operation()
            except Exception as e:
                if attempt == total:
                    if total > 1:
                        logger.error("All %d attempts failed for %s: %s", total, description, e)
                    raise
                delay = self.backoff(attempt)
                logger.warning("Attempt %d/%d failed for %s: %s (retrying in %.1fs)",
                               attempt, total, description, e, delay)
                self.sleep(delay)
        raise AssertionError("unreachable")
