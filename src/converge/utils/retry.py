"""Retry policy with exponential backoff for failed reconciliations."""

import random
import threading
import time
from typing import TYPE_CHECKING, Callable, Optional

from converge.utils.errors import ErrorCategory, ReconcileError
from converge.utils.logging import get_logger

if TYPE_CHECKING:
    from converge.core.models import ReconciliationResult
    from converge.core.waiter import CancellationToken

logger = get_logger(__name__)


class RetryPolicy:
    """Re-runs a whole reconciliation when it failed for a transient reason.

    Reconciliation is idempotent, so repeating a run after a transport
    failure or a throttled request is safe.
    """

    RETRYABLE_CATEGORIES = {
        ErrorCategory.PROVIDER_UNAVAILABLE,
        ErrorCategory.PROVIDER,
    }

    def __init__(
        self,
        max_retries: int = 0,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        sleep: Optional[Callable[[float], None]] = None
    ):
        """Initialize retry policy.

        Args:
            max_retries: Maximum number of retry attempts
            base_delay: Base delay in seconds for first retry
            max_delay: Maximum delay in seconds between retries
            exponential_base: Base for exponential backoff calculation
            jitter: Whether to add random jitter to delay
            sleep: Optional sleep function; defaults to time.sleep, or to the
                cancellation token when one is passed to run()
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self._sleep = sleep

    def should_retry(self, error: Optional[ReconcileError], attempt: int) -> bool:
        """Determine if a failure should trigger another run.

        Args:
            error: The error the failed run reported
            attempt: Current attempt number (0-indexed)

        Returns:
            True if the error is retryable and max retries not exceeded
        """
        if error is None or attempt >= self.max_retries:
            return False

        if error.category not in self.RETRYABLE_CATEGORIES:
            return False

        return error.retryable

    def get_delay(self, attempt: int) -> float:
        """Calculate delay before next retry using exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed)

        Returns:
            Delay in seconds before next retry
        """
        delay = min(
            self.base_delay * (self.exponential_base ** attempt),
            self.max_delay
        )

        # Random value between 0 and 10% of delay
        if self.jitter:
            delay += random.uniform(0, delay * 0.1)

        return delay

    def run(
        self,
        operation: Callable[[], 'ReconciliationResult'],
        cancel: Optional['CancellationToken'] = None
    ) -> 'ReconciliationResult':
        """Run a reconciliation, repeating it while the failure is retryable.

        Args:
            operation: Callable performing one reconciliation
            cancel: Optional cancellation token; interrupts the backoff pause

        Returns:
            Result of the last attempt, with ``attempts`` set
        """
        attempt = 0
        while True:
            result = operation()
            result.attempts = attempt + 1

            if result.is_success():
                if attempt > 0:
                    logger.info(f"Reconciliation succeeded after {attempt} retries")
                return result

            if not self.should_retry(result.error, attempt):
                if attempt > 0:
                    logger.error(f"Reconciliation failed after {attempt} retries: {result.reason}")
                return result

            delay = self.get_delay(attempt)
            logger.warning(
                f"Attempt {attempt + 1}/{self.max_retries + 1} failed: {result.reason}. "
                f"Retrying in {delay:.2f}s...",
                extra={
                    'kind': result.spec.kind.value,
                    'identity': result.spec.identity,
                    'attempt': attempt + 1,
                }
            )
            self._pause(delay, cancel)
            attempt += 1

    def _pause(self, delay: float, cancel: Optional['CancellationToken']) -> None:
        if self._sleep is not None:
            self._sleep(delay)
        elif cancel is not None:
            cancel.wait(delay)
        else:
            time.sleep(delay)


_default_policy = RetryPolicy()
_default_lock = threading.Lock()


def set_default_retry_policy(policy: RetryPolicy) -> None:
    """Set the process-wide policy used when a run is given none."""
    global _default_policy
    with _default_lock:
        _default_policy = policy


def get_default_retry_policy() -> RetryPolicy:
    with _default_lock:
        return _default_policy
