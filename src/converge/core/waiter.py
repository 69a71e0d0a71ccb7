"""Poll-with-timeout support for resources that provision asynchronously."""

import threading
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from converge.core.models import ObservedState, ResourceStatus
from converge.utils.errors import (
    ProviderError,
    ReconcileCancelledError,
    ReconcileError,
    ReconcileTimeoutError,
)
from converge.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WaitConfig:
    """Polling interval (seconds) and the number of polls after the first one."""

    interval: float = 10.0
    max_attempts: int = 60

    def __post_init__(self):
        if self.interval < 0:
            raise ValueError("interval must not be negative")
        if self.max_attempts < 0:
            raise ValueError("max_attempts must not be negative")


class CancellationToken:
    """Cooperative cancellation signal shared between a caller and its runs."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to ``timeout`` seconds; return True if cancelled meanwhile."""
        return self._event.wait(timeout)


@dataclass
class WaitOutcome:
    """Last observation of a wait loop and how many polls it took."""
    observed: ObservedState
    polls: int
    error: Optional[ReconcileError] = None

    @property
    def converged(self) -> bool:
        return self.error is None


class StabilityWaiter:
    """Polls a lookup until the resource reaches a terminal status.

    One poll happens immediately, followed by up to ``max_attempts`` polls
    each preceded by one ``interval`` pause. A resource that is not visible
    yet counts as still converging.
    """

    def __init__(self, config: WaitConfig, sleep: Optional[Callable[[float], None]] = None):
        """Initialize waiter.

        Args:
            config: Polling interval and attempt budget
            sleep: Optional sleep function; by default the waiter sleeps on
                the cancellation token so that cancel() interrupts the pause
        """
        self.config = config
        self._sleep = sleep

    def wait(
        self,
        lookup: Callable[[], ObservedState],
        cancel: CancellationToken,
        log_extra: Optional[Dict[str, str]] = None,
    ) -> WaitOutcome:
        observed = ObservedState.not_found()
        polls = 0

        for attempt in range(self.config.max_attempts + 1):
            if attempt > 0:
                self._pause(cancel)

            if cancel.cancelled:
                return WaitOutcome(observed, polls, ReconcileCancelledError())

            observed = lookup()
            polls += 1

            if not observed.found:
                logger.info(
                    f"Poll {polls}: not visible yet",
                    extra={**(log_extra or {}), 'attempt': polls},
                )
                continue

            if observed.status == ResourceStatus.FAILED:
                return WaitOutcome(
                    observed,
                    polls,
                    ProviderError("provider reported failure", code=observed.raw_status),
                )

            if observed.status == ResourceStatus.AVAILABLE:
                logger.info(
                    f"Poll {polls}: available",
                    extra={**(log_extra or {}), 'attempt': polls},
                )
                return WaitOutcome(observed, polls)

            logger.info(
                f"Poll {polls}: current state {observed.raw_status} (waiting)",
                extra={**(log_extra or {}), 'attempt': polls},
            )

        return WaitOutcome(observed, polls, ReconcileTimeoutError())

    def _pause(self, cancel: CancellationToken) -> None:
        if self._sleep is not None:
            self._sleep(self.config.interval)
        else:
            cancel.wait(self.config.interval)
