"""Shared circuit breaker for collaborator HTTP calls.

Used by RetellClient and ContextStore to stop hammering a service that is
down: after repeated failures, calls are skipped for a cooldown period and
the caller takes its fallback path straight away.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


class CircuitOpenError(RuntimeError):
    """Raised by clients that refuse to call a service while its breaker is open."""


@dataclass
class CircuitBreaker:
    """Trips after ``failure_threshold`` failures in a row.

    While tripped, ``should_try`` is False until ``cooldown_seconds`` have
    passed; then one trial call goes through.  A failed trial trips it again
    for a fresh cooldown, a success resets it.
    """

    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"

    _failures: int = field(default=0, init=False, repr=False)
    _retry_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return not self.should_try()

    def should_try(self) -> bool:
        return self._retry_at is None or time.monotonic() >= self._retry_at

    def record_success(self) -> None:
        if self._retry_at is not None:
            logger.info("%s is answering again, circuit closed", self.label)
        self._failures = 0
        self._retry_at = None

    def record_failure(self) -> None:
        self._failures += 1
        if self._failures < self.failure_threshold or not self.should_try():
            return
        self._retry_at = time.monotonic() + self.cooldown_seconds
        logger.warning(
            "%s failed %d times in a row, skipping calls for %.0fs",
            self.label, self._failures, self.cooldown_seconds,
        )
