from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Type, TypeVar

from algodid.errors import FatalUploadError, RetryExhaustedError, TransientNetworkError
from algodid.logs import log_event
from algodid.metrics import inc_counter

Json = Dict[str, Any]
T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry for group submissions.

    Back-off is linear in the attempt number (backoff_ms * attempt), capped.
    """

    max_attempts: int = 3
    backoff_ms: int = 500
    backoff_cap_ms: int = 10_000

    def delay_ms(self, attempt: int) -> int:
        a = max(1, int(attempt))
        return min(int(self.backoff_cap_ms), int(self.backoff_ms) * a)

    @staticmethod
    def from_config(cfg: Any) -> "RetryPolicy":
        return RetryPolicy(
            max_attempts=int(cfg.max_attempts),
            backoff_ms=int(cfg.backoff_ms),
            backoff_cap_ms=int(cfg.backoff_cap_ms),
        )


def call_with_retry(
    fn: Callable[[int], T],
    *,
    policy: RetryPolicy,
    context: Json,
    exhausted: Type[RetryExhaustedError] = FatalUploadError,
    logger: Optional[logging.Logger] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call fn(attempt) until it succeeds or the attempt ceiling is reached.

    Only TransientNetworkError is retried. Anything else propagates at once.
    Exhaustion raises `exhausted` carrying `context` plus the attempt count.
    """
    log = logger or logging.getLogger("algodid.retry")
    attempt = 0
    while True:
        attempt += 1
        try:
            return fn(attempt)
        except TransientNetworkError as e:
            if attempt >= int(policy.max_attempts):
                inc_counter("groups_failed")
                details = dict(context)
                details.update({"attempts": attempt, "last_error": str(e)})
                raise exhausted("retry_exhausted", "group_failed", details) from e

            delay = policy.delay_ms(attempt)
            inc_counter("group_retries")
            log_event(
                log,
                "group_retry",
                level=logging.WARNING,
                attempt=attempt,
                max_attempts=int(policy.max_attempts),
                delay_ms=delay,
                error=str(e),
                **context,
            )
            sleep(delay / 1000.0)
