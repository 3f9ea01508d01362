"""Retry policy helpers: failure classification and back-off timing.

The dispatcher itself never retries a request in-line (non-queueable
operations are surfaced to the caller, queueable ones go to the offline
queue).  These helpers decide *whether* a queued operation is worth another
attempt and *when* the next drain pass should run.

Usage
-----

```python
from relay.utils.retry import backoff_delay, is_retryable_failure

if is_retryable_failure(exc):
    await asyncio.sleep(backoff_delay(attempt, base_delay=2.0, max_delay=60.0))
```
"""

from __future__ import annotations

import random

from relay.errors import HttpStatusError
from relay.errors import RefreshUnavailableError
from relay.errors import TransportNetworkError

#: Statuses that indicate a transient server-side condition.
TRANSIENT_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable_http_exc(exc: Exception) -> bool:  # noqa: D401 – helper
    """Return *True* if exception indicates a transient HTTP failure.

    Expects an exception exposing a ``status_code`` attribute (integer) akin
    to :class:`relay.errors.HttpStatusError`.
    """

    status = getattr(exc, "status_code", None)
    if status is None:
        return True  # Network / parsing error → retry

    return status in TRANSIENT_STATUSES


def is_retryable_failure(exc: Exception) -> bool:
    """Classify a queued-delivery failure.

    Network-level failures (including an unreachable refresh endpoint) and
    transient statuses are retryable; any other
    HTTP rejection (validation, permission, not-found) is permanent.
    """

    if isinstance(exc, (TransportNetworkError, RefreshUnavailableError)):
        return True
    if isinstance(exc, HttpStatusError):
        return is_retryable_http_exc(exc)
    return False


def backoff_delay(attempt: int, *, base_delay: float, max_delay: float, jitter: float = 0.25) -> float:
    """Exponential back-off with jitter.

    Parameters
    ----------
    attempt:
        1-based attempt counter; ``attempt=1`` sleeps roughly ``base_delay``.
    base_delay:
        Initial sleep in seconds (doubles on every attempt).
    max_delay:
        Upper bound for back-off sleep.
    jitter:
        0-1.0 – percentage of random noise added/subtracted from delay.
    """

    attempt = max(attempt, 1)
    delay = min(base_delay * (2 ** (attempt - 1)), max_delay)
    return max(0.0, delay * (1 + random.uniform(-jitter, jitter)))


__all__ = [
    "TRANSIENT_STATUSES",
    "backoff_delay",
    "is_retryable_failure",
    "is_retryable_http_exc",
]
