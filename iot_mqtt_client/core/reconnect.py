"""
Reconnect delay policies.

The connection manager asks its policy how long to wait before reconnect
attempt ``n`` (1-based, reset after every successful connect). Returning
``None`` stops reconnecting and leaves the manager disconnected.
"""
from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class ReconnectPolicy(Protocol):
    def next_delay(self, attempt: int) -> Optional[float]:
        """Seconds to wait before ``attempt``, or None to give up."""
        ...


class FixedDelayPolicy:
    """
    Same delay before every attempt, no jitter.

    With ``max_attempts=None`` it retries until the manager is explicitly
    disconnected.
    """

    def __init__(self, delay_ms: int, enabled: bool = True, max_attempts: Optional[int] = None):
        if delay_ms < 0:
            raise ValueError("delay_ms must be >= 0")
        self.delay_ms = delay_ms
        self.enabled = enabled
        self.max_attempts = max_attempts

    def next_delay(self, attempt: int) -> Optional[float]:
        if not self.enabled:
            return None
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        return self.delay_ms / 1000

    def __repr__(self):
        return (
            f"{self.__class__.__name__}(delay_ms={self.delay_ms!r}, "
            f"enabled={self.enabled!r}, max_attempts={self.max_attempts!r})"
        )


class ExponentialBackoffPolicy:
    """Delay grows by ``factor`` per attempt, capped at ``maximum_ms``."""

    def __init__(
        self,
        initial_ms: int = 500,
        maximum_ms: int = 30_000,
        factor: float = 2.0,
        max_attempts: Optional[int] = None,
    ):
        if initial_ms < 0:
            raise ValueError("initial_ms must be >= 0")
        if maximum_ms < initial_ms:
            raise ValueError(
                f"maximum_ms ({maximum_ms}) must be >= initial_ms ({initial_ms})"
            )
        if factor < 1:
            raise ValueError("factor must be >= 1")
        self.initial_ms = initial_ms
        self.maximum_ms = maximum_ms
        self.factor = factor
        self.max_attempts = max_attempts

    def next_delay(self, attempt: int) -> Optional[float]:
        if self.max_attempts is not None and attempt > self.max_attempts:
            return None
        delay_ms = min(self.initial_ms * self.factor ** max(attempt - 1, 0), self.maximum_ms)
        return delay_ms / 1000
