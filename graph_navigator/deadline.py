import time
from typing import Optional


class Deadline:
    """
    Monotonic expiry for one request.

    Threaded through the step loop and both collaborator clients so a slow
    LLM or database call cannot stall a request past its budget.
    """

    def __init__(self, seconds: float):
        self.seconds = seconds
        self.expires_at = time.monotonic() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - time.monotonic())

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self.expires_at

    def bound(self, timeout: float) -> float:
        """Clamp a per-call timeout to what is left of the deadline."""
        return min(timeout, self.remaining())


def effective_timeout(timeout: float, deadline: Optional[Deadline]) -> float:
    if deadline is None:
        return timeout
    return deadline.bound(timeout)
